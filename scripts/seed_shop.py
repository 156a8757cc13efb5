#!/usr/bin/env python3
"""
Register a shop and the Recurly plan code that maps subscriptions to it.

Run from project root: python scripts/seed_shop.py "<shop name>" <plan_code>
"""

import sys
import os

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

# Load .env file
from dotenv import load_dotenv
load_dotenv(os.path.join(project_root, ".env"))

from src.db import get_supabase


def main():
    if len(sys.argv) != 3:
        print("Usage: python scripts/seed_shop.py <shop name> <plan_code>")
        sys.exit(1)
    name, plan_code = sys.argv[1], sys.argv[2].strip()

    supabase = get_supabase()
    existing = supabase.table("shops").select("id, name").eq("plan_code", plan_code).execute()
    if existing.data:
        print(f"Plan code '{plan_code}' already mapped to shop {existing.data[0]['id']} ({existing.data[0]['name']}).")
        sys.exit(0)

    result = supabase.table("shops").insert({"name": name, "plan_code": plan_code}).execute()

    if result.data:
        shop = result.data[0]
        print("Created shop:")
        print(f"  ID: {shop['id']}")
        print(f"  Name: {shop['name']}")
        print(f"  Plan code: {shop['plan_code']}")
    else:
        print("Error: Failed to create shop")
        sys.exit(1)


if __name__ == "__main__":
    main()
