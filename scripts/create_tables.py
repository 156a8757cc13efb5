#!/usr/bin/env python3
"""Create database tables for signup attribution."""

import os
import psycopg2
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")

SQL = """
-- 1. shops (plan_code -> tenant)
CREATE TABLE IF NOT EXISTS shops (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name VARCHAR(255) NOT NULL,
    plan_code VARCHAR(100) UNIQUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- 2. signup_attempts (pending records awaiting payment)
CREATE TABLE IF NOT EXISTS signup_attempts (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    shop_id TEXT NOT NULL,
    employee_code TEXT NOT NULL,
    email TEXT NOT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'PENDING',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    completed_at TIMESTAMPTZ,
    provider_event_id TEXT,
    provider_invoice_id TEXT,
    provider_transaction_id TEXT,
    provider_subscription_id TEXT,
    amount NUMERIC(12, 2),
    currency VARCHAR(3),
    CHECK (status IN ('PENDING', 'PAID'))
);
CREATE INDEX IF NOT EXISTS idx_signup_attempts_email_status_created
    ON signup_attempts(email, status, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_signup_attempts_provider_event_id
    ON signup_attempts(provider_event_id);

-- 3. subscriptions
CREATE TABLE IF NOT EXISTS subscriptions (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    provider VARCHAR(50) NOT NULL,
    provider_subscription_id TEXT NOT NULL UNIQUE,
    account_code TEXT,
    email TEXT NOT NULL,
    plan_code TEXT NOT NULL,
    shop_id UUID REFERENCES shops(id) ON DELETE SET NULL,
    status VARCHAR(50) NOT NULL DEFAULT 'active',
    current_period_end TIMESTAMPTZ,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- 4. webhook_events (raw audit log + outcome ledger)
CREATE TABLE IF NOT EXISTS webhook_events (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    provider VARCHAR(50) NOT NULL,
    event_id TEXT,
    event_type TEXT,
    object_type TEXT,
    payload JSONB NOT NULL DEFAULT '{}'::jsonb,
    status VARCHAR(40) NOT NULL DEFAULT 'received',
    last_error TEXT,
    replay_count INTEGER NOT NULL DEFAULT 0,
    last_replay_at TIMESTAMPTZ,
    processed_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_webhook_events_event_id ON webhook_events(event_id);
CREATE INDEX IF NOT EXISTS idx_webhook_events_status_created ON webhook_events(status, created_at DESC);
"""


def main():
    if not DATABASE_URL:
        raise SystemExit("DATABASE_URL is not set")

    print("Connecting to database...")
    conn = psycopg2.connect(DATABASE_URL)
    conn.autocommit = True
    cur = conn.cursor()

    print("Creating tables...")
    cur.execute(SQL)

    # Verify
    cur.execute("SELECT table_name FROM information_schema.tables WHERE table_schema = 'public' ORDER BY table_name;")
    tables = cur.fetchall()
    print(f"\nTables created: {[t[0] for t in tables]}")

    cur.close()
    conn.close()
    print("\nDone!")

if __name__ == "__main__":
    main()
