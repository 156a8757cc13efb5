from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.db import get_supabase
from src.models.signups import SignupStartRequest, SignupStartResponse
from src.observability import incr_metric, log_event


router = APIRouter(prefix="/api/signups", tags=["signups"])


@router.post("/start", response_model=SignupStartResponse)
async def start_signup(data: SignupStartRequest, request: Request, db: Any = Depends(get_supabase)):
    req_id = getattr(request.state, "request_id", None)
    try:
        result = db.table("signup_attempts").insert(
            {
                "shop_id": data.shop_id,
                "employee_code": data.employee_code,
                "email": data.email,
                "status": "PENDING",
            }
        ).execute()
    except Exception as exc:
        log_event(
            "signup_attempt_insert_failed",
            level=logging.ERROR,
            request_id=req_id,
            shop_id=data.shop_id,
            error=str(exc),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to record signup attempt",
        ) from exc

    if not result.data:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to record signup attempt",
        )
    row = result.data[0]
    incr_metric("signup.attempts.created")
    log_event(
        "signup_attempt_created",
        request_id=req_id,
        attempt_id=row["id"],
        shop_id=data.shop_id,
        employee_code=data.employee_code,
    )
    return SignupStartResponse(attempt_id=row["id"], created_at=row.get("created_at"))
