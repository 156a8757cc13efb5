from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SignupStartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    shop_id: str = Field(alias="shopId", min_length=1)
    employee_code: str = Field(alias="employeeCode", min_length=1)
    email: str = Field(min_length=3, max_length=320)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if "@" not in normalized:
            raise ValueError("email must contain '@'")
        return normalized


class SignupStartResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    attempt_id: str = Field(alias="attemptId")
    created_at: datetime | None = Field(default=None, alias="createdAt")
