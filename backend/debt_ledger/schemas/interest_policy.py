from pydantic import BaseModel, field_validator
from datetime import datetime
from typing import Literal

InterestMode = Literal["MONTHLY", "DAILY"]


def _rate_ok(v: float | None):
    if v is None:
        return None
    if v != v or v in (float("inf"), float("-inf")):
        raise ValueError("rate must be a finite number")
    if v < 0:
        raise ValueError("rate must not be negative")
    return v


class PolicyCreate(BaseModel):
    name: str
    mode: InterestMode
    monthly_rate: float | None = None
    daily_rate: float | None = None
    anchor_day: int = 1
    grace_days: int = 0

    @field_validator("monthly_rate", "daily_rate")
    @classmethod
    def rates_ok(cls, v: float | None):
        return _rate_ok(v)

    @field_validator("name")
    @classmethod
    def name_trim(cls, v: str):
        v = v.strip()
        if not v:
            raise ValueError("name is required")
        return v


class PolicyUpdate(BaseModel):
    name: str | None = None
    mode: InterestMode | None = None
    monthly_rate: float | None = None
    daily_rate: float | None = None
    anchor_day: int | None = None
    grace_days: int | None = None

    @field_validator("monthly_rate", "daily_rate")
    @classmethod
    def rates_ok(cls, v: float | None):
        return _rate_ok(v)


class LegalRateOut(BaseModel):
    is_legal: bool
    yearly_rate: float
    ceiling: float


class PolicyOut(BaseModel):
    id: int
    workspace_id: int
    lineage_id: int | None
    version: int
    is_current: bool
    name: str
    mode: InterestMode
    monthly_rate: float | None
    daily_rate: float | None
    anchor_day: int
    grace_days: int
    created_at: datetime | None = None
    loan_count: int = 0
    legal: LegalRateOut | None = None

    class Config:
        from_attributes = True
