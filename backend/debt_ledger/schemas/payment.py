from pydantic import BaseModel, field_validator
from datetime import date, datetime
from typing import Literal

AllocationMethod = Literal["INTEREST_FIRST", "PRINCIPAL_FIRST", "FIFO"]


def _finite(v: float | None, field: str):
    if v is None:
        return None
    if v != v:
        raise ValueError(f"{field} must be a number")
    if v == float("inf") or v == float("-inf"):
        raise ValueError(f"{field} must be finite")
    return v


class AllocationIn(BaseModel):
    loan_id: int
    principal_paid: float | None = None
    interest_paid: float | None = None

    @field_validator("principal_paid", "interest_paid")
    @classmethod
    def non_negative(cls, v: float | None, info):
        v = _finite(v, info.field_name)
        if v is not None and v < 0:
            raise ValueError(f"{info.field_name} must not be negative")
        return v


class PaymentCreate(BaseModel):
    amount: float
    payment_date: date | None = None
    allocations: list[AllocationIn] = []
    method: AllocationMethod | None = None
    note: str | None = None
    attachment_url: str | None = None

    @field_validator("amount")
    @classmethod
    def amount_must_be_finite_and_positive(cls, v: float):
        if v is None:
            raise ValueError("amount is required")
        v = _finite(v, "amount")
        if v <= 0:
            raise ValueError("amount must be positive")
        return v

    @field_validator("note")
    @classmethod
    def note_trim(cls, v: str | None):
        if v is None:
            return None
        v = v.strip()
        return v or None


class PaymentUpdate(BaseModel):
    note: str | None = None
    attachment_url: str | None = None


class AllocationOut(BaseModel):
    id: int
    loan_id: int
    principal_paid: float
    interest_paid: float
    interest_due_at_payment: float

    class Config:
        from_attributes = True


class PaymentOut(BaseModel):
    id: int
    workspace_id: int
    amount: float
    payment_date: date
    method: str
    note: str | None
    attachment_url: str | None
    created_at: datetime | None = None
    allocations: list[AllocationOut] = []

    class Config:
        from_attributes = True
