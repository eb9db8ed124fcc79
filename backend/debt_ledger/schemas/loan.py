from pydantic import BaseModel, field_validator
from datetime import date, datetime
from typing import Literal

LoanStatus = Literal["OPEN", "OVERDUE", "CLOSED"]

class LoanCreate(BaseModel):
    borrower_name: str
    principal: float
    start_date: date
    due_date: date | None = None
    interest_policy_id: int | None = None
    note: str | None = None

    @field_validator("principal")
    @classmethod
    def principal_positive(cls, v: float):
        if v != v or v in (float("inf"), float("-inf")):
            raise ValueError("principal must be a finite number")
        if v <= 0:
            raise ValueError("principal must be positive")
        return v

    @field_validator("note")
    @classmethod
    def note_trim(cls, v: str | None):
        if v is None:
            return None
        v = v.strip()
        return v or None

class LoanOut(BaseModel):
    id: int
    workspace_id: int
    interest_policy_id: int | None
    borrower_name: str
    principal: float
    remaining_principal: float
    accrued_interest: float
    interest_checkpoint_date: date
    start_date: date
    due_date: date | None
    status: LoanStatus
    note: str | None
    version: int
    created_at: datetime | None = None
    interest_due: float | None = None

    class Config:
        from_attributes = True

class LoanDetailOut(LoanOut):
    total_owed: float
    last_payment_date: date | None = None
    allocations: int = 0
    total_principal_paid: float = 0.0
    total_interest_paid: float = 0.0
    rate_is_legal: bool | None = None
    yearly_rate: float | None = None

class InterestOut(BaseModel):
    loan_id: int
    as_of: date
    calculated: float
    checkpoint: float
    interest_due: float

class AccrualPeriodOut(BaseModel):
    start: date
    end: date
    days: int
    cycle_days: int | None
    full_cycle: bool
    rate: float
    interest: float

class QuoteOut(BaseModel):
    loan_id: int
    as_of: date
    remaining_principal: float
    interest_due: float
    total_owed: float
