from sqlalchemy import Integer, Date, DateTime, func, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column
from debt_ledger.db.base import Base

class Allocation(Base):
    __tablename__ = "payment_allocations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    payment_id: Mapped[int] = mapped_column(ForeignKey("payments.id", ondelete="CASCADE"), index=True)
    loan_id: Mapped[int] = mapped_column(ForeignKey("loans.id", ondelete="CASCADE"), index=True)

    principal_paid: Mapped[float] = mapped_column(Numeric(14, 2))
    interest_paid: Mapped[float] = mapped_column(Numeric(14, 2))
    interest_due_at_payment: Mapped[float] = mapped_column(Numeric(14, 2))

    # Loan state right before this allocation, restored verbatim on reversal.
    prior_accrued_interest: Mapped[float] = mapped_column(Numeric(14, 2))
    prior_checkpoint_date: Mapped[Date] = mapped_column(Date)
    prior_status: Mapped[str] = mapped_column(String(16))
    prior_policy_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[DateTime] = mapped_column(DateTime, server_default=func.now())
