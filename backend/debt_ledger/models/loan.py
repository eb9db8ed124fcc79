from sqlalchemy import CheckConstraint, Integer, Date, DateTime, func, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column
from debt_ledger.db.base import Base

OPEN = "OPEN"
OVERDUE = "OVERDUE"
CLOSED = "CLOSED"


class Loan(Base):
    __tablename__ = "loans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    workspace_id: Mapped[int] = mapped_column(ForeignKey("workspaces.id", ondelete="CASCADE"), index=True)
    interest_policy_id: Mapped[int | None] = mapped_column(
        ForeignKey("interest_policies.id", ondelete="RESTRICT"), nullable=True, index=True
    )

    borrower_name: Mapped[str] = mapped_column(String(128))
    principal: Mapped[float] = mapped_column(Numeric(14, 2))
    remaining_principal: Mapped[float] = mapped_column(Numeric(14, 2))

    # Interest locked in at the last settlement, and the day live accrual resumes from.
    accrued_interest: Mapped[float] = mapped_column(Numeric(14, 2), default=0)
    interest_checkpoint_date: Mapped[Date] = mapped_column(Date)

    start_date: Mapped[Date] = mapped_column(Date, index=True)
    due_date: Mapped[Date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default=OPEN, index=True)
    note: Mapped[str | None] = mapped_column(String(256), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[DateTime] = mapped_column(DateTime, server_default=func.now())

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("remaining_principal >= 0", name="ck_loans_remaining_principal"),
        CheckConstraint("accrued_interest >= 0", name="ck_loans_accrued_interest"),
    )
