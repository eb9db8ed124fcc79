from sqlalchemy import Boolean, CheckConstraint, Integer, DateTime, func, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column
from debt_ledger.db.base import Base

MONTHLY = "MONTHLY"
DAILY = "DAILY"


class InterestPolicy(Base):
    """One immutable version of an interest policy.

    Revisions are new rows sharing ``lineage_id`` (the id of version 1); only
    the newest row of a lineage has ``is_current`` set.
    """

    __tablename__ = "interest_policies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    workspace_id: Mapped[int] = mapped_column(ForeignKey("workspaces.id", ondelete="CASCADE"), index=True)
    lineage_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    version: Mapped[int] = mapped_column(Integer, default=1)
    is_current: Mapped[bool] = mapped_column(Boolean, default=True)

    name: Mapped[str] = mapped_column(String(128))
    mode: Mapped[str] = mapped_column(String(16))
    monthly_rate: Mapped[float | None] = mapped_column(Numeric(12, 8), nullable=True)
    daily_rate: Mapped[float | None] = mapped_column(Numeric(12, 8), nullable=True)
    anchor_day: Mapped[int] = mapped_column(Integer, default=1)
    grace_days: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[DateTime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "(mode = 'MONTHLY' AND monthly_rate IS NOT NULL AND daily_rate IS NULL)"
            " OR (mode = 'DAILY' AND daily_rate IS NOT NULL AND monthly_rate IS NULL)",
            name="ck_interest_policies_mode_rate",
        ),
        CheckConstraint("anchor_day BETWEEN 1 AND 31", name="ck_interest_policies_anchor_day"),
        CheckConstraint("grace_days >= 0", name="ck_interest_policies_grace_days"),
    )
