from sqlalchemy import Integer, Date, DateTime, func, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column
from debt_ledger.db.base import Base

class Payment(Base):
    __tablename__ = "payments"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    workspace_id: Mapped[int] = mapped_column(ForeignKey("workspaces.id", ondelete="CASCADE"), index=True)
    amount: Mapped[float] = mapped_column(Numeric(14, 2))
    payment_date: Mapped[Date] = mapped_column(Date, index=True)
    method: Mapped[str] = mapped_column(String(16), default="MANUAL")
    note: Mapped[str | None] = mapped_column(String(256), nullable=True)
    attachment_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime, server_default=func.now())
