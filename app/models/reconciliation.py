from datetime import datetime, date
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime, Numeric, Date, Integer, Boolean, JSON, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class Reconciliation(Base):
    __tablename__ = "reconciliations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, index=True)
    statement_end_date: Mapped[date] = mapped_column(Date)
    statement_end_balance: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="in_progress")  # in_progress | completed
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )

    items = relationship(
        "ReconciliationItem",
        back_populates="reconciliation",
        cascade="all, delete-orphan",
    )


class ReconciliationItem(Base):
    __tablename__ = "reconciliation_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reconciliation_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("reconciliations.id"),
        index=True
    )
    transaction_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("transactions.id"),
        nullable=True,
        index=True
    )
    item_type: Mapped[str] = mapped_column(String(20))  # matched | unmatched_bank | unmatched_app
    match_confidence: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 4), nullable=True)
    match_method: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)  # exact | fuzzy | manual
    match_reason: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    bank_reference_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    is_approved: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )

    # Relationships
    reconciliation = relationship("Reconciliation", back_populates="items")
    transaction = relationship("Transaction", foreign_keys=[transaction_id])


class ReconciliationAuditLog(Base):
    __tablename__ = "reconciliation_audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reconciliation_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("reconciliations.id"),
        index=True
    )
    action: Mapped[str] = mapped_column(String(50))  # bank_statement_imported | manual_match | matches_approved
    details: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )
