"""SQLAlchemy database models for the local Steam transaction ledger."""
from datetime import date, datetime
from enum import Enum

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class TransactionStatus(str, Enum):
    """Transaction statuses reported by the Steam microtransaction API."""

    INIT = "Init"
    APPROVED = "Approved"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    REFUNDED = "Refunded"
    PARTIAL_REFUND = "PartialRefund"
    CHARGEDBACK = "Chargedback"
    REFUNDED_SUSPECTED_FRAUD = "RefundedSuspectedFraud"
    REFUNDED_FRIENDLY_FRAUD = "RefundedFriendlyFraud"


VALID_AGREEMENT_STATUSES = frozenset(
    {TransactionStatus.APPROVED.value, TransactionStatus.SUCCEEDED.value}
)


class Transaction(Base):
    """
    Transactions table.

    One row per (orderid, transid) reported by Steam. Rows are only written
    by the reconciliation engine through an atomic upsert, so the latest
    report always wins.
    """

    __tablename__ = "transactions"

    orderid: Mapped[str] = mapped_column(String(32), primary_key=True)
    transid: Mapped[str] = mapped_column(String(32), primary_key=True)
    steamid: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    country: Mapped[str | None] = mapped_column(String(8), nullable=True)
    timecreated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    timeupdated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    agreementid: Mapped[str | None] = mapped_column(String(32), nullable=True)
    agreementstatus: Mapped[str | None] = mapped_column(String(32), nullable=True)
    nextpayment: Mapped[date | None] = mapped_column(Date, nullable=True)
    itemid: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    amount: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    vat: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    __table_args__ = (
        Index("idx_transactions_steamid_agreement", "steamid", "agreementid"),
        Index("idx_transactions_timeupdated", "timeupdated"),
    )

    def __repr__(self) -> str:
        """String representation of Transaction."""
        return (
            f"<Transaction(orderid={self.orderid}, transid={self.transid}, "
            f"steamid={self.steamid}, status={self.status})>"
        )


class ReconciliationRun(Base):
    """
    Reconciliation tick audit table.

    Stores the outcome of every reconciliation tick: the report window it
    covered and how many reported orders were merged or failed.
    """

    __tablename__ = "reconciliation_runs"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    orders_reported: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    orders_upserted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    orders_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('in_progress', 'completed', 'failed')",
            name="valid_reconciliation_status",
        ),
        Index("idx_reconciliation_runs_started", "started_at"),
    )

    def __repr__(self) -> str:
        """String representation of ReconciliationRun."""
        return (
            f"<ReconciliationRun(id={self.id}, window_start={self.window_start}, "
            f"status={self.status})>"
        )
