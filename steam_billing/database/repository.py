"""
Transaction store.

Keyed, upsert-capable persistence for transactions reported by Steam. The
store is built once around the process engine and passed to whoever needs it.
"""
import dataclasses
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.sql.dml import Insert

from steam_billing.database.connection import create_session_factory
from steam_billing.database.models import ReconciliationRun, Transaction

logger = structlog.get_logger(__name__)

UPSERT_KEY = ("orderid", "transid")


class PersistenceError(Exception):
    """Raised when a store read or write fails."""

    pass


@dataclass(frozen=True)
class TransactionRecord:
    """Flat row written for one reported order."""

    orderid: str
    transid: str
    steamid: str
    status: str
    currency: str
    country: Optional[str]
    timecreated: datetime
    timeupdated: datetime
    agreementid: Optional[str]
    agreementstatus: Optional[str]
    nextpayment: Optional[date]
    itemid: str
    amount: str
    vat: str

    def as_row(self) -> Dict[str, Any]:
        """Column/value mapping for the transactions table."""
        return dataclasses.asdict(self)


class TransactionStore:
    """
    Persistent record of Steam transactions and reconciliation runs.

    All writes to the transactions table go through a single
    INSERT ... ON CONFLICT statement, so concurrent writers never lose an
    update to a read-then-write race.
    """

    def __init__(self, engine: AsyncEngine):
        """
        Initialize the store.

        Args:
            engine: Process-wide async engine
        """
        self._engine = engine
        self._session_factory = create_session_factory(engine)

    @property
    def dialect_name(self) -> str:
        """Name of the backing database dialect."""
        return self._engine.dialect.name

    def _build_upsert(self, row: Dict[str, Any]) -> Insert:
        """
        Build a dialect-specific atomic upsert for one transaction row.

        Args:
            row: Column values, including the (orderid, transid) key

        Returns:
            Insert: Executable upsert statement

        Raises:
            PersistenceError: If the dialect has no native upsert
        """
        table = Transaction.__table__
        update_columns = [column for column in row if column not in UPSERT_KEY]

        if self.dialect_name in ("postgresql", "sqlite"):
            dialect_module = postgresql if self.dialect_name == "postgresql" else sqlite
            stmt = dialect_module.insert(table).values(**row)
            return stmt.on_conflict_do_update(
                index_elements=list(UPSERT_KEY),
                set_={column: stmt.excluded[column] for column in update_columns},
            )

        if self.dialect_name in ("mysql", "mariadb"):
            stmt = mysql.insert(table).values(**row)
            return stmt.on_duplicate_key_update(
                **{column: stmt.inserted[column] for column in update_columns}
            )

        raise PersistenceError(f"Upsert is not supported for dialect '{self.dialect_name}'")

    async def upsert_transaction(self, record: TransactionRecord) -> None:
        """
        Insert a transaction or overwrite every mutable field of an existing one.

        Args:
            record: Transaction row keyed on (orderid, transid)

        Raises:
            PersistenceError: If the write fails
        """
        stmt = self._build_upsert(record.as_row())
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(
                "transaction_upsert_failed",
                orderid=record.orderid,
                transid=record.transid,
                error=str(e),
            )
            raise PersistenceError(
                f"Failed to upsert transaction {record.orderid}/{record.transid}: {e}"
            ) from e

        logger.debug(
            "transaction_upserted",
            orderid=record.orderid,
            transid=record.transid,
            status=record.status,
        )

    async def get_transaction(self, order_id: str, trans_id: str) -> Optional[Transaction]:
        """
        Fetch one transaction by its natural key.

        Args:
            order_id: Order identifier
            trans_id: Steam transaction id

        Returns:
            Optional[Transaction]: Stored row or None
        """
        try:
            async with self._session_factory() as session:
                return await session.get(Transaction, (order_id, trans_id))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load transaction {order_id}/{trans_id}: {e}") from e

    async def latest_agreement_transactions(
        self,
        steam_id: str,
        agreement_id: str,
        statuses: Optional[Iterable[str]] = None,
        limit: int = 50,
    ) -> List[Transaction]:
        """
        List stored transactions of one agreement, most recently updated first.

        Args:
            steam_id: Steam user id
            agreement_id: Steam agreement id
            statuses: Optional status filter
            limit: Max rows returned

        Returns:
            List[Transaction]: Matching rows ordered by timeupdated descending
        """
        stmt = select(Transaction).where(
            Transaction.steamid == steam_id,
            Transaction.agreementid == agreement_id,
        )
        if statuses is not None:
            stmt = stmt.where(Transaction.status.in_(list(statuses)))
        stmt = stmt.order_by(Transaction.timeupdated.desc()).limit(limit)

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(
                "agreement_transactions_query_failed",
                steamid=steam_id,
                agreementid=agreement_id,
                error=str(e),
            )
            raise PersistenceError(f"Failed to query agreement {agreement_id}: {e}") from e

    async def start_run(self, window_start: datetime, started_at: datetime) -> int:
        """
        Record the start of a reconciliation tick.

        Returns:
            int: Run id
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    run = ReconciliationRun(
                        window_start=window_start,
                        status="in_progress",
                        started_at=started_at,
                    )
                    session.add(run)
                    await session.flush()
                    return run.id
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to record reconciliation run: {e}") from e

    async def finish_run(
        self,
        run_id: int,
        status: str,
        completed_at: datetime,
        orders_reported: int = 0,
        orders_upserted: int = 0,
        orders_failed: int = 0,
        error_message: Optional[str] = None,
    ) -> None:
        """Record the outcome of a reconciliation tick."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    run = await session.get(ReconciliationRun, run_id)
                    if run is None:
                        raise PersistenceError(f"Reconciliation run {run_id} not found")
                    run.status = status
                    run.completed_at = completed_at
                    run.orders_reported = orders_reported
                    run.orders_upserted = orders_upserted
                    run.orders_failed = orders_failed
                    run.error_message = error_message
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update reconciliation run {run_id}: {e}") from e
