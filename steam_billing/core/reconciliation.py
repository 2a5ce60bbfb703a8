"""
Reconciliation engine for mirroring Steam's transaction report locally.

Each tick pulls the orders Steam updated since a window start and upserts them
into the transactions table. Windows overlap by at least one interval, so a
tick that fails (Steam down, database hiccup) is healed by the next one.
"""
import asyncio
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Optional

import structlog

from steam_billing.config import Settings, get_settings
from steam_billing.database.models import TransactionStatus
from steam_billing.database.repository import (
    PersistenceError,
    TransactionRecord,
    TransactionStore,
)
from steam_billing.integrations.steam_client import REPORT_TIME_FORMAT, PlatformError, SteamClient
from steam_billing.integrations.steam_models import ReportOrder
from steam_billing.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

NEXT_PAYMENT_FORMAT = "%Y%m%d"


class ReconciliationError(Exception):
    """Raised when the Steam report cannot be fetched."""

    pass


@dataclass(frozen=True)
class TickResult:
    """Outcome of one reconciliation tick."""

    status: str  # completed, failed, skipped
    window_start: Optional[datetime] = None
    reported: int = 0
    upserted: int = 0
    failed: int = 0
    error: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_report_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_next_payment(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    return datetime.strptime(value, NEXT_PAYMENT_FORMAT).date()


class ReconciliationEngine:
    """
    Periodic report-to-database reconciliation.

    Ticks never run concurrently: a tick requested while another one is in
    flight is skipped rather than queued.
    """

    def __init__(
        self,
        steam_client: SteamClient,
        store: TransactionStore,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize reconciliation engine.

        Args:
            steam_client: Steam gateway
            store: Transaction store
            settings: Optional settings
            clock: Aware UTC wall clock (injectable for tests)
        """
        self.settings = settings or get_settings()
        self.steam_client = steam_client
        self.store = store
        self._clock = clock or _utcnow
        self._lock = asyncio.Lock()
        logger.info(
            "reconciliation_engine_initialized",
            interval_minutes=self.settings.report_update_frequency,
            overlap_ticks=self.settings.report_overlap_ticks,
        )

    @property
    def interval(self) -> timedelta:
        """Time between ticks."""
        return timedelta(minutes=self.settings.report_update_frequency)

    def report_window_start(self, now: datetime) -> datetime:
        """
        Compute the start of the report window for a tick running at ``now``.

        The window covers the current interval plus ``report_overlap_ticks``
        earlier ones and a safety margin, truncated to whole seconds.
        """
        lookback = self.interval * (1 + self.settings.report_overlap_ticks) + timedelta(
            seconds=self.settings.report_safety_margin_seconds
        )
        return (now.astimezone(timezone.utc) - lookback).replace(microsecond=0)

    @staticmethod
    def map_report_order(raw: Any) -> TransactionRecord:
        """
        Map one raw report entry to a transaction row.

        Line items are flattened to comma-joined strings in report order.

        Raises:
            ValueError: If the entry is malformed or has an unknown status
        """
        if not isinstance(raw, dict):
            raise ValueError(f"Report order is not an object: {raw!r}")
        order = ReportOrder.model_validate(raw)
        status = TransactionStatus(order.status)

        return TransactionRecord(
            orderid=order.orderid,
            transid=order.transid,
            steamid=order.steamid,
            status=status.value,
            currency=order.currency,
            country=order.country,
            timecreated=_parse_report_time(order.timecreated),
            timeupdated=_parse_report_time(order.time),
            agreementid=order.agreementid or None,
            agreementstatus=order.agreementstatus or None,
            nextpayment=_parse_next_payment(order.nextpayment),
            itemid=",".join(item.itemid for item in order.items),
            amount=",".join(item.amount for item in order.items),
            vat=",".join(item.vat for item in order.items),
        )

    async def _fetch_orders(self, window_start: datetime) -> list:
        """
        Fetch the report for a window.

        Raises:
            ReconciliationError: If Steam is unreachable or answers Failure
        """
        try:
            response = await self.steam_client.get_report(
                window_start, max_results=self.settings.report_max_results
            )
        except PlatformError as e:
            raise ReconciliationError(f"Failed to fetch Steam report: {e}") from e

        if not response.ok:
            raise ReconciliationError(
                f"Steam report returned Failure: {response.error_description or 'unknown error'}"
            )
        return response.params.orders

    async def _start_run(self, window_start: datetime, started_at: datetime) -> Optional[int]:
        try:
            return await self.store.start_run(window_start, started_at)
        except PersistenceError as e:
            logger.error("reconciliation_run_record_failed", error=str(e))
            return None

    async def _finish_run(self, run_id: Optional[int], result: TickResult) -> None:
        if run_id is None:
            return
        try:
            await self.store.finish_run(
                run_id,
                status=result.status,
                completed_at=self._clock(),
                orders_reported=result.reported,
                orders_upserted=result.upserted,
                orders_failed=result.failed,
                error_message=result.error,
            )
        except PersistenceError as e:
            logger.error("reconciliation_run_record_failed", run_id=run_id, error=str(e))

    async def run_tick(self) -> TickResult:
        """
        Run one reconciliation tick.

        Returns:
            TickResult: ``skipped`` if a tick is already running, ``failed``
            if the report could not be fetched, ``completed`` otherwise
            (individual order failures are counted, not fatal)
        """
        if self._lock.locked():
            logger.warning("reconciliation_tick_skipped", reason="previous tick still running")
            metrics.record_reconciliation_tick("skipped", 0.0)
            return TickResult(status="skipped")

        async with self._lock:
            return await self._run_tick()

    async def _run_tick(self) -> TickResult:
        start_time = time.perf_counter()
        now = self._clock()
        window_start = self.report_window_start(now)
        log = logger.bind(window_start=window_start.strftime(REPORT_TIME_FORMAT))
        log.info("reconciliation_tick_started")

        run_id = await self._start_run(window_start, now)

        try:
            orders = await self._fetch_orders(window_start)
        except ReconciliationError as e:
            log.error("reconciliation_tick_failed", error=str(e))
            result = TickResult(status="failed", window_start=window_start, error=str(e))
            await self._finish_run(run_id, result)
            metrics.record_reconciliation_tick("failed", time.perf_counter() - start_time)
            return result

        upserted = 0
        failed = 0
        for raw in orders:
            try:
                record = self.map_report_order(raw)
                await self.store.upsert_transaction(record)
            except (ValueError, PersistenceError) as e:
                failed += 1
                log.error(
                    "reconciliation_order_failed",
                    orderid=raw.get("orderid") if isinstance(raw, dict) else None,
                    transid=raw.get("transid") if isinstance(raw, dict) else None,
                    error=str(e),
                )
                continue
            upserted += 1

        result = TickResult(
            status="completed",
            window_start=window_start,
            reported=len(orders),
            upserted=upserted,
            failed=failed,
        )
        await self._finish_run(run_id, result)

        duration = time.perf_counter() - start_time
        metrics.record_reconciliation_tick("completed", duration, upserted=upserted, failed=failed)
        log.info(
            "reconciliation_tick_completed",
            reported=result.reported,
            upserted=upserted,
            failed=failed,
            duration_seconds=round(duration, 3),
        )
        return result
