"""
Reconciliation background worker.

Runs a reconciliation tick every ``report_update_frequency`` minutes on a
fixed-rate schedule. A tick that overruns its slot makes the worker skip the
missed slots rather than run ticks back to back.
"""
import argparse
import asyncio
import signal
import time
from typing import Any, Optional, Tuple

import structlog
from prometheus_client import start_http_server

from steam_billing.config import get_settings
from steam_billing.core.reconciliation import ReconciliationEngine
from steam_billing.database.connection import close_db, create_engine, init_db
from steam_billing.database.repository import TransactionStore
from steam_billing.integrations.steam_client import SteamClient
from steam_billing.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)

# Upper bound on a single sleep so shutdown signals are noticed promptly
SHUTDOWN_POLL_SECONDS = 1.0


def seconds_until_next_slot(slot_start: float, now: float, interval: float) -> Tuple[float, int]:
    """
    Calculate the wait before the next schedule slot.

    Args:
        slot_start: Monotonic time the last tick was scheduled for
        now: Current monotonic time
        interval: Seconds between slots

    Returns:
        Tuple[float, int]: Seconds to wait and number of slots skipped
    """
    skipped = max(int((now - slot_start) // interval), 0)
    next_slot = slot_start + (skipped + 1) * interval
    return next_slot - now, skipped


async def start_reconciliation_worker(
    interval_minutes: Optional[int] = None, run_once: bool = False
) -> None:
    """
    Start the reconciliation worker.

    Args:
        interval_minutes: Override of report_update_frequency
        run_once: Run a single tick and exit
    """
    settings = get_settings()
    if interval_minutes is not None:
        settings = settings.model_copy(update={"report_update_frequency": interval_minutes})

    setup_logging(settings)
    interval = settings.report_update_frequency * 60

    logger.info(
        "reconciliation_worker_starting",
        interval_minutes=settings.report_update_frequency,
        interface=settings.microtxn_interface,
    )

    if settings.metrics_port:
        start_http_server(settings.metrics_port)
        logger.info("metrics_server_started", port=settings.metrics_port)

    running = True

    def signal_handler(sig: int, frame: Any) -> None:
        nonlocal running
        logger.info("reconciliation_worker_shutdown_signal_received", signal=sig)
        running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    db_engine = create_engine(settings)
    steam_client = SteamClient(settings)

    try:
        await init_db(db_engine)
        engine = ReconciliationEngine(steam_client, TransactionStore(db_engine), settings)

        slot_start = time.monotonic()
        while running:
            try:
                await engine.run_tick()
            except Exception as e:
                # Keep the schedule alive; the next window overlaps this one
                logger.error("reconciliation_execution_error", error=str(e), exc_info=True)

            if run_once:
                break

            delay, skipped = seconds_until_next_slot(slot_start, time.monotonic(), interval)
            if skipped:
                logger.warning("reconciliation_slots_skipped", skipped=skipped)
            slot_start += (skipped + 1) * interval

            while delay > 0 and running:
                sleep_time = min(delay, SHUTDOWN_POLL_SECONDS)
                await asyncio.sleep(sleep_time)
                delay -= sleep_time

    except Exception as e:
        logger.error("reconciliation_worker_error", error=str(e))
        raise
    finally:
        await steam_client.close()
        await close_db(db_engine)
        logger.info("reconciliation_worker_stopped")


def main(argv: Optional[list] = None) -> None:
    """Console entry point."""
    parser = argparse.ArgumentParser(description="Steam billing reconciliation worker")
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Minutes between reconciliation ticks (default: REPORT_UPDATE_FREQUENCY)",
    )
    parser.add_argument("--once", action="store_true", help="Run a single tick and exit")
    args = parser.parse_args(argv)

    asyncio.run(start_reconciliation_worker(interval_minutes=args.interval, run_once=args.once))


if __name__ == "__main__":
    main()
