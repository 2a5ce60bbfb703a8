"""
Order identifier generation.

Order ids are snowflake-style 64-bit integers rendered in base 10:

    (ms since 2020-01-01T00:00Z << 22) | (shard % 1024) << 12 | (sequence % 4096)

Ids generated by one process are unique as long as fewer than 4096 are issued
within the same millisecond; past that the sequence wraps and ids repeat.
"""
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

EPOCH_MS = int(datetime(2020, 1, 1, tzinfo=timezone.utc).timestamp() * 1000)

TIMESTAMP_SHIFT = 22
SHARD_SHIFT = 12
SHARD_MODULO = 1024
SEQUENCE_MODULO = 4096


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class OrderIdGenerator:
    """Process-wide, time-ordered order id source."""

    def __init__(
        self,
        shard_id: int = 420,
        sequence_start: int = 100,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize generator.

        Args:
            shard_id: Shard value packed into every id
            sequence_start: Initial sequence counter value
            clock: Millisecond wall clock (injectable for tests)
        """
        self.shard_id = shard_id
        self._sequence = sequence_start
        self._clock = clock or _now_ms
        self._lock = threading.Lock()

    def _next_sequence(self) -> int:
        with self._lock:
            value = self._sequence
            self._sequence += 1
        return value % SEQUENCE_MODULO

    def generate(self) -> str:
        """Return a new order id."""
        sequence = self._next_sequence()
        timestamp = self._clock() - EPOCH_MS
        order_id = (
            (timestamp << TIMESTAMP_SHIFT)
            | ((self.shard_id % SHARD_MODULO) << SHARD_SHIFT)
            | sequence
        )
        return str(order_id)


def decode_order_id(order_id: str) -> tuple[int, int, int]:
    """
    Split an order id into its parts.

    Returns:
        tuple: (unix timestamp in ms, shard, sequence)
    """
    value = int(order_id)
    return (
        (value >> TIMESTAMP_SHIFT) + EPOCH_MS,
        (value >> SHARD_SHIFT) % SHARD_MODULO,
        value % SEQUENCE_MODULO,
    )


_default_generator = OrderIdGenerator()


def generate_order_id() -> str:
    """Generate an order id from the process-wide default generator."""
    return _default_generator.generate()
