"""
Unit tests for order id generation.
"""
import threading
from typing import List

import pytest

from steam_billing.core.order_id import (
    EPOCH_MS,
    SEQUENCE_MODULO,
    OrderIdGenerator,
    decode_order_id,
    generate_order_id,
)

FROZEN_MS = EPOCH_MS + 123_456_789


class TestOrderIdGenerator:
    """Test suite for OrderIdGenerator."""

    @pytest.mark.unit
    def test_packs_timestamp_shard_and_sequence(self) -> None:
        """Test id layout."""
        generator = OrderIdGenerator(shard_id=420, sequence_start=100, clock=lambda: FROZEN_MS)

        order_id = generator.generate()

        assert order_id.isdigit()
        assert decode_order_id(order_id) == (FROZEN_MS, 420, 100)

    @pytest.mark.unit
    def test_shard_is_reduced_modulo_1024(self) -> None:
        """Test oversized shard ids wrap."""
        generator = OrderIdGenerator(shard_id=1024 + 5, clock=lambda: FROZEN_MS)

        _, shard, _ = decode_order_id(generator.generate())

        assert shard == 5

    @pytest.mark.unit
    def test_unique_within_same_millisecond(self) -> None:
        """Test 4096 ids issued in one millisecond are all distinct."""
        generator = OrderIdGenerator(clock=lambda: FROZEN_MS)

        ids = {generator.generate() for _ in range(SEQUENCE_MODULO)}

        assert len(ids) == SEQUENCE_MODULO

    @pytest.mark.unit
    def test_sequence_wraps_after_4096_in_same_millisecond(self) -> None:
        """Test the documented limit: the 4097th id repeats the first."""
        generator = OrderIdGenerator(clock=lambda: FROZEN_MS)

        first = generator.generate()
        for _ in range(SEQUENCE_MODULO - 1):
            generator.generate()

        assert generator.generate() == first

    @pytest.mark.unit
    def test_ids_increase_with_time(self) -> None:
        """Test ids from later milliseconds sort after earlier ones."""
        ticks = iter(range(FROZEN_MS, FROZEN_MS + 50))
        generator = OrderIdGenerator(sequence_start=4000, clock=lambda: next(ticks))

        ids = [int(generator.generate()) for _ in range(50)]

        assert ids == sorted(ids)

    @pytest.mark.unit
    def test_default_generator(self) -> None:
        """Test module-level helper returns distinct ids."""
        assert generate_order_id() != generate_order_id()

    @pytest.mark.race
    def test_concurrent_generation_is_unique(self) -> None:
        """Test concurrent threads never draw the same sequence value."""
        generator = OrderIdGenerator(clock=lambda: FROZEN_MS)
        results: List[str] = []
        results_lock = threading.Lock()

        def worker() -> None:
            ids = [generator.generate() for _ in range(500)]
            with results_lock:
                results.extend(ids)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 4000
        assert len(set(results)) == 4000
