"""Tests for the disk/memory staging decision"""

import pytest

from songrelay.media.storage_selector import (
    DEFAULT_CAPACITY,
    MIB,
    StorageDecision,
    decide,
    decide_thumbnail,
)
from songrelay.models.config import StorageMode


class TestDecide:
    def test_disk_mode_always_uses_disk(self):
        for size in (0, 1, 50 * MIB, 500 * MIB):
            assert decide(StorageMode.DISK, size, 100_000, 100, 100) == StorageDecision.DISK

    def test_memory_mode_with_enough_memory(self):
        assert decide(StorageMode.MEMORY, 50 * MIB, 200, 100, 100) == StorageDecision.MEMORY

    def test_memory_mode_falls_back_to_disk(self):
        # required = 50 + 100 = 150 > 149
        assert decide(StorageMode.MEMORY, 50 * MIB, 149, 100, 100) == StorageDecision.DISK

    def test_memory_mode_boundary_is_inclusive(self):
        assert decide(StorageMode.MEMORY, 50 * MIB, 150, 100, 100) == StorageDecision.MEMORY

    def test_memory_mode_ignores_threshold(self):
        assert decide(StorageMode.MEMORY, 300 * MIB, 10_000, 100, 10) == StorageDecision.MEMORY

    def test_hybrid_above_threshold_uses_disk_regardless_of_memory(self):
        assert decide(StorageMode.HYBRID, 101 * MIB, 1_000_000, 100, 0) == StorageDecision.DISK

    def test_hybrid_at_threshold_is_still_eligible(self):
        assert decide(StorageMode.HYBRID, 100 * MIB, 1_000, 100, 10) == StorageDecision.MEMORY

    def test_hybrid_satisfied_boundary(self):
        # required = 50 + 10 = 60 <= 70
        assert decide(StorageMode.HYBRID, 50 * MIB, 70, 100, 10) == StorageDecision.MEMORY

    def test_hybrid_unsatisfied_boundary(self):
        # required = 60 > 59
        assert decide(StorageMode.HYBRID, 50 * MIB, 59, 100, 10) == StorageDecision.DISK

    def test_size_is_floored_to_whole_mebibytes(self):
        # 50 MiB + 1 byte still counts as 50
        assert decide(StorageMode.MEMORY, 50 * MIB + 1, 60, 100, 10) == StorageDecision.MEMORY

    def test_unknown_size_uses_default_capacity(self):
        # default 10 MiB + buffer 10 = 20
        assert decide(StorageMode.HYBRID, 0, 20, 100, 10) == StorageDecision.MEMORY
        assert decide(StorageMode.HYBRID, 0, 19, 100, 10) == StorageDecision.DISK

    def test_unknown_size_with_custom_default_capacity(self):
        assert (
            decide(StorageMode.HYBRID, 0, 1_000, 5, 0, default_capacity=6 * MIB)
            == StorageDecision.DISK
        )

    @pytest.mark.parametrize("mode", list(StorageMode))
    def test_decision_is_deterministic(self, mode):
        first = decide(mode, 42 * MIB, 120, 100, 80)
        for _ in range(5):
            assert decide(mode, 42 * MIB, 120, 100, 80) == first

    def test_default_capacity_is_ten_mebibytes(self):
        assert DEFAULT_CAPACITY == 10 * MIB


class TestDecideThumbnail:
    def test_disk_mode_keeps_thumbnails_on_disk(self):
        assert decide_thumbnail(StorageMode.DISK, 1000) == StorageDecision.DISK

    @pytest.mark.parametrize("mode", [StorageMode.MEMORY, StorageMode.HYBRID])
    def test_small_thumbnails_stay_in_memory(self, mode):
        assert decide_thumbnail(mode, 5 * MIB - 1) == StorageDecision.MEMORY

    def test_large_thumbnails_go_to_disk(self):
        assert decide_thumbnail(StorageMode.HYBRID, 5 * MIB) == StorageDecision.DISK
