"""Tests for the data model: Batch value semantics and SyncState watermarks."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.healthsync.models import (
    EPOCH,
    Batch,
    DataType,
    SyncState,
    ensure_utc,
)
from src.healthsync.tests.fakes import at, hr, sleep, steps, workout


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------


class TestBatch:
    def test_new_batch_is_empty(self) -> None:
        batch = Batch()
        assert batch.is_empty
        assert batch.total_count == 0

    def test_build_groups_records_by_type(self) -> None:
        batch = Batch.build([
            hr("a", at(8)),
            steps("b", at(9)),
            hr("c", at(7)),
            workout("w", at(6), at(7)),
        ])
        assert [r.id for r in batch.heart_rate] == ["a", "c"]
        assert [r.id for r in batch.step_count] == ["b"]
        assert [r.id for r in batch.workout] == ["w"]
        assert batch.sleep == ()
        assert batch.total_count == 4
        assert not batch.is_empty

    def test_latest_timestamp_is_max_not_last(self) -> None:
        batch = Batch.build([hr("a", at(9)), hr("b", at(11)), hr("c", at(10))])
        assert batch.latest_timestamp(DataType.HEART_RATE) == at(11)
        assert batch.latest_timestamp(DataType.SLEEP) is None

    def test_merge_keeps_first_occurrence_of_an_id(self) -> None:
        first = Batch.build([hr("a", at(8), value=60.0)])
        second = Batch.build([hr("a", at(8), value=99.0), hr("b", at(9))])
        merged = first.merge(second)
        assert [r.id for r in merged.heart_rate] == ["a", "b"]
        assert merged.heart_rate[0].value_bpm == 60.0
        assert merged.id == first.id

    def test_same_id_different_types_are_distinct(self) -> None:
        merged = Batch.build([hr("x", at(8))]).merge(Batch.build([steps("x", at(8))]))
        assert merged.total_count == 2

    def test_without_removes_by_type_and_id(self) -> None:
        batch = Batch.build([hr("a", at(8)), steps("a", at(8)), hr("b", at(9))])
        remaining = batch.without([hr("a", at(8))])
        assert [r.id for r in remaining.heart_rate] == ["b"]
        assert [r.id for r in remaining.step_count] == ["a"]
        # original untouched
        assert batch.total_count == 3

    def test_newer_than_filters_per_type(self) -> None:
        state = SyncState(last_heart_rate_sync=at(9))
        batch = Batch.build([hr("old", at(9)), hr("new", at(10)), steps("s", at(1))])
        pending = batch.newer_than(state)
        assert [r.id for r in pending.heart_rate] == ["new"]
        assert [r.id for r in pending.step_count] == ["s"]

    def test_batch_is_immutable(self) -> None:
        batch = Batch()
        with pytest.raises(AttributeError):
            batch.heart_rate = (hr("a", at(8)),)  # type: ignore[misc]


# ---------------------------------------------------------------------------
# SyncState
# ---------------------------------------------------------------------------


class TestSyncState:
    def test_fresh_state_is_epoch(self) -> None:
        state = SyncState()
        for data_type in DataType:
            assert state.watermark(data_type) == EPOCH
        assert state.last_full_sync is None
        assert state.earliest_watermark() == EPOCH

    def test_advance_moves_forward_and_stamps_full_sync(self) -> None:
        state = SyncState()
        now = at(12)
        assert state.advance(DataType.SLEEP, at(7), now=now)
        assert state.last_sleep_sync == at(7)
        assert state.last_full_sync == now

    def test_advance_never_moves_backward(self) -> None:
        state = SyncState(last_heart_rate_sync=at(10))
        assert not state.advance(DataType.HEART_RATE, at(9))
        assert not state.advance(DataType.HEART_RATE, at(10))
        assert state.last_heart_rate_sync == at(10)
        assert state.last_full_sync is None

    def test_advance_from_batch_uses_max_per_type(self) -> None:
        state = SyncState()
        batch = Batch.build([
            hr("a", at(8)),
            hr("b", at(11)),
            hr("c", at(9)),
            steps("d", at(10)),
        ])
        moved = state.advance_from_batch(batch, now=at(12))
        assert set(moved) == {DataType.HEART_RATE, DataType.STEP_COUNT}
        assert state.last_heart_rate_sync == at(11)
        assert state.last_step_count_sync == at(10)
        assert state.last_sleep_sync == EPOCH

    def test_earliest_watermark_is_min_of_four(self) -> None:
        state = SyncState(
            last_heart_rate_sync=at(10),
            last_step_count_sync=at(8),
            last_sleep_sync=at(9),
            last_workout_sync=at(11),
        )
        assert state.earliest_watermark() == at(8)

    def test_copy_is_independent(self) -> None:
        state = SyncState()
        clone = state.copy()
        clone.advance(DataType.WORKOUT, at(5))
        assert state.last_workout_sync == EPOCH

    def test_advance_normalizes_offset_timestamps(self) -> None:
        state = SyncState()
        plus_two = timezone(timedelta(hours=2))
        state.advance(DataType.HEART_RATE, datetime(2026, 2, 23, 10, 0, tzinfo=plus_two))
        assert state.last_heart_rate_sync == at(8)
        assert state.last_heart_rate_sync.tzinfo == timezone.utc


def test_ensure_utc_treats_naive_as_utc() -> None:
    assert ensure_utc(datetime(2026, 2, 23, 8, 0)) == at(8)


def test_sleep_record_orders_by_session_end() -> None:
    record = sleep("s1", at(0), at(7))
    assert record.timestamp == at(7)
    assert record.DATA_TYPE is DataType.SLEEP
