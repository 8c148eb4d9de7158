"""Tests for the JSON wire schemas."""

from __future__ import annotations

import json
from datetime import timedelta

import pytest

from src.healthsync.errors import DecodingError
from src.healthsync.models import EPOCH, Batch, SleepStage, SleepStageKind, SyncState, WorkoutKind
from src.healthsync.schemas import (
    batch_to_wire,
    decode_batch,
    decode_batch_page,
    decode_sync_state,
    encode_batch,
    encode_sync_state,
    format_timestamp,
)
from src.healthsync.tests.fakes import at, hr, route, sleep, steps, workout


SERVER_PAGE = {
    "id": "batch-1",
    "timestamp": "2026-02-23T08:00:00Z",
    "heartRateData": [
        {"id": "hr-1", "timestamp": "2026-02-23T07:55:00Z", "value": 62, "confidence": 0.9}
    ],
    "stepCountData": [
        {"id": "st-1", "timestamp": "2026-02-23T07:00:00Z", "count": 812, "duration": 600}
    ],
    "sleepData": [
        {
            "id": "sl-1",
            "timestamp": "2026-02-23T07:00:00Z",
            "startTime": "2026-02-22T23:00:00Z",
            "endTime": "2026-02-23T07:00:00Z",
            "stages": [
                {"stage": "LIGHT", "startTime": "2026-02-22T23:00:00Z", "endTime": "2026-02-23T01:00:00Z"},
                {"stage": "DEEP", "startTime": "2026-02-23T01:00:00Z", "endTime": "2026-02-23T02:30:00Z"},
            ],
        }
    ],
    "workoutData": [
        {
            "id": "wo-1",
            "timestamp": "2026-02-23T06:45:00Z",
            "type": "CYCLING",
            "startTime": "2026-02-23T06:00:00Z",
            "endTime": "2026-02-23T06:45:00Z",
            "duration": 2700,
            "totalDistance": 15000,
            "totalCalories": 420,
            "averageHeartRate": 141,
            "route": [{"latitude": 40.7, "longitude": -74.0, "timestamp": "2026-02-23T06:00:00Z"}],
        }
    ],
    "hasMore": True,
    "nextCursor": "abc",
}


class TestDecodeServerPage:
    def test_decodes_all_record_types(self) -> None:
        batch = decode_batch(SERVER_PAGE)
        assert batch.id == "batch-1"
        assert batch.total_count == 4
        assert batch.heart_rate[0].value_bpm == 62
        assert batch.heart_rate[0].confidence == pytest.approx(0.9)
        assert batch.step_count[0].duration == timedelta(seconds=600)

    def test_paging_fields(self) -> None:
        payload = decode_batch_page(json.dumps(SERVER_PAGE).encode())
        assert payload.has_more is True
        assert payload.next_cursor == "abc"

    def test_sleep_stages_in_order(self) -> None:
        record = decode_batch(SERVER_PAGE).sleep[0]
        assert [s.stage_kind for s in record.stages] == [SleepStageKind.LIGHT, SleepStageKind.DEEP]
        assert record.start == at(-1)

    def test_workout_type_alias_and_route(self) -> None:
        record = decode_batch(SERVER_PAGE).workout[0]
        assert record.kind is WorkoutKind.CYCLING
        assert record.total_distance_meters == 15000
        assert record.avg_heart_rate == 141
        assert record.max_heart_rate is None
        assert record.duration == timedelta(minutes=45)
        assert record.route[0].lat == pytest.approx(40.7)

    def test_timestamps_are_utc(self) -> None:
        record = decode_batch(SERVER_PAGE).heart_rate[0]
        assert record.timestamp == at(7, 55)

    def test_missing_sections_default_empty(self) -> None:
        batch = decode_batch({"id": "b", "timestamp": "2026-02-23T08:00:00Z"})
        assert batch.is_empty

    def test_invalid_payload_raises_decoding_error(self) -> None:
        with pytest.raises(DecodingError):
            decode_batch(b'{"id": "b"}')

    def test_not_json_raises_decoding_error(self) -> None:
        with pytest.raises(DecodingError):
            decode_batch(b"<html>oops</html>")

    def test_out_of_range_heart_rate_rejected(self) -> None:
        bad = {**SERVER_PAGE, "heartRateData": [{"id": "x", "timestamp": "2026-02-23T08:00:00Z", "value": -5}]}
        with pytest.raises(DecodingError):
            decode_batch(bad)


class TestEncode:
    def test_wire_uses_camel_case_and_omits_paging(self) -> None:
        batch = Batch.build([hr("a", at(8))], batch_id="b1", created_at=at(9))
        wire = batch_to_wire(batch)
        assert set(wire) == {"id", "timestamp", "heartRateData", "stepCountData", "sleepData", "workoutData"}
        assert wire["heartRateData"][0]["value"] == 70.0
        assert wire["timestamp"].endswith("Z")

    def test_workout_duration_is_derived(self) -> None:
        batch = Batch.build([workout("w", at(6), at(7), route=route(2, at(6)))])
        wire = batch_to_wire(batch)
        assert wire["workoutData"][0]["duration"] == 3600
        assert wire["workoutData"][0]["type"] == "RUNNING"

    def test_full_batch_survives_the_wire(self) -> None:
        batch = Batch.build(
            [
                hr("a", at(8)),
                steps("b", at(9)),
                sleep("c", at(0), at(7), [SleepStage(SleepStageKind.REM, at(1), at(2))]),
                workout("d", at(6), at(7), total_distance_meters=5000.0, route=route(3, at(6))),
            ],
            batch_id="b1",
            created_at=at(10),
        )
        assert decode_batch(encode_batch(batch)) == batch


class TestSyncStateWire:
    def test_missing_watermarks_mean_epoch(self) -> None:
        state = decode_sync_state(b'{"lastHeartRateSync": "2026-02-23T08:00:00Z"}')
        assert state.last_heart_rate_sync == at(8)
        assert state.last_sleep_sync == EPOCH
        assert state.last_full_sync is None

    def test_encoded_keys(self) -> None:
        raw = json.loads(encode_sync_state(SyncState(last_workout_sync=at(5))))
        assert raw["lastWorkoutSync"] == "2026-02-23T05:00:00Z"
        assert "lastHeartRateSync" in raw

    def test_garbage_raises(self) -> None:
        with pytest.raises(DecodingError):
            decode_sync_state(b"not json")


def test_format_timestamp_uses_z_suffix() -> None:
    assert format_timestamp(EPOCH) == "1970-01-01T00:00:00Z"
    assert format_timestamp(at(8, 30)) == "2026-02-23T08:30:00Z"
