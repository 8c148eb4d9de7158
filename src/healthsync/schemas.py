"""Pydantic wire schemas for the local server JSON contract and the radio link.

The domain dataclasses in ``models`` never touch JSON directly; every
payload crossing a transport boundary goes through one of these schemas so
malformed input surfaces as a ``DecodingError`` rather than a stray
``KeyError`` deep inside the coordinator.

JSON shapes (timestamps ISO-8601 UTC, ``Z`` suffix):

    HeartRate:  {id, timestamp, value, confidence?}
    StepCount:  {id, timestamp, count, duration?}            duration in seconds
    Sleep:      {id, timestamp, startTime, endTime, stages: [{stage, startTime, endTime}]}
    Workout:    {id, timestamp, type, startTime, endTime, duration, totalDistance,
                 totalCalories, averageHeartRate?, maxHeartRate?,
                 route: [{latitude, longitude, altitude?, timestamp, speed?, accuracy?}]}
    Batch:      {id, timestamp, heartRateData, stepCountData, sleepData, workoutData,
                 hasMore?, nextCursor?}
    SyncState:  {lastHeartRateSync, lastStepCountSync, lastSleepSync,
                 lastWorkoutSync, lastFullSync?}
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.healthsync.errors import DecodingError, EncodingError
from src.healthsync.models import (
    EPOCH,
    Batch,
    HeartRate,
    LocationPoint,
    Sleep,
    SleepStage,
    SleepStageKind,
    StepCount,
    SyncState,
    Workout,
    WorkoutKind,
    ensure_utc,
)

logger = logging.getLogger("healthsync.schemas")


class WireModel(BaseModel):
    """Base model with shared config for all wire payloads."""

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


# ---------- Records ----------


class HeartRatePayload(WireModel):
    id: str
    timestamp: datetime
    value: float = Field(ge=0, le=400)
    confidence: float | None = Field(default=None, ge=0, le=1)

    def to_domain(self) -> HeartRate:
        return HeartRate(
            id=self.id,
            timestamp=ensure_utc(self.timestamp),
            value_bpm=self.value,
            confidence=self.confidence,
        )

    @classmethod
    def from_domain(cls, record: HeartRate) -> "HeartRatePayload":
        return cls(
            id=record.id,
            timestamp=record.timestamp,
            value=record.value_bpm,
            confidence=record.confidence,
        )


class StepCountPayload(WireModel):
    id: str
    timestamp: datetime
    count: int = Field(ge=0)
    duration: float | None = Field(default=None, ge=0)

    def to_domain(self) -> StepCount:
        return StepCount(
            id=self.id,
            timestamp=ensure_utc(self.timestamp),
            count=self.count,
            duration=timedelta(seconds=self.duration) if self.duration is not None else None,
        )

    @classmethod
    def from_domain(cls, record: StepCount) -> "StepCountPayload":
        return cls(
            id=record.id,
            timestamp=record.timestamp,
            count=record.count,
            duration=record.duration.total_seconds() if record.duration is not None else None,
        )


class SleepStagePayload(WireModel):
    stage: SleepStageKind = SleepStageKind.UNKNOWN
    start_time: datetime = Field(alias="startTime")
    end_time: datetime = Field(alias="endTime")


class SleepPayload(WireModel):
    id: str
    timestamp: datetime
    start_time: datetime = Field(alias="startTime")
    end_time: datetime = Field(alias="endTime")
    stages: list[SleepStagePayload] = Field(default_factory=list)

    def to_domain(self) -> Sleep:
        return Sleep(
            id=self.id,
            timestamp=ensure_utc(self.timestamp),
            start=ensure_utc(self.start_time),
            end=ensure_utc(self.end_time),
            stages=tuple(
                SleepStage(
                    stage_kind=s.stage,
                    start=ensure_utc(s.start_time),
                    end=ensure_utc(s.end_time),
                )
                for s in self.stages
            ),
        )

    @classmethod
    def from_domain(cls, record: Sleep) -> "SleepPayload":
        return cls(
            id=record.id,
            timestamp=record.timestamp,
            start_time=record.start,
            end_time=record.end,
            stages=[
                SleepStagePayload(stage=s.stage_kind, start_time=s.start, end_time=s.end)
                for s in record.stages
            ],
        )


class LocationPointPayload(WireModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    altitude: float | None = None
    timestamp: datetime
    speed: float | None = None
    accuracy: float | None = None


class WorkoutPayload(WireModel):
    id: str
    timestamp: datetime
    kind: WorkoutKind = Field(default=WorkoutKind.OTHER, alias="type")
    start_time: datetime = Field(alias="startTime")
    end_time: datetime = Field(alias="endTime")
    duration: float | None = None  # derived; ignored on decode
    total_distance: float = Field(default=0.0, ge=0, alias="totalDistance")
    total_calories: float = Field(default=0.0, ge=0, alias="totalCalories")
    average_heart_rate: float | None = Field(default=None, alias="averageHeartRate")
    max_heart_rate: float | None = Field(default=None, alias="maxHeartRate")
    route: list[LocationPointPayload] = Field(default_factory=list)

    def to_domain(self) -> Workout:
        return Workout(
            id=self.id,
            timestamp=ensure_utc(self.timestamp),
            kind=self.kind,
            start=ensure_utc(self.start_time),
            end=ensure_utc(self.end_time),
            total_distance_meters=self.total_distance,
            total_calories=self.total_calories,
            avg_heart_rate=self.average_heart_rate,
            max_heart_rate=self.max_heart_rate,
            route=tuple(
                LocationPoint(
                    lat=p.latitude,
                    lon=p.longitude,
                    timestamp=ensure_utc(p.timestamp),
                    altitude=p.altitude,
                    speed=p.speed,
                    accuracy=p.accuracy,
                )
                for p in self.route
            ),
        )

    @classmethod
    def from_domain(cls, record: Workout) -> "WorkoutPayload":
        return cls(
            id=record.id,
            timestamp=record.timestamp,
            kind=record.kind,
            start_time=record.start,
            end_time=record.end,
            duration=record.duration.total_seconds(),
            total_distance=record.total_distance_meters,
            total_calories=record.total_calories,
            average_heart_rate=record.avg_heart_rate,
            max_heart_rate=record.max_heart_rate,
            route=[
                LocationPointPayload(
                    latitude=p.lat,
                    longitude=p.lon,
                    altitude=p.altitude,
                    timestamp=p.timestamp,
                    speed=p.speed,
                    accuracy=p.accuracy,
                )
                for p in record.route
            ],
        )


# ---------- Batch ----------


class BatchPayload(WireModel):
    id: str
    timestamp: datetime
    heart_rate_data: list[HeartRatePayload] = Field(default_factory=list, alias="heartRateData")
    step_count_data: list[StepCountPayload] = Field(default_factory=list, alias="stepCountData")
    sleep_data: list[SleepPayload] = Field(default_factory=list, alias="sleepData")
    workout_data: list[WorkoutPayload] = Field(default_factory=list, alias="workoutData")
    has_more: bool = Field(default=False, alias="hasMore")
    next_cursor: str | None = Field(default=None, alias="nextCursor")

    def to_domain(self) -> Batch:
        return Batch(
            id=self.id,
            created_at=ensure_utc(self.timestamp),
            heart_rate=tuple(r.to_domain() for r in self.heart_rate_data),
            step_count=tuple(r.to_domain() for r in self.step_count_data),
            sleep=tuple(r.to_domain() for r in self.sleep_data),
            workout=tuple(r.to_domain() for r in self.workout_data),
        )

    @classmethod
    def from_domain(cls, batch: Batch) -> "BatchPayload":
        return cls(
            id=batch.id,
            timestamp=batch.created_at,
            heart_rate_data=[HeartRatePayload.from_domain(r) for r in batch.heart_rate],
            step_count_data=[StepCountPayload.from_domain(r) for r in batch.step_count],
            sleep_data=[SleepPayload.from_domain(r) for r in batch.sleep],
            workout_data=[WorkoutPayload.from_domain(r) for r in batch.workout],
        )


# ---------- Sync state ----------


class SyncStatePayload(WireModel):
    last_heart_rate_sync: datetime | None = Field(default=None, alias="lastHeartRateSync")
    last_step_count_sync: datetime | None = Field(default=None, alias="lastStepCountSync")
    last_sleep_sync: datetime | None = Field(default=None, alias="lastSleepSync")
    last_workout_sync: datetime | None = Field(default=None, alias="lastWorkoutSync")
    last_full_sync: datetime | None = Field(default=None, alias="lastFullSync")

    def to_domain(self) -> SyncState:
        # Missing watermarks mean "never synced"
        def _mark(value: datetime | None) -> datetime:
            return ensure_utc(value) if value is not None else EPOCH

        return SyncState(
            last_heart_rate_sync=_mark(self.last_heart_rate_sync),
            last_step_count_sync=_mark(self.last_step_count_sync),
            last_sleep_sync=_mark(self.last_sleep_sync),
            last_workout_sync=_mark(self.last_workout_sync),
            last_full_sync=ensure_utc(self.last_full_sync) if self.last_full_sync else None,
        )

    @classmethod
    def from_domain(cls, state: SyncState) -> "SyncStatePayload":
        return cls(
            last_heart_rate_sync=state.last_heart_rate_sync,
            last_step_count_sync=state.last_step_count_sync,
            last_sleep_sync=state.last_sleep_sync,
            last_workout_sync=state.last_workout_sync,
            last_full_sync=state.last_full_sync,
        )


# ---------- Server responses ----------


class HealthCheckPayload(WireModel):
    status: str
    version: str | None = None
    timestamp: datetime | None = None


class UploadAckPayload(WireModel):
    status: str = "success"
    processed_count: int = Field(default=0, alias="processedCount")
    timestamp: datetime | None = None


# ---------------------------------------------------------------------------
# Encode / decode helpers
# ---------------------------------------------------------------------------


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with a ``Z`` suffix, as used in query parameters."""
    return ensure_utc(value).isoformat().replace("+00:00", "Z")


def batch_to_wire(batch: Batch) -> dict[str, Any]:
    """Serialize a batch to its JSON-compatible dict (no paging fields)."""
    try:
        payload = BatchPayload.from_domain(batch)
    except ValidationError as exc:
        raise EncodingError(f"Batch {batch.id} failed validation: {exc}") from exc
    return payload.model_dump(mode="json", by_alias=True, exclude={"has_more", "next_cursor"})


def encode_batch(batch: Batch) -> bytes:
    return json.dumps(batch_to_wire(batch), separators=(",", ":")).encode("utf-8")


def decode_batch_page(data: bytes | str | dict) -> BatchPayload:
    """Parse one batch page, keeping the ``hasMore`` / ``nextCursor`` paging fields."""
    try:
        if isinstance(data, dict):
            return BatchPayload.model_validate(data)
        return BatchPayload.model_validate_json(data)
    except ValidationError as exc:
        raise DecodingError(f"Invalid batch payload: {exc.error_count()} error(s): {exc}") from exc


def decode_batch(data: bytes | str | dict) -> Batch:
    return decode_batch_page(data).to_domain()


def encode_sync_state(state: SyncState) -> bytes:
    payload = SyncStatePayload.from_domain(state)
    return payload.model_dump_json(by_alias=True).encode("utf-8")


def decode_sync_state(data: bytes | str | dict) -> SyncState:
    try:
        if isinstance(data, dict):
            return SyncStatePayload.model_validate(data).to_domain()
        return SyncStatePayload.model_validate_json(data).to_domain()
    except ValidationError as exc:
        raise DecodingError(f"Invalid sync state payload: {exc}") from exc
