"""Canonical data models for the HealthSync hybrid sync engine.

Every transport returns and accepts these types, the sink adapter consumes
them, and the coordinator tracks progress with ``SyncState``.  Records and
batches are immutable value objects; ``SyncState`` is the single mutable
record and is owned exclusively by the coordinator.

All timestamps are timezone-aware UTC datetimes.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import ClassVar, Iterable

logger = logging.getLogger("healthsync.models")

#: "Beginning of time" watermark used on first run and after a full resync.
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_record_id() -> str:
    """Return a fresh, stable identifier for a locally produced record."""
    return str(uuid.uuid4())


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are assumed UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class DataType(str, Enum):
    """The four record families that carry their own watermark."""

    HEART_RATE = "heart_rate"
    STEP_COUNT = "step_count"
    SLEEP = "sleep"
    WORKOUT = "workout"


class SleepStageKind(str, Enum):
    AWAKE = "AWAKE"
    LIGHT = "LIGHT"
    DEEP = "DEEP"
    REM = "REM"
    UNKNOWN = "UNKNOWN"


class WorkoutKind(str, Enum):
    RUNNING = "RUNNING"
    WALKING = "WALKING"
    CYCLING = "CYCLING"
    SWIMMING = "SWIMMING"
    OTHER = "OTHER"


class TransportStatus(str, Enum):
    """Which transport the coordinator is (or would be) using.

    Never persisted; recomputed from the live connection flags of the
    transport clients whenever either of them changes.
    """

    LOCAL_SERVER = "LOCAL_SERVER"
    RADIO = "RADIO"
    OFFLINE = "OFFLINE"
    ERROR = "ERROR"


# ---------------------------------------------------------------------------
# Health records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HealthRecord:
    """Base for every synced data point.

    Attributes:
        id:        Identifier unique within the record's type and stable
                   across retries.  Used for dedup on re-send.
        timestamp: UTC instant the record is ordered by for watermarking.
    """

    DATA_TYPE: ClassVar[DataType]

    id: str
    timestamp: datetime


@dataclass(frozen=True)
class HeartRate(HealthRecord):
    DATA_TYPE: ClassVar[DataType] = DataType.HEART_RATE

    value_bpm: float
    confidence: float | None = None


@dataclass(frozen=True)
class StepCount(HealthRecord):
    DATA_TYPE: ClassVar[DataType] = DataType.STEP_COUNT

    count: int
    duration: timedelta | None = None

    @property
    def end(self) -> datetime:
        """End of the counting interval (the timestamp itself if no duration)."""
        if self.duration is None:
            return self.timestamp
        return self.timestamp + self.duration


@dataclass(frozen=True)
class SleepStage:
    stage_kind: SleepStageKind
    start: datetime
    end: datetime


@dataclass(frozen=True)
class Sleep(HealthRecord):
    """One sleep session with its ordered stage breakdown."""

    DATA_TYPE: ClassVar[DataType] = DataType.SLEEP

    start: datetime
    end: datetime
    stages: tuple[SleepStage, ...] = ()


@dataclass(frozen=True)
class LocationPoint:
    lat: float
    lon: float
    timestamp: datetime
    altitude: float | None = None
    speed: float | None = None
    accuracy: float | None = None


@dataclass(frozen=True)
class Workout(HealthRecord):
    """A workout session with optional GPS route.

    Attributes:
        kind:                  Activity type.
        start:                 UTC start of the session.
        end:                   UTC end of the session.
        total_distance_meters: Distance covered; 0 when not tracked.
        total_calories:        Active energy in kcal; 0 when not tracked.
        avg_heart_rate:        Average BPM over the session, if known.
        max_heart_rate:        Peak BPM over the session, if known.
        route:                 Ordered GPS points.
    """

    DATA_TYPE: ClassVar[DataType] = DataType.WORKOUT

    kind: WorkoutKind
    start: datetime
    end: datetime
    total_distance_meters: float = 0.0
    total_calories: float = 0.0
    avg_heart_rate: float | None = None
    max_heart_rate: float | None = None
    route: tuple[LocationPoint, ...] = ()

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Batch:
    """Bundle of mixed-type records exchanged in one transfer.

    Batches are never mutated in place; ``merge`` and ``without`` build new
    ones.

    Attributes:
        id:         Batch identifier.
        created_at: UTC creation time.
        heart_rate: Heart-rate samples.
        step_count: Step-count samples.
        sleep:      Sleep sessions.
        workout:    Workouts.
    """

    id: str = field(default_factory=new_record_id)
    created_at: datetime = field(default_factory=utc_now)
    heart_rate: tuple[HeartRate, ...] = ()
    step_count: tuple[StepCount, ...] = ()
    sleep: tuple[Sleep, ...] = ()
    workout: tuple[Workout, ...] = ()

    @classmethod
    def build(
        cls,
        records: Iterable[HealthRecord],
        batch_id: str | None = None,
        created_at: datetime | None = None,
    ) -> "Batch":
        """Group arbitrary records into a new batch, preserving their order."""
        grouped: dict[DataType, list[HealthRecord]] = {t: [] for t in DataType}
        for record in records:
            grouped[record.DATA_TYPE].append(record)
        return cls(
            id=batch_id or new_record_id(),
            created_at=created_at or utc_now(),
            heart_rate=tuple(grouped[DataType.HEART_RATE]),
            step_count=tuple(grouped[DataType.STEP_COUNT]),
            sleep=tuple(grouped[DataType.SLEEP]),
            workout=tuple(grouped[DataType.WORKOUT]),
        )

    def records(self, data_type: DataType) -> tuple[HealthRecord, ...]:
        return {
            DataType.HEART_RATE: self.heart_rate,
            DataType.STEP_COUNT: self.step_count,
            DataType.SLEEP: self.sleep,
            DataType.WORKOUT: self.workout,
        }[data_type]

    def all_records(self) -> list[HealthRecord]:
        return [r for t in DataType for r in self.records(t)]

    @property
    def is_empty(self) -> bool:
        return self.total_count == 0

    @property
    def total_count(self) -> int:
        return (
            len(self.heart_rate)
            + len(self.step_count)
            + len(self.sleep)
            + len(self.workout)
        )

    def latest_timestamp(self, data_type: DataType) -> datetime | None:
        """Max timestamp among records of ``data_type``, or None when there are none."""
        stamps = [r.timestamp for r in self.records(data_type)]
        return max(stamps) if stamps else None

    def merge(self, other: "Batch") -> "Batch":
        """Return a new batch holding both batches' records, first id wins."""
        seen: set[tuple[DataType, str]] = set()
        merged: list[HealthRecord] = []
        for record in self.all_records() + other.all_records():
            key = (record.DATA_TYPE, record.id)
            if key in seen:
                continue
            seen.add(key)
            merged.append(record)
        return Batch.build(merged, batch_id=self.id, created_at=self.created_at)

    def without(self, records: Iterable[HealthRecord]) -> "Batch":
        """Return a new batch with the given records (matched by type + id) removed."""
        drop = {(r.DATA_TYPE, r.id) for r in records}
        kept = [r for r in self.all_records() if (r.DATA_TYPE, r.id) not in drop]
        return Batch.build(kept, batch_id=self.id, created_at=self.created_at)

    def newer_than(self, state: "SyncState") -> "Batch":
        """Records strictly newer than ``state``'s watermark for their type."""
        kept = [
            r for r in self.all_records() if r.timestamp > state.watermark(r.DATA_TYPE)
        ]
        return Batch.build(kept)


# ---------------------------------------------------------------------------
# Sync state (watermarks)
# ---------------------------------------------------------------------------


@dataclass
class SyncState:
    """Per-type watermarks marking the boundary of already-synced data.

    A fresh state has every watermark at the epoch, meaning "sync
    everything".  Watermarks only ever move forward.

    Attributes:
        last_heart_rate_sync: Heart-rate watermark.
        last_step_count_sync: Step-count watermark.
        last_sleep_sync:      Sleep watermark.
        last_workout_sync:    Workout watermark.
        last_full_sync:       Stamped "now" on every successful watermark
                              update.  A liveness indicator only.
    """

    last_heart_rate_sync: datetime = EPOCH
    last_step_count_sync: datetime = EPOCH
    last_sleep_sync: datetime = EPOCH
    last_workout_sync: datetime = EPOCH
    last_full_sync: datetime | None = None

    _FIELDS: ClassVar[dict[DataType, str]] = {
        DataType.HEART_RATE: "last_heart_rate_sync",
        DataType.STEP_COUNT: "last_step_count_sync",
        DataType.SLEEP: "last_sleep_sync",
        DataType.WORKOUT: "last_workout_sync",
    }

    def watermark(self, data_type: DataType) -> datetime:
        return getattr(self, self._FIELDS[data_type])

    def earliest_watermark(self) -> datetime:
        return min(self.watermark(t) for t in DataType)

    def advance(
        self, data_type: DataType, timestamp: datetime, now: datetime | None = None
    ) -> bool:
        """Move one watermark to ``timestamp`` if it is later than the current one.

        Returns:
            True if the watermark moved.
        """
        timestamp = ensure_utc(timestamp)
        if timestamp <= self.watermark(data_type):
            return False
        setattr(self, self._FIELDS[data_type], timestamp)
        self.last_full_sync = now or utc_now()
        return True

    def advance_from_batch(self, batch: Batch, now: datetime | None = None) -> list[DataType]:
        """Advance each watermark to the max timestamp of its records in ``batch``."""
        moved = []
        for data_type in DataType:
            latest = batch.latest_timestamp(data_type)
            if latest is not None and self.advance(data_type, latest, now=now):
                moved.append(data_type)
        return moved

    def copy(self) -> "SyncState":
        return replace(self)


# ---------------------------------------------------------------------------
# Coordinator status snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SyncStatus:
    """Point-in-time view of the coordinator, returned by ``status()``.

    Attributes:
        transport:      Currently selected transport.
        is_active:      True while a sync cycle is in flight.
        progress:       0.0 – 1.0 progress of the current / last cycle.
        last_sync_time: UTC end of the last cycle.
        error_message:  Human-readable error of the last cycle, prefixed by
                        the subsystem that produced it.
        pending_count:  Records waiting in the retry and outbound queues.
    """

    transport: TransportStatus = TransportStatus.OFFLINE
    is_active: bool = False
    progress: float = 0.0
    last_sync_time: datetime | None = None
    error_message: str | None = None
    pending_count: int = 0
