"""Health sink adapter: typed records → the external health store's write model.

The store itself is a platform collaborator behind the ``HealthStore`` ABC.
Mapping:

    HeartRate → one quantity sample (count/min) at the record timestamp
    StepCount → one quantity sample (count) spanning timestamp → timestamp + duration
    Sleep     → one IN_BED category sample for the session, plus one sample per stage
    Workout   → builder sequence: begin → distance? → calories? → end → finish,
                then route insert + finish when the route is non-empty (a route
                failure leaves the saved workout in place)

Every sample carries ``sync_identifier`` metadata (the record id) so the
store can upsert.  Records already written by this process are skipped.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Sequence, Union

from src.healthsync.dedup import InMemoryDedupCache, key_for
from src.healthsync.errors import SinkWriteError
from src.healthsync.models import (
    HealthRecord,
    HeartRate,
    LocationPoint,
    Sleep,
    SleepStageKind,
    StepCount,
    Workout,
    WorkoutKind,
)

logger = logging.getLogger("healthsync.sink")

# Health store type identifiers
HK_HEART_RATE = "HKQuantityTypeIdentifierHeartRate"
HK_STEP_COUNT = "HKQuantityTypeIdentifierStepCount"
HK_ACTIVE_ENERGY = "HKQuantityTypeIdentifierActiveEnergyBurned"
HK_DISTANCE_WALKING_RUNNING = "HKQuantityTypeIdentifierDistanceWalkingRunning"
HK_DISTANCE_CYCLING = "HKQuantityTypeIdentifierDistanceCycling"
HK_DISTANCE_SWIMMING = "HKQuantityTypeIdentifierDistanceSwimming"
HK_SLEEP_ANALYSIS = "HKCategoryTypeIdentifierSleepAnalysis"

META_SYNC_IDENTIFIER = "sync_identifier"
META_WAS_USER_ENTERED = "was_user_entered"


class SleepCategory(str, Enum):
    IN_BED = "HKCategoryValueSleepAnalysisInBed"
    AWAKE = "HKCategoryValueSleepAnalysisAwake"
    ASLEEP_CORE = "HKCategoryValueSleepAnalysisAsleepCore"
    ASLEEP_DEEP = "HKCategoryValueSleepAnalysisAsleepDeep"
    ASLEEP_REM = "HKCategoryValueSleepAnalysisAsleepREM"
    ASLEEP_UNSPECIFIED = "HKCategoryValueSleepAnalysisAsleepUnspecified"


# Stage kind → store category value
_SLEEP_STAGE_MAP: dict[SleepStageKind, SleepCategory] = {
    SleepStageKind.AWAKE: SleepCategory.AWAKE,
    SleepStageKind.LIGHT: SleepCategory.ASLEEP_CORE,
    SleepStageKind.DEEP: SleepCategory.ASLEEP_DEEP,
    SleepStageKind.REM: SleepCategory.ASLEEP_REM,
    SleepStageKind.UNKNOWN: SleepCategory.ASLEEP_UNSPECIFIED,
}

# Workout kind → distance quantity type
_DISTANCE_TYPE_MAP: dict[WorkoutKind, str] = {
    WorkoutKind.RUNNING: HK_DISTANCE_WALKING_RUNNING,
    WorkoutKind.WALKING: HK_DISTANCE_WALKING_RUNNING,
    WorkoutKind.CYCLING: HK_DISTANCE_CYCLING,
    WorkoutKind.SWIMMING: HK_DISTANCE_SWIMMING,
    WorkoutKind.OTHER: HK_DISTANCE_WALKING_RUNNING,
}


# ---------------------------------------------------------------------------
# Store write model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QuantitySample:
    quantity_type: str
    value: float
    unit: str
    start: datetime
    end: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CategorySample:
    category_type: str
    value: str
    start: datetime
    end: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


Sample = Union[QuantitySample, CategorySample]


class WorkoutBuilder(ABC):
    """Stepwise workout construction, one instance per workout."""

    @abstractmethod
    async def begin_collection(self, start: datetime) -> None:
        ...

    @abstractmethod
    async def add(self, samples: Sequence[QuantitySample]) -> None:
        ...

    @abstractmethod
    async def end_collection(self, end: datetime) -> None:
        ...

    @abstractmethod
    async def finish_workout(self) -> Any:
        """Finalize and return the store's handle for the saved workout."""


class RouteBuilder(ABC):
    @abstractmethod
    async def insert_route_data(self, points: Sequence[LocationPoint]) -> None:
        ...

    @abstractmethod
    async def finish_route(self, workout: Any, metadata: dict[str, Any]) -> None:
        """Attach the collected route to a finalized workout."""


class HealthStore(ABC):
    """Native health-data store.  Implementations raise on any write failure."""

    @abstractmethod
    async def save(self, samples: Sequence[Sample]) -> None:
        """Save samples atomically."""

    @abstractmethod
    def workout_builder(self, kind: WorkoutKind, metadata: dict[str, Any]) -> WorkoutBuilder:
        ...

    @abstractmethod
    def route_builder(self) -> RouteBuilder:
        ...


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class HealthSinkAdapter:
    """Write typed records into a ``HealthStore``.

    Writes are independent per record: ``save_record`` reports failure by
    returning False after logging, and never raises.
    """

    def __init__(self, store: HealthStore, dedup: InMemoryDedupCache | None = None) -> None:
        self._store = store
        self._dedup = dedup if dedup is not None else InMemoryDedupCache()

    async def save_record(self, record: HealthRecord) -> bool:
        """Write one record.

        Returns:
            True if the record is in the store (written now or earlier),
            False if the write failed.
        """
        key = key_for(record)
        if self._dedup.is_seen(key):
            logger.debug("Skipping duplicate record %s", key)
            return True
        try:
            if isinstance(record, HeartRate):
                await self.save_heart_rate(record)
            elif isinstance(record, StepCount):
                await self.save_step_count(record)
            elif isinstance(record, Sleep):
                await self.save_sleep(record)
            elif isinstance(record, Workout):
                await self.save_workout(record)
            else:
                raise SinkWriteError(f"Unsupported record type {type(record).__name__}")
        except SinkWriteError as exc:
            logger.warning("Sink write failed for %s: %s", key, exc)
            return False
        self._dedup.mark_seen(key)
        return True

    async def save_heart_rate(self, record: HeartRate) -> None:
        sample = QuantitySample(
            quantity_type=HK_HEART_RATE,
            value=record.value_bpm,
            unit="count/min",
            start=record.timestamp,
            end=record.timestamp,
            metadata=_metadata(record),
        )
        await self._save("heart rate", record, [sample])

    async def save_step_count(self, record: StepCount) -> None:
        sample = QuantitySample(
            quantity_type=HK_STEP_COUNT,
            value=float(record.count),
            unit="count",
            start=record.timestamp,
            end=record.end,
            metadata=_metadata(record),
        )
        await self._save("step count", record, [sample])

    async def save_sleep(self, record: Sleep) -> None:
        meta = _metadata(record)
        samples: list[Sample] = [
            CategorySample(
                category_type=HK_SLEEP_ANALYSIS,
                value=SleepCategory.IN_BED.value,
                start=record.start,
                end=record.end,
                metadata=meta,
            )
        ]
        for stage in record.stages:
            samples.append(
                CategorySample(
                    category_type=HK_SLEEP_ANALYSIS,
                    value=_SLEEP_STAGE_MAP[stage.stage_kind].value,
                    start=stage.start,
                    end=stage.end,
                    metadata=meta,
                )
            )
        await self._save("sleep", record, samples)

    async def save_workout(self, record: Workout) -> None:
        """Run the builder sequence; any failing step aborts this workout only.

        Route steps run against the finalized workout.  If one fails the
        workout stays saved without its route and the failure is logged.

        Raises:
            SinkWriteError: Naming the builder step that failed.
        """
        meta = _metadata(record)
        if record.avg_heart_rate is not None:
            meta["average_heart_rate"] = record.avg_heart_rate
        if record.max_heart_rate is not None:
            meta["max_heart_rate"] = record.max_heart_rate

        step = "begin collection"
        try:
            builder = self._store.workout_builder(record.kind, meta)
            await builder.begin_collection(record.start)
            if record.total_distance_meters > 0:
                step = "add distance"
                await builder.add([
                    QuantitySample(
                        quantity_type=_DISTANCE_TYPE_MAP[record.kind],
                        value=record.total_distance_meters,
                        unit="m",
                        start=record.start,
                        end=record.end,
                        metadata=_metadata(record),
                    )
                ])
            if record.total_calories > 0:
                step = "add calories"
                await builder.add([
                    QuantitySample(
                        quantity_type=HK_ACTIVE_ENERGY,
                        value=record.total_calories,
                        unit="kcal",
                        start=record.start,
                        end=record.end,
                        metadata=_metadata(record),
                    )
                ])
            step = "end collection"
            await builder.end_collection(record.end)
            step = "finish workout"
            workout = await builder.finish_workout()
        except SinkWriteError:
            raise
        except Exception as exc:
            raise SinkWriteError(f"workout {record.id}: {step} failed: {exc}") from exc
        if record.route:
            await self._save_route(record, workout)
        logger.debug(
            "Saved workout %s (%s, %d route point(s))",
            record.id, record.kind.value, len(record.route),
        )

    async def _save_route(self, record: Workout, workout: Any) -> None:
        # The workout is already stored; route failures are logged, not raised.
        step = "insert route"
        try:
            route = self._store.route_builder()
            await route.insert_route_data(record.route)
            step = "finish route"
            await route.finish_route(workout, _metadata(record))
        except Exception as exc:
            logger.warning("Workout %s saved without its route: %s failed: %s", record.id, step, exc)

    async def _save(self, label: str, record: HealthRecord, samples: list[Sample]) -> None:
        try:
            await self._store.save(samples)
        except Exception as exc:
            raise SinkWriteError(f"{label} {record.id}: save failed: {exc}") from exc
        logger.debug("Saved %s %s (%d sample(s))", label, record.id, len(samples))


def _metadata(record: HealthRecord) -> dict[str, Any]:
    return {META_SYNC_IDENTIFIER: record.id, META_WAS_USER_ENTERED: False}


# ---------------------------------------------------------------------------
# File-backed store for headless runs
# ---------------------------------------------------------------------------


class JsonLinesHealthStore(HealthStore):
    """Append every saved sample, workout and route to a JSON-lines file.

    Used by the headless runner where no native health store exists.  Each
    line is ``{"kind": ..., ...fields}`` with ISO-8601 timestamps.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    async def _append(self, *entries: tuple[str, dict[str, Any]]) -> None:
        lines = [json.dumps({"kind": kind, **payload}, default=_json_default) for kind, payload in entries]

        def _write() -> None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as fh:
                fh.writelines(line + "\n" for line in lines)

        await asyncio.to_thread(_write)

    async def save(self, samples: Sequence[Sample]) -> None:
        entries = [
            ("quantity" if isinstance(s, QuantitySample) else "category", asdict(s)) for s in samples
        ]
        await self._append(*entries)

    def workout_builder(self, kind: WorkoutKind, metadata: dict[str, Any]) -> WorkoutBuilder:
        return _JsonLinesWorkoutBuilder(self, kind, metadata)

    def route_builder(self) -> RouteBuilder:
        return _JsonLinesRouteBuilder(self)


class _JsonLinesWorkoutBuilder(WorkoutBuilder):
    def __init__(self, store: JsonLinesHealthStore, kind: WorkoutKind, metadata: dict) -> None:
        self._store = store
        self._kind = kind
        self._metadata = metadata
        self._start: datetime | None = None
        self._end: datetime | None = None
        self._samples: list[QuantitySample] = []

    async def begin_collection(self, start: datetime) -> None:
        self._start = start

    async def add(self, samples: Sequence[QuantitySample]) -> None:
        self._samples.extend(samples)

    async def end_collection(self, end: datetime) -> None:
        self._end = end

    async def finish_workout(self) -> Any:
        if self._start is None or self._end is None:
            raise SinkWriteError("workout collection was not begun and ended")
        workout_id = self._metadata.get(META_SYNC_IDENTIFIER)
        await self._store._append((
            "workout",
            {
                "activity": self._kind.value,
                "start": self._start,
                "end": self._end,
                "samples": [asdict(s) for s in self._samples],
                "metadata": self._metadata,
            },
        ))
        return workout_id


class _JsonLinesRouteBuilder(RouteBuilder):
    def __init__(self, store: JsonLinesHealthStore) -> None:
        self._store = store
        self._points: list[LocationPoint] = []

    async def insert_route_data(self, points: Sequence[LocationPoint]) -> None:
        self._points.extend(points)

    async def finish_route(self, workout: Any, metadata: dict[str, Any]) -> None:
        await self._store._append((
            "route",
            {"workout": workout, "points": [asdict(p) for p in self._points], "metadata": metadata},
        ))


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
