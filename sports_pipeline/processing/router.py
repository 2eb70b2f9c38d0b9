"""
Processing router.

Consumes CollectionSuccess events, normalizes each payload by data kind,
upserts the entities, attaches predictions for the kinds that have a model,
and emits one ProcessedUpdate per entity.
"""

import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Set, Tuple

from sports_pipeline.events import CollectionSuccess, EventBus, ProcessedUpdate, Subscription
from sports_pipeline.intelligence.interfaces import (
    PREDICTION_MODELS,
    PredictionError,
    PredictionService,
)
from sports_pipeline.observability.logging import log_context
from sports_pipeline.observability.metrics import record_entity_processed
from sports_pipeline.processing.interfaces import EventSink, NormalizationError
from sports_pipeline.processing.normalizers import extract_entities, normalize
from sports_pipeline.storage.interfaces import EntityStore, StorageError
from sports_pipeline.types import (
    CollectedRecord,
    DataKind,
    NormalizedEntity,
    PredictionResult,
    ProcessingResult,
)

logger = logging.getLogger(__name__)

UPDATE_TYPES = {
    DataKind.PLAYER_STATS: "player_updated",
    DataKind.INJURIES: "injury_updated",
    DataKind.GAME_UPDATES: "game_updated",
    DataKind.ODDS: "odds_updated",
    DataKind.WEATHER: "weather_updated",
    DataKind.NEWS: "news_updated",
}

PREDICTION_KIND = "prediction"


@dataclass
class PendingEntity:
    """An entity whose storage or prediction step failed."""

    source_id: str
    entity: NormalizedEntity
    stored: bool = False
    attempts: int = 1
    last_error: Optional[str] = None


class ProcessingRouter:
    """
    Routes collected records to kind-specific handling.

    Failures stay local to one entity: malformed items are skipped, and
    storage or prediction failures park the entity in a bounded replay
    queue.
    """

    def __init__(
        self,
        bus: EventBus,
        store: EntityStore,
        predictor: Optional[PredictionService] = None,
        sink: Optional[EventSink] = None,
        max_pending: int = 1000,
        max_replay_attempts: int = 5,
    ):
        """
        Initialize the router.

        Args:
            bus: Event bus to consume from and publish updates to
            store: Entity store
            predictor: Prediction service for player stats and injuries
            sink: Optional downstream consumer of ProcessedUpdate
            max_pending: Bound of the replay queue (oldest dropped first)
            max_replay_attempts: Attempts before a parked entity is dropped
        """
        self.bus = bus
        self.store = store
        self.predictor = predictor
        self.sink = sink
        self.max_replay_attempts = max_replay_attempts

        self._pending: Deque[PendingEntity] = deque(maxlen=max_pending)
        self._subscription: Optional[Subscription] = None
        self._consumer: Optional[asyncio.Task] = None
        self._sink_tasks: Set[asyncio.Task] = set()
        self.records_processed = 0

    async def start(self) -> None:
        if self._consumer is not None:
            return
        self._subscription = self.bus.subscribe("router", CollectionSuccess)
        self._consumer = asyncio.create_task(self._consume(), name="processing-router")
        logger.info("Processing router started")

    async def stop(self) -> None:
        """Drain queued records, then stop the consumer."""
        if self._consumer is None:
            return

        self._subscription.close()
        await asyncio.gather(self._consumer, return_exceptions=True)
        self.bus.unsubscribe(self._subscription)
        self._consumer = None
        self._subscription = None

        for task in list(self._sink_tasks):
            task.cancel()
        await asyncio.gather(*self._sink_tasks, return_exceptions=True)
        self._sink_tasks.clear()
        logger.info("Processing router stopped")

    async def _consume(self) -> None:
        async for event in self._subscription:
            try:
                await self.process(event.record)
            except Exception as e:
                logger.error(
                    f"Error processing data from {event.source_id}: {e}", exc_info=True
                )

    async def process(self, record: CollectedRecord) -> ProcessingResult:
        """
        Normalize, store and predict every entity of a record.

        Args:
            record: Collected record

        Returns:
            Per-entity outcome counts
        """
        result = ProcessingResult(source_id=record.source_id, kind=record.kind)
        if record.processed:
            logger.debug(f"Record from {record.source_id} already processed")
            return result

        with log_context(source_id=record.source_id, kind=record.kind.value):
            try:
                items = extract_entities(record.kind, record.payload)
            except NormalizationError as e:
                logger.warning(f"Skipping payload from {record.source_id}: {e}")
                items = []

            result.total = len(items)

            for index, item in enumerate(items):
                try:
                    entity = normalize(record.kind, item, record.sport)
                except NormalizationError as e:
                    logger.warning(f"Skipping malformed {record.kind.value} item #{index}: {e}")
                    result.invalid += 1
                    continue
                except Exception as e:
                    logger.error(
                        f"Unexpected error normalizing {record.kind.value} item #{index}: {e}",
                        exc_info=True,
                    )
                    result.invalid += 1
                    continue

                pending = PendingEntity(source_id=record.source_id, entity=entity)
                try:
                    prediction, error = await self._handle_entity(pending)
                except Exception as e:
                    logger.error(
                        f"Unexpected error handling {entity.kind.value} entity "
                        f"{entity.external_id}: {e}",
                        exc_info=True,
                    )
                    result.failed += 1
                    continue

                if error is not None:
                    self._park(pending, error)
                if pending.stored:
                    result.upserted += 1
                else:
                    result.failed += 1
                if prediction is not None:
                    result.predictions += 1

            record.processed = True
            self.records_processed += 1

        for status, count in (
            ("upserted", result.upserted),
            ("invalid", result.invalid),
            ("failed", result.failed),
        ):
            if count:
                record_entity_processed(record.kind.value, status, count)

        logger.info(
            f"Processed {result.upserted}/{result.total} {record.kind.value} entities "
            f"from {record.source_id}"
        )
        return result

    async def _handle_entity(
        self, pending: PendingEntity
    ) -> Tuple[Optional[PredictionResult], Optional[str]]:
        """
        Store an entity and attach its prediction.

        The ProcessedUpdate is emitted only once both steps succeed, so a
        replayed entity produces a single update.

        Returns:
            The prediction (None for kinds without a model) and the error
            of the failed step, None when the entity is fully handled
        """
        entity = pending.entity

        if not pending.stored:
            try:
                await self.store.upsert_entity(entity.kind.value, entity.external_id, entity.fields)
            except StorageError as e:
                return None, f"storage: {e}"
            pending.stored = True

        prediction = None
        model = PREDICTION_MODELS.get(entity.kind)
        if model and self.predictor is not None:
            try:
                prediction = await self.predictor.predict(model, entity.fields)
                await self.store.upsert_entity(
                    PREDICTION_KIND,
                    f"{entity.kind.value}:{entity.external_id}",
                    {
                        "model": prediction.model or model,
                        "value": prediction.value,
                        "confidence": prediction.confidence,
                        "source_id": pending.source_id,
                    },
                )
            except (PredictionError, StorageError) as e:
                return None, f"prediction: {e}"
            except Exception as e:
                logger.error(f"Unexpected prediction error for {entity.external_id}: {e}", exc_info=True)
                return None, f"prediction: {e}"

        self._emit_update(pending, prediction)
        return prediction, None

    def _emit_update(self, pending: PendingEntity, prediction: Optional[PredictionResult]) -> None:
        entity = pending.entity
        self._emit(
            ProcessedUpdate(
                update_type=UPDATE_TYPES[entity.kind],
                kind=entity.kind,
                source_id=pending.source_id,
                external_id=entity.external_id,
                fields=dict(entity.fields),
                prediction=prediction,
            )
        )

    def _park(self, pending: PendingEntity, error: str) -> None:
        pending.last_error = error
        logger.error(
            f"Failed to handle {pending.entity.kind.value} entity "
            f"{pending.entity.external_id}, queued for replay: {error}"
        )
        self._pending.append(pending)

    def _emit(self, update: ProcessedUpdate) -> None:
        self.bus.publish(update)
        if self.sink is None:
            return

        try:
            result = self.sink.notify(update)
        except Exception as e:
            logger.warning(f"Event sink rejected {update.update_type}: {e}")
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._sink_tasks.add(task)
            task.add_done_callback(self._sink_done)

    def _sink_done(self, task: asyncio.Task) -> None:
        self._sink_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Event sink notification failed: {task.exception()}")

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def pending_replays(self) -> List[PendingEntity]:
        return list(self._pending)

    async def replay_pending(self) -> int:
        """
        Retry every parked entity once.

        Entities that fail again go back to the queue until they reach
        `max_replay_attempts`, then they are dropped. A dropped entity that
        was stored still gets its ProcessedUpdate, without a prediction.

        Returns:
            Number of entities handled successfully
        """
        batch = list(self._pending)
        self._pending.clear()
        recovered = 0

        for pending in batch:
            try:
                _, error = await self._handle_entity(pending)
            except Exception as e:
                logger.error(
                    f"Unexpected error replaying {pending.entity.kind.value} entity "
                    f"{pending.entity.external_id}: {e}",
                    exc_info=True,
                )
                error = f"unexpected: {e}"

            if error is None:
                recovered += 1
                continue

            pending.attempts += 1
            pending.last_error = error
            if pending.attempts > self.max_replay_attempts:
                logger.error(
                    f"Dropping {pending.entity.kind.value} entity {pending.entity.external_id} "
                    f"after {self.max_replay_attempts} attempts: {error}"
                )
                if pending.stored:
                    self._emit_update(pending, None)
            else:
                self._pending.append(pending)

        if batch:
            logger.info(f"Replayed {len(batch)} entities, {recovered} recovered")
        return recovered
