"""
Call dispatcher.

One tick:

1. poll the conversations of items sitting in ``processing`` and feed
   finished ones back into the queue (timing out the ones that never end,
   and attaching conversation ids a previous tick failed to record);
2. inside business hours, start a call for every due pending item;
3. from time to time, drop old terminated items.

All store operations run in a worker thread so the event loop never waits
on the queue lock. Provider and notifier calls happen outside any store
operation.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable

import anyio

from callqueue.calls.models import DispatcherSettings, DispatchRunResult
from callqueue.notifications.outcome_notifier import OutcomeNotifier
from callqueue.queue.exceptions import ItemNotFoundError, QueueError
from callqueue.queue.models import CallResult, CleanupResult, QueueItem, TransitionResult, TransitionStatus
from callqueue.queue.store import QueueStore
from callqueue.scheduling.business_hours import BusinessCalendar
from callqueue.shared.logging import correlation_context, get_logger
from callqueue.telephony.classifier import (
    CallClassification,
    CallStatus,
    KeywordOutcomeClassifier,
    OutcomeClassifier,
)
from callqueue.telephony.interface import (
    CallInitiationError,
    CallInitiationRequest,
    ConversationFetchError,
    VoiceAgentProvider,
)

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_call_request(item: QueueItem) -> CallInitiationRequest:
    """Map a queued refund request onto the agent's dynamic variables."""
    payload = item.payload
    return CallInitiationRequest(
        to_number=payload.get("center_phone") or "",
        reference=item.reference or item.id,
        dynamic_variables={
            "nom_client": str(payload.get("customer_name") or ""),
            "date_reservation": str(payload.get("booking_date") or ""),
            "marque_vehicule": str(payload.get("vehicle_brand") or ""),
            "modele_vehicule": str(payload.get("vehicle_model") or ""),
            "immatriculation": str(payload.get("registration_number") or ""),
            "reference": str(item.reference or ""),
        },
    )


class CallDispatcher:
    """Periodic driver between the queue store and the voice agent."""

    def __init__(
        self,
        store: QueueStore,
        provider: VoiceAgentProvider,
        classifier: OutcomeClassifier | None = None,
        notifier: OutcomeNotifier | None = None,
        settings: DispatcherSettings | None = None,
        calendar: BusinessCalendar | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._provider = provider
        self._classifier = classifier or KeywordOutcomeClassifier()
        self._notifier = notifier
        self._settings = settings or DispatcherSettings()
        self._clock = clock
        self._calendar = calendar or BusinessCalendar(clock=clock)

        self._last_cleanup: datetime | None = None
        # Item id -> conversation id of calls placed but not yet recorded in the store.
        self._unrecorded: dict[str, str] = {}
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def classifier(self) -> OutcomeClassifier:
        return self._classifier

    async def start(self) -> None:
        """Start the dispatcher background task."""
        if self._running:
            logger.warning("Call dispatcher already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Call dispatcher started", extra={"interval_seconds": self._settings.interval_seconds})

    async def stop(self) -> None:
        """Stop the dispatcher background task."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Call dispatcher stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Dispatcher tick failed")
            await asyncio.sleep(self._settings.interval_seconds)

    async def run_once(self) -> DispatchRunResult:
        """Run a single dispatcher iteration."""
        result = DispatchRunResult()

        await self._check_in_flight(result)

        result.business_hours = self._calendar.is_business_hours(self._clock())
        if result.business_hours:
            await self._dispatch_due(result)
        else:
            logger.debug("Outside business hours, no call started")

        result.cleanup = await self._maybe_cleanup()

        activity = (
            result.started,
            result.start_failures,
            result.record_failures,
            result.recovered,
            result.finalized,
            result.timed_out,
        )
        if any(activity):
            logger.info(
                "Dispatcher tick done",
                extra={
                    "started": len(result.started),
                    "start_failures": len(result.start_failures),
                    "record_failures": len(result.record_failures),
                    "recovered": len(result.recovered),
                    "finalized": len(result.finalized),
                    "timed_out": len(result.timed_out),
                    "skipped": len(result.skipped),
                },
            )
        return result

    async def complete_conversation(
        self,
        item: QueueItem,
        classification: CallClassification,
    ) -> TransitionResult:
        """Feed a classified conversation back into the queue.

        The downstream automation is notified once the item reaches a
        terminal partition.

        Raises:
            ItemNotFoundError: The item already left ``processing``.
        """
        with correlation_context(item.id):
            transition = await anyio.to_thread.run_sync(
                self._store.complete_attempt,
                item.id,
                classification.to_outcome(),
            )
            if transition.status is not TransitionStatus.RESCHEDULED and self._notifier is not None:
                await self._notifier.send(transition.item, classification)
            return transition

    async def _dispatch_due(self, result: DispatchRunResult) -> None:
        due = await anyio.to_thread.run_sync(self._store.due_items)
        for candidate in sorted(due, key=lambda i: i.scheduled_for):
            try:
                item = await anyio.to_thread.run_sync(self._store.begin_processing, candidate.id)
            except ItemNotFoundError:
                # Taken by another process since due_items().
                result.skipped.append(candidate.id)
                continue

            request = build_call_request(item)
            try:
                response = await self._provider.initiate_call(request)
            except CallInitiationError as e:
                logger.warning(
                    "Call initiation failed",
                    extra={"item_id": item.id, "reference": item.reference, "error_code": e.error_code},
                )
                await self.complete_conversation(
                    item,
                    CallClassification(
                        conversation_id="",
                        call_status=CallStatus.FAILED,
                        result=CallResult.FAILED,
                        reason=str(e),
                    ),
                )
                result.start_failures.append(item.id)
                continue

            try:
                await anyio.to_thread.run_sync(
                    self._store.record_call_started,
                    item.id,
                    response.conversation_id,
                )
            except QueueError as e:
                # The call is live: keep its id so the next tick can attach it.
                self._unrecorded[item.id] = response.conversation_id
                logger.error(
                    "Call started but not recorded",
                    extra={
                        "item_id": item.id,
                        "conversation_id": response.conversation_id,
                        "error_code": e.code,
                    },
                )
                result.record_failures.append(item.id)
                continue
            result.started.append(item.id)

    async def _check_in_flight(self, result: DispatchRunResult) -> None:
        now = self._clock()
        min_age = self._settings.conversation_min_age_seconds
        timeout = self._settings.conversation_timeout_seconds

        processing = await anyio.to_thread.run_sync(self._store.processing_items)
        for item_id in set(self._unrecorded) - {item.id for item in processing}:
            del self._unrecorded[item_id]

        for item in processing:
            started = item.call_started_at or item.processing_started_at
            age = (now - started).total_seconds() if started else float(timeout) + 1

            try:
                if item.external_call_id is None and item.id in self._unrecorded:
                    await self._attach_conversation(item, result)
                    continue

                if item.external_call_id is None:
                    # Crashed between begin_processing and record_call_started.
                    if age > timeout:
                        await self._time_out(item, "call never started", result)
                    continue

                if age < min_age:
                    continue

                classification = await self._fetch_classification(item, item.external_call_id)
                if classification is not None and classification.is_final:
                    await self.complete_conversation(item, classification)
                    result.finalized.append(item.id)
                elif age > timeout:
                    await self._time_out(item, "conversation timeout", result)
            except ItemNotFoundError:
                # Completed concurrently (post-call webhook).
                result.skipped.append(item.id)

    async def _attach_conversation(self, item: QueueItem, result: DispatchRunResult) -> None:
        conversation_id = self._unrecorded[item.id]
        try:
            await anyio.to_thread.run_sync(self._store.record_call_started, item.id, conversation_id)
        except ItemNotFoundError:
            del self._unrecorded[item.id]
            raise
        except QueueError as e:
            logger.warning(
                "Started call still not recorded",
                extra={"item_id": item.id, "conversation_id": conversation_id, "error_code": e.code},
            )
            return
        del self._unrecorded[item.id]
        result.recovered.append(item.id)
        logger.info(
            "Started call recorded late",
            extra={"item_id": item.id, "conversation_id": conversation_id},
        )

    async def _fetch_classification(self, item: QueueItem, conversation_id: str) -> CallClassification | None:
        try:
            snapshot = await self._provider.get_conversation(conversation_id)
        except ConversationFetchError as e:
            logger.warning(
                "Conversation lookup failed",
                extra={
                    "item_id": item.id,
                    "conversation_id": conversation_id,
                    "error_code": e.error_code,
                },
            )
            return None
        return self._classifier.classify(snapshot)

    async def _time_out(self, item: QueueItem, reason: str, result: DispatchRunResult) -> None:
        logger.warning(
            "In-flight call timed out",
            extra={"item_id": item.id, "conversation_id": item.external_call_id, "reason": reason},
        )
        await self.complete_conversation(
            item,
            CallClassification(
                conversation_id=item.external_call_id or "",
                call_status=CallStatus.FAILED,
                result=CallResult.FAILED,
                reason=reason,
            ),
        )
        result.timed_out.append(item.id)

    async def _maybe_cleanup(self) -> CleanupResult | None:
        now = self._clock()
        if (
            self._last_cleanup is not None
            and (now - self._last_cleanup).total_seconds() < self._settings.cleanup_interval_seconds
        ):
            return None
        self._last_cleanup = now
        return await anyio.to_thread.run_sync(self._store.cleanup, self._settings.retention)
