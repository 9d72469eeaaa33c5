"""
FastAPI dependencies.

Everything is built from settings once per process; tests swap them with
``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from callqueue.calls.dispatcher import CallDispatcher
from callqueue.calls.models import DispatcherSettings
from callqueue.config import Settings, get_settings
from callqueue.notifications.outcome_notifier import OutcomeNotifier
from callqueue.queue.store import QueueStore
from callqueue.scheduling.business_hours import BusinessCalendar
from callqueue.telephony.classifier import KeywordOutcomeClassifier, OutcomeClassifier
from callqueue.telephony.config import VoiceAgentConfig
from callqueue.telephony.factory import get_voice_agent_config, get_voice_agent_provider
from callqueue.telephony.interface import VoiceAgentProvider


@lru_cache(maxsize=1)
def get_calendar() -> BusinessCalendar:
    return BusinessCalendar(tz=get_settings().timezone)


@lru_cache(maxsize=1)
def get_queue_store() -> QueueStore:
    settings = get_settings()
    return QueueStore(
        settings.queue_file,
        settings.lock_file,
        calendar=get_calendar(),
        lock_timeout=settings.lock_timeout_seconds,
        lock_stale_after=settings.lock_stale_seconds,
        lock_poll_interval=settings.lock_poll_interval_seconds,
    )


def get_classifier() -> OutcomeClassifier:
    return KeywordOutcomeClassifier()


@lru_cache(maxsize=1)
def get_notifier() -> OutcomeNotifier:
    settings = get_settings()
    return OutcomeNotifier(
        settings.outcome_webhook_url,
        timeout_seconds=settings.outcome_webhook_timeout_seconds,
    )


def close_clients() -> None:
    """Close the HTTP clients of the cached notifier and provider, if they were built."""
    if get_notifier.cache_info().currsize:
        get_notifier().close()
    if get_voice_agent_provider.cache_info().currsize:
        get_voice_agent_provider().close()


def build_dispatcher(
    settings: Settings,
    store: QueueStore,
    provider: VoiceAgentProvider,
    classifier: OutcomeClassifier,
    notifier: OutcomeNotifier,
    calendar: BusinessCalendar,
) -> CallDispatcher:
    return CallDispatcher(
        store=store,
        provider=provider,
        classifier=classifier,
        notifier=notifier,
        settings=DispatcherSettings.from_settings(settings),
        calendar=calendar,
    )


def get_dispatcher(
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[QueueStore, Depends(get_queue_store)],
    provider: Annotated[VoiceAgentProvider, Depends(get_voice_agent_provider)],
    classifier: Annotated[OutcomeClassifier, Depends(get_classifier)],
    notifier: Annotated[OutcomeNotifier, Depends(get_notifier)],
    calendar: Annotated[BusinessCalendar, Depends(get_calendar)],
) -> CallDispatcher:
    """Dispatcher used by request handlers to complete conversations."""
    return build_dispatcher(settings, store, provider, classifier, notifier, calendar)


SettingsDep = Annotated[Settings, Depends(get_settings)]
StoreDep = Annotated[QueueStore, Depends(get_queue_store)]
ProviderDep = Annotated[VoiceAgentProvider, Depends(get_voice_agent_provider)]
VoiceConfigDep = Annotated[VoiceAgentConfig, Depends(get_voice_agent_config)]
ClassifierDep = Annotated[OutcomeClassifier, Depends(get_classifier)]
CalendarDep = Annotated[BusinessCalendar, Depends(get_calendar)]
DispatcherDep = Annotated[CallDispatcher, Depends(get_dispatcher)]
