"""
HTTP endpoints.

Intake of refund requests, the voice-agent post-call webhook, queue
administration and health.
"""

from __future__ import annotations

import json

import anyio
from fastapi import APIRouter, HTTPException, Request, status

from callqueue.api.dependencies import (
    CalendarDep,
    ClassifierDep,
    DispatcherDep,
    ProviderDep,
    SettingsDep,
    StoreDep,
    VoiceConfigDep,
)
from callqueue.api.schemas import (
    CleanupResponse,
    ConversationStatusResponse,
    HealthResponse,
    PostCallResponse,
    QueueStatsResponse,
    RefundRequestAccepted,
    RefundRequestWebhook,
)
from callqueue.shared.exceptions import NotFoundError, ValidationError
from callqueue.shared.logging import get_logger
from callqueue.telephony.interface import ConversationFetchError, WebhookParseError

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["callqueue"])

SIGNATURE_HEADER = "ElevenLabs-Signature"


@router.post(
    "/webhook/refund-request",
    response_model=RefundRequestAccepted,
    responses={
        400: {"description": "Missing required fields"},
        422: {"description": "Missing sections"},
        503: {"description": "Queue lock unavailable"},
    },
)
async def receive_refund_request(
    body: RefundRequestWebhook,
    store: StoreDep,
    calendar: CalendarDep,
) -> RefundRequestAccepted:
    """Validate a refund request and queue the call to the centre.

    Raises:
        ValidationError: Required fields are missing (400).
    """
    missing = body.missing_fields()
    if missing:
        raise ValidationError("Missing required fields", details=missing)

    payload = body.to_queue_payload()
    logger.info(
        "Refund request received",
        extra={
            "reference": payload["reference"],
            "customer": payload["customer_name"],
            "center_phone": payload["center_phone"],
            "center_phone_raw": payload["center_phone_raw"],
        },
    )

    result = await anyio.to_thread.run_sync(store.enqueue, payload)
    return RefundRequestAccepted(
        queue_id=result.id,
        reference=payload["reference"],
        scheduled_for=result.scheduled_for,
        scheduled_for_local=calendar.format(result.scheduled_for),
    )


@router.post(
    "/webhook/post-call",
    response_model=PostCallResponse,
    responses={
        401: {"description": "Invalid signature"},
        404: {"description": "No call in progress for this conversation"},
    },
)
async def receive_post_call(
    request: Request,
    provider: ProviderDep,
    classifier: ClassifierDep,
    store: StoreDep,
    dispatcher: DispatcherDep,
) -> PostCallResponse:
    """Complete the queued call a finished conversation belongs to."""
    raw_body = await request.body()
    if not provider.validate_webhook_signature(raw_body, request.headers.get(SIGNATURE_HEADER)):
        logger.warning("Post-call webhook rejected: invalid signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    try:
        payload = json.loads(raw_body)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from e
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

    try:
        snapshot = provider.parse_webhook_event(payload)
    except WebhookParseError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    item = await anyio.to_thread.run_sync(store.find_processing_by_call, snapshot.conversation_id)
    if item is None:
        raise NotFoundError(f"No call in progress for conversation {snapshot.conversation_id}")

    classification = classifier.classify(snapshot)
    if not classification.is_final:
        logger.info(
            "Post-call webhook for an unfinished conversation",
            extra={"conversation_id": snapshot.conversation_id, "status": snapshot.status},
        )
        return PostCallResponse(
            queue_id=item.id,
            conversation_id=snapshot.conversation_id,
            call_status=classification.call_status.value,
            transition="in_progress",
        )

    transition = await dispatcher.complete_conversation(item, classification)
    return PostCallResponse(
        queue_id=item.id,
        conversation_id=snapshot.conversation_id,
        call_status=classification.call_status.value,
        result=classification.result.value if classification.result else None,
        transition=transition.status.value,
        next_attempt=transition.next_attempt,
    )


@router.get("/webhook/conversation/{conversation_id}/status", response_model=ConversationStatusResponse)
async def get_conversation_status(
    conversation_id: str,
    provider: ProviderDep,
    classifier: ClassifierDep,
) -> ConversationStatusResponse:
    """Fetch and classify a conversation without touching the queue."""
    try:
        snapshot = await provider.get_conversation(conversation_id)
    except ConversationFetchError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e

    classification = classifier.classify(snapshot)
    return ConversationStatusResponse(
        conversation_id=conversation_id,
        status=snapshot.status,
        call_status=classification.call_status.value,
        result=classification.result.value if classification.result else None,
        refund_response=classification.refund_response,
        duration_seconds=snapshot.duration_seconds,
    )


@router.get("/queue/stats", response_model=QueueStatsResponse)
async def get_queue_stats(store: StoreDep) -> QueueStatsResponse:
    stats = await anyio.to_thread.run_sync(store.stats)
    return QueueStatsResponse(stats=stats)


@router.post("/queue/cleanup", response_model=CleanupResponse)
async def cleanup_queue(store: StoreDep, settings: SettingsDep) -> CleanupResponse:
    result = await anyio.to_thread.run_sync(store.cleanup, settings.retention)
    return CleanupResponse(result=result)


@router.get("/health", response_model=HealthResponse)
async def health_check(
    voice_config: VoiceConfigDep,
    provider: ProviderDep,
    calendar: CalendarDep,
) -> HealthResponse:
    missing = voice_config.missing_variables()
    return HealthResponse(
        configured=not missing,
        missing_variables=missing,
        agent=provider.describe() if not missing else None,
        business_hours=calendar.is_business_hours(),
        next_business_time=calendar.next_business_time(),
    )
