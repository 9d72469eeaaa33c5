"""
ElevenLabs conversational AI adapter.

Starts outbound calls through the agent's telephony integration, fetches
conversations and verifies post-call webhooks.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from callqueue.shared.logging import get_logger
from callqueue.telephony.config import VoiceAgentConfig, get_voice_agent_config
from callqueue.telephony.interface import (
    CallInitiationError,
    CallInitiationRequest,
    CallInitiationResponse,
    ConversationFetchError,
    ConversationSnapshot,
    TranscriptTurn,
    VoiceAgentProvider,
    VoiceAgentProviderError,
    WebhookParseError,
)

logger = get_logger(__name__)

POST_CALL_EVENT_TYPE = "post_call_transcription"


class ElevenLabsAdapter(VoiceAgentProvider):
    """ElevenLabs voice-agent provider.

    Uses a sync httpx client; the async entrypoints inherited from
    ``VoiceAgentProvider`` run it in a worker thread.
    """

    def __init__(
        self,
        config: VoiceAgentConfig | None = None,
        http_client: httpx.Client | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or get_voice_agent_config()
        self._http_client = http_client
        self._owns_client = http_client is None
        self._clock = clock

    def _get_client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = httpx.Client(timeout=httpx.Timeout(self._config.request_timeout_seconds))
        return self._http_client

    def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def _headers(self) -> dict[str, str]:
        return {
            "xi-api-key": self._config.elevenlabs_api_key,
            "Content-Type": "application/json",
        }

    def describe(self) -> dict[str, Any]:
        return {
            "agent_id": self._config.ai_agent_id,
            "phone_number": self._config.agent_phone_number,
            "phone_number_id": self._config.agent_phone_number_id,
        }

    def initiate_call_sync(self, request: CallInitiationRequest) -> CallInitiationResponse:
        """Start an outbound call to the centre."""
        if not request.to_number:
            raise CallInitiationError(
                message=f"Missing centre phone number for {request.reference}",
                error_code="MISSING_PHONE_NUMBER",
            )

        payload = {
            "agent_id": self._config.ai_agent_id,
            "agent_phone_number_id": self._config.agent_phone_number_id,
            "to_number": request.to_number,
            "conversation_initiation_client_data": {
                "dynamic_variables": dict(request.dynamic_variables),
            },
        }

        logger.info(
            "Initiating agent call",
            extra={
                "agent_id": self._config.ai_agent_id,
                "from": self._config.agent_phone_number,
                "to": request.to_number,
                "reference": request.reference,
            },
        )

        try:
            response = self._get_client().post(
                self._config.ai_agent_api_url,
                json=payload,
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            logger.exception(
                "HTTP error during agent call initiation",
                extra={"reference": request.reference},
            )
            raise CallInitiationError(
                message=f"HTTP error: {e!s}",
                error_code="HTTP_ERROR",
            ) from e

        if response.status_code >= 400:
            error_data = _safe_json(response)
            logger.error(
                "Agent call initiation failed",
                extra={
                    "status_code": response.status_code,
                    "error": error_data,
                    "reference": request.reference,
                },
            )
            raise CallInitiationError(
                message=f"Voice agent API error: {response.status_code}",
                error_code=str(response.status_code),
                provider_response=error_data,
            )

        data = _safe_json(response)
        conversation_id = data.get("conversation_id")
        if not conversation_id:
            raise CallInitiationError(
                message="Voice agent response has no conversation_id",
                error_code="INVALID_RESPONSE",
                provider_response=data,
            )

        logger.info(
            "Agent call initiated",
            extra={
                "reference": request.reference,
                "conversation_id": conversation_id,
                "sip_call_id": data.get("sip_call_id"),
            },
        )
        return CallInitiationResponse(
            conversation_id=conversation_id,
            sip_call_id=data.get("sip_call_id"),
            created_at=datetime.now(timezone.utc),
            raw_response=data,
        )

    def get_conversation_sync(self, conversation_id: str) -> ConversationSnapshot:
        """Fetch a conversation with its transcript."""
        try:
            response = self._get_client().get(
                self._config.get_conversation_url(conversation_id),
                headers={"xi-api-key": self._config.elevenlabs_api_key},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ConversationFetchError(
                message=f"Voice agent API error: {e.response.status_code}",
                error_code=str(e.response.status_code),
                provider_response=_safe_json(e.response),
            ) from e
        except httpx.HTTPError as e:
            raise ConversationFetchError(
                message=f"HTTP error: {e!s}",
                error_code="HTTP_ERROR",
            ) from e

        return _snapshot_from_payload(_safe_json(response), conversation_id, ConversationFetchError)

    def parse_webhook_event(self, payload: dict[str, Any]) -> ConversationSnapshot:
        """Parse a ``post_call_transcription`` webhook."""
        event_type = payload.get("type")
        if event_type != POST_CALL_EVENT_TYPE:
            raise WebhookParseError(
                message=f"Unsupported webhook event type: {event_type}",
                error_code="UNSUPPORTED_EVENT",
            )
        data = payload.get("data")
        if not isinstance(data, dict) or not data.get("conversation_id"):
            raise WebhookParseError(
                message="Missing conversation_id in webhook payload",
                error_code="MISSING_CONVERSATION_ID",
            )
        return _snapshot_from_payload(data, data["conversation_id"], WebhookParseError)

    def validate_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        """Validate the ``ElevenLabs-Signature`` header (``t=<ts>,v0=<hex>``).

        The HMAC-SHA256 is computed over ``"<ts>.<raw body>"`` with the
        webhook secret. Signatures older than the tolerance are rejected.
        """
        secret = self._config.elevenlabs_webhook_secret
        if not secret:
            return True
        if not signature:
            return False

        parts: dict[str, str] = {}
        for chunk in signature.split(","):
            key, _, value = chunk.strip().partition("=")
            parts[key] = value

        timestamp = parts.get("t", "")
        provided = parts.get("v0", "")
        if not timestamp.isdigit() or not provided:
            return False

        if self._clock() - int(timestamp) > self._config.webhook_tolerance_seconds:
            logger.warning("Webhook signature expired", extra={"timestamp": timestamp})
            return False

        expected = hmac.new(
            secret.encode("utf-8"),
            f"{timestamp}.".encode("utf-8") + payload,
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, provided)


def _safe_json(response: httpx.Response) -> dict[str, Any]:
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError:
        return {"raw": response.text}
    return data if isinstance(data, dict) else {"data": data}


def _snapshot_from_payload(
    data: dict[str, Any],
    conversation_id: str,
    error_cls: type[VoiceAgentProviderError],
) -> ConversationSnapshot:
    turns = data.get("transcript") or []
    metadata = data.get("metadata") or {}
    if not isinstance(turns, list) or not isinstance(metadata, dict):
        raise error_cls(
            message=f"Malformed conversation payload for {conversation_id}",
            error_code="INVALID_PAYLOAD",
        )

    duration = metadata.get("call_duration_secs", metadata.get("duration_seconds", 0)) or 0
    try:
        duration_seconds = float(duration)
    except (TypeError, ValueError) as e:
        raise error_cls(
            message=f"Invalid call duration for {conversation_id}: {duration!r}",
            error_code="INVALID_PAYLOAD",
        ) from e

    transcript = tuple(
        TranscriptTurn(role=str(turn.get("role") or ""), message=str(turn.get("message") or ""))
        for turn in turns
        if isinstance(turn, dict)
    )
    return ConversationSnapshot(
        conversation_id=conversation_id,
        status=str(data.get("status") or ""),
        transcript=transcript,
        duration_seconds=duration_seconds,
        raw_payload=data,
    )
