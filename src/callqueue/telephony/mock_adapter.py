"""
Mock voice-agent provider for tests and local runs.
"""

from datetime import datetime, timezone
from typing import Any

from callqueue.shared.logging import get_logger
from callqueue.telephony.interface import (
    CallInitiationError,
    CallInitiationRequest,
    CallInitiationResponse,
    ConversationFetchError,
    ConversationSnapshot,
    ConversationStatus,
    TranscriptTurn,
    VoiceAgentProvider,
    WebhookParseError,
)

logger = get_logger(__name__)


class MockVoiceAgentAdapter(VoiceAgentProvider):
    """In-memory provider.

    Records initiated calls and serves conversations registered with
    ``set_conversation``. Unknown conversations report ``in-progress``.
    """

    def __init__(self) -> None:
        self._calls: list[CallInitiationRequest] = []
        self._webhooks: list[dict[str, Any]] = []
        self._conversations: dict[str, ConversationSnapshot] = {}
        self._next_conversation_id: int = 1
        self._should_fail: bool = False
        self._fail_error: str = "Mock failure"
        self._fail_code: str = "MOCK_ERROR"

    def reset(self) -> None:
        self._calls.clear()
        self._webhooks.clear()
        self._conversations.clear()
        self._next_conversation_id = 1
        self._should_fail = False
        self._fail_error = "Mock failure"
        self._fail_code = "MOCK_ERROR"

    def configure_failure(
        self,
        should_fail: bool = True,
        error_message: str = "Mock failure",
        error_code: str = "MOCK_ERROR",
    ) -> None:
        self._should_fail = should_fail
        self._fail_error = error_message
        self._fail_code = error_code

    def set_conversation(
        self,
        conversation_id: str,
        status: ConversationStatus | str = ConversationStatus.DONE,
        messages: list[str] | None = None,
        duration_seconds: float = 60.0,
    ) -> ConversationSnapshot:
        status_value = status.value if isinstance(status, ConversationStatus) else status
        snapshot = ConversationSnapshot(
            conversation_id=conversation_id,
            status=status_value,
            transcript=tuple(TranscriptTurn(role="user", message=m) for m in messages or []),
            duration_seconds=duration_seconds,
        )
        self._conversations[conversation_id] = snapshot
        return snapshot

    @property
    def calls(self) -> list[CallInitiationRequest]:
        return self._calls.copy()

    @property
    def webhooks(self) -> list[dict[str, Any]]:
        return self._webhooks.copy()

    def get_last_call(self) -> CallInitiationRequest | None:
        return self._calls[-1] if self._calls else None

    def describe(self) -> dict[str, Any]:
        return {"agent_id": "mock-agent", "phone_number": "+33100000000"}

    def initiate_call_sync(self, request: CallInitiationRequest) -> CallInitiationResponse:
        logger.info(
            "Mock: Initiating call",
            extra={"to": request.to_number, "reference": request.reference},
        )

        if self._should_fail:
            raise CallInitiationError(
                message=self._fail_error,
                error_code=self._fail_code,
            )

        self._calls.append(request)

        conversation_id = f"MOCK_CONV_{self._next_conversation_id:06d}"
        self._next_conversation_id += 1

        return CallInitiationResponse(
            conversation_id=conversation_id,
            sip_call_id=None,
            created_at=datetime.now(timezone.utc),
            raw_response={"mock": True, "conversation_id": conversation_id},
        )

    def get_conversation_sync(self, conversation_id: str) -> ConversationSnapshot:
        if self._should_fail:
            raise ConversationFetchError(message=self._fail_error, error_code=self._fail_code)
        snapshot = self._conversations.get(conversation_id)
        if snapshot is None:
            return ConversationSnapshot(
                conversation_id=conversation_id,
                status=ConversationStatus.IN_PROGRESS.value,
            )
        return snapshot

    def parse_webhook_event(self, payload: dict[str, Any]) -> ConversationSnapshot:
        """Accepts ``{"data": {...}}`` or the bare conversation object."""
        self._webhooks.append(payload)
        data = payload.get("data", payload)
        if not isinstance(data, dict) or not data.get("conversation_id"):
            raise WebhookParseError(
                message="Missing conversation_id in payload",
                error_code="MISSING_CONVERSATION_ID",
                provider_response=payload,
            )
        transcript = tuple(
            TranscriptTurn(role=str(t.get("role") or "user"), message=str(t.get("message") or ""))
            for t in data.get("transcript") or []
            if isinstance(t, dict)
        )
        return ConversationSnapshot(
            conversation_id=data["conversation_id"],
            status=str(data.get("status") or ConversationStatus.DONE.value),
            transcript=transcript,
            duration_seconds=float(data.get("duration_seconds") or 0),
            raw_payload=data,
        )

    def validate_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        return True
