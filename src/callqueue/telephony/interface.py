"""
Voice-agent provider interface definition.

A provider starts outbound calls handled by a conversational AI agent and
exposes the resulting conversation (status, transcript, duration).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import anyio


class ConversationStatus(str, Enum):
    """Conversation lifecycle as reported by the provider."""

    INITIATED = "initiated"
    IN_PROGRESS = "in-progress"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class CallInitiationRequest:
    """Request to start an outbound agent call."""

    to_number: str
    reference: str
    dynamic_variables: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CallInitiationResponse:
    """Response from call initiation."""

    conversation_id: str
    sip_call_id: str | None
    created_at: datetime
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TranscriptTurn:
    role: str
    message: str


@dataclass(frozen=True)
class ConversationSnapshot:
    """State of a conversation, fetched from the API or pushed by webhook."""

    conversation_id: str
    status: str
    transcript: tuple[TranscriptTurn, ...] = ()
    duration_seconds: float = 0.0
    raw_payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_finished(self) -> bool:
        return self.status in (ConversationStatus.DONE.value, ConversationStatus.FAILED.value)

    @property
    def full_text(self) -> str:
        return " ".join(turn.message for turn in self.transcript if turn.message)


class VoiceAgentProviderError(Exception):
    """Base exception for voice-agent provider errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.provider_response = provider_response or {}


class CallInitiationError(VoiceAgentProviderError):
    """Error during call initiation."""


class ConversationFetchError(VoiceAgentProviderError):
    """Error while fetching a conversation."""


class WebhookParseError(VoiceAgentProviderError):
    """Error parsing webhook event."""


class VoiceAgentProvider(ABC):
    """Abstract interface for voice-agent providers.

    The sync methods are the source of truth; the async entrypoints delegate
    to them in a worker thread.
    """

    async def initiate_call(self, request: CallInitiationRequest) -> CallInitiationResponse:
        return await anyio.to_thread.run_sync(self.initiate_call_sync, request)

    async def get_conversation(self, conversation_id: str) -> ConversationSnapshot:
        return await anyio.to_thread.run_sync(self.get_conversation_sync, conversation_id)

    @abstractmethod
    def initiate_call_sync(self, request: CallInitiationRequest) -> CallInitiationResponse:
        """Start an outbound call."""
        ...

    @abstractmethod
    def get_conversation_sync(self, conversation_id: str) -> ConversationSnapshot:
        """Fetch the current state of a conversation."""
        ...

    @abstractmethod
    def parse_webhook_event(self, payload: dict[str, Any]) -> ConversationSnapshot:
        """Parse a post-call webhook payload."""
        ...

    @abstractmethod
    def validate_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        """Validate webhook signature for authenticity."""
        ...

    def describe(self) -> dict[str, Any]:
        """Non-secret identification of the agent and outbound number."""
        return {}

    def close(self) -> None:
        """Release network resources held by the provider."""
