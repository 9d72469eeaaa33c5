"""
Conversation outcome classification.

Turns a finished conversation into a call status and an outcome label the
queue understands. The default implementation matches French keywords in
the transcript; any object implementing ``OutcomeClassifier`` can replace it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from callqueue.queue.models import CallOutcome, CallResult
from callqueue.telephony.interface import ConversationSnapshot, ConversationStatus


class CallStatus(str, Enum):
    """Telephony-level result of a conversation."""

    ANSWERED = "answered"
    NO_ANSWER = "no_answer"
    VOICEMAIL = "voicemail"
    FAILED = "failed"
    IN_PROGRESS = "in_progress"


# Labels expected by the downstream automation.
REFUND_STATUS_LABELS: dict[CallResult, str] = {
    CallResult.ACCEPTED: "Accepté",
    CallResult.REJECTED: "Refusé",
    CallResult.CALLBACK_REQUESTED: "En attente de rappel",
}

ACCEPT_KEYWORDS = ("accepte", "valide", "accord")
REFUSE_KEYWORDS = ("refuse", "impossible", "pas possible")
REFUSAL_REASONS = (
    ("absent", "Client absent au rendez-vous"),
    ("délai", "Hors délai pour le remboursement"),
    ("politique", "Politique de remboursement du centre"),
)
DEFAULT_REFUSAL_REASON = "Motif non spécifié"

# Calls shorter than this without any transcript were never picked up.
NO_ANSWER_MAX_SECONDS = 5


@dataclass(frozen=True)
class CallClassification:
    """Classified outcome of one conversation."""

    conversation_id: str
    call_status: CallStatus
    result: CallResult | None = None
    reason: str | None = None
    comment: str | None = None

    @property
    def is_final(self) -> bool:
        return self.call_status is not CallStatus.IN_PROGRESS

    @property
    def refund_response(self) -> dict[str, Any] | None:
        if self.result not in REFUND_STATUS_LABELS:
            return None
        response: dict[str, Any] = {"status": REFUND_STATUS_LABELS[self.result]}
        if self.reason:
            response["reason"] = self.reason
        if self.comment:
            response["comment"] = self.comment
        return response

    def to_outcome(self) -> CallOutcome:
        """Outcome record for ``QueueStore.complete_attempt``."""
        result = self.result or CallResult.FAILED
        return CallOutcome(
            external_call_id=self.conversation_id or None,
            call_status=self.call_status.value,
            result=result.value,
            reason=self.reason,
        )


class OutcomeClassifier(Protocol):
    def classify(self, conversation: ConversationSnapshot) -> CallClassification:
        ...


class KeywordOutcomeClassifier:
    """Keyword-based classifier over the conversation transcript."""

    def classify(self, conversation: ConversationSnapshot) -> CallClassification:
        conversation_id = conversation.conversation_id

        if conversation.status == ConversationStatus.FAILED.value:
            return CallClassification(conversation_id, CallStatus.FAILED, CallResult.FAILED)
        if conversation.status != ConversationStatus.DONE.value:
            return CallClassification(conversation_id, CallStatus.IN_PROGRESS)

        has_transcript = len(conversation.transcript) > 0
        text = conversation.full_text.lower()

        if conversation.duration_seconds < NO_ANSWER_MAX_SECONDS and not has_transcript:
            return CallClassification(conversation_id, CallStatus.NO_ANSWER, CallResult.NO_ANSWER)
        if any("voicemail" in turn.message.lower() for turn in conversation.transcript):
            return CallClassification(conversation_id, CallStatus.VOICEMAIL, CallResult.VOICEMAIL)
        if not has_transcript:
            return CallClassification(conversation_id, CallStatus.FAILED, CallResult.FAILED)

        if any(keyword in text for keyword in ACCEPT_KEYWORDS):
            return CallClassification(
                conversation_id,
                CallStatus.ANSWERED,
                CallResult.ACCEPTED,
                comment="Remboursement accepté par le centre",
            )
        if any(keyword in text for keyword in REFUSE_KEYWORDS):
            return CallClassification(
                conversation_id,
                CallStatus.ANSWERED,
                CallResult.REJECTED,
                reason=_refusal_reason(text),
                comment="Remboursement refusé par le centre",
            )
        return CallClassification(
            conversation_id,
            CallStatus.ANSWERED,
            CallResult.CALLBACK_REQUESTED,
            comment="Réponse du centre à clarifier",
        )


def _refusal_reason(text: str) -> str:
    for keyword, reason in REFUSAL_REASONS:
        if keyword in text:
            return reason
    return DEFAULT_REFUSAL_REASON
