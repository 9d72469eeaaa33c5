"""Tests for the ElevenLabs adapter (sync, mocked httpx client)."""

import hashlib
import hmac
from unittest.mock import MagicMock

import httpx
import pytest

from callqueue.telephony.config import ProviderType, VoiceAgentConfig
from callqueue.telephony.elevenlabs_adapter import ElevenLabsAdapter
from callqueue.telephony.interface import (
    CallInitiationError,
    CallInitiationRequest,
    ConversationFetchError,
    WebhookParseError,
)

NOW = 1_753_690_000
SECRET = "whsec_test_secret"


@pytest.fixture
def agent_config() -> VoiceAgentConfig:
    return VoiceAgentConfig(
        provider_type=ProviderType.ELEVENLABS,
        ai_agent_id="agent_123",
        ai_agent_api_url="https://api.elevenlabs.io/v1/convai/twilio/outbound-call",
        elevenlabs_api_key="xi_test_key",
        agent_phone_number="+33100000000",
        agent_phone_number_id="phnum_1",
        elevenlabs_webhook_secret=SECRET,
    )


@pytest.fixture
def call_request() -> CallInitiationRequest:
    return CallInitiationRequest(
        to_number="+33123456789",
        reference="ORD-1001",
        dynamic_variables={"nom_client": "Jean Dupont", "reference": "ORD-1001"},
    )


def _adapter(config: VoiceAgentConfig, client: MagicMock | None = None) -> ElevenLabsAdapter:
    return ElevenLabsAdapter(config=config, http_client=client or MagicMock(spec=httpx.Client), clock=lambda: NOW)


def _sign(body: bytes, timestamp: int = NOW, secret: str = SECRET) -> str:
    digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + body, hashlib.sha256).hexdigest()
    return f"t={timestamp},v0={digest}"


class TestInitiateCallSync:
    def test_success(self, agent_config: VoiceAgentConfig, call_request: CallInitiationRequest) -> None:
        mock_client = MagicMock(spec=httpx.Client)
        mock_client.post.return_value = httpx.Response(
            status_code=200,
            json={"success": True, "conversation_id": "conv_abc", "sip_call_id": "sip_1"},
        )

        response = _adapter(agent_config, mock_client).initiate_call_sync(call_request)

        assert response.conversation_id == "conv_abc"
        assert response.sip_call_id == "sip_1"

        call_args = mock_client.post.call_args
        assert call_args[0][0] == agent_config.ai_agent_api_url
        assert call_args[1]["headers"]["xi-api-key"] == "xi_test_key"
        payload = call_args[1]["json"]
        assert payload["agent_id"] == "agent_123"
        assert payload["agent_phone_number_id"] == "phnum_1"
        assert payload["to_number"] == "+33123456789"
        assert payload["conversation_initiation_client_data"]["dynamic_variables"]["nom_client"] == "Jean Dupont"

    def test_missing_phone(self, agent_config: VoiceAgentConfig) -> None:
        mock_client = MagicMock(spec=httpx.Client)
        request = CallInitiationRequest(to_number="", reference="ORD-1")

        with pytest.raises(CallInitiationError) as exc_info:
            _adapter(agent_config, mock_client).initiate_call_sync(request)

        assert exc_info.value.error_code == "MISSING_PHONE_NUMBER"
        mock_client.post.assert_not_called()

    def test_api_error(self, agent_config: VoiceAgentConfig, call_request: CallInitiationRequest) -> None:
        mock_client = MagicMock(spec=httpx.Client)
        mock_client.post.return_value = httpx.Response(status_code=422, json={"detail": "invalid to_number"})

        with pytest.raises(CallInitiationError) as exc_info:
            _adapter(agent_config, mock_client).initiate_call_sync(call_request)

        assert exc_info.value.error_code == "422"
        assert exc_info.value.provider_response == {"detail": "invalid to_number"}

    def test_http_error(self, agent_config: VoiceAgentConfig, call_request: CallInitiationRequest) -> None:
        mock_client = MagicMock(spec=httpx.Client)
        mock_client.post.side_effect = httpx.ConnectError("Connection refused")

        with pytest.raises(CallInitiationError) as exc_info:
            _adapter(agent_config, mock_client).initiate_call_sync(call_request)

        assert exc_info.value.error_code == "HTTP_ERROR"

    def test_response_without_conversation_id(
        self,
        agent_config: VoiceAgentConfig,
        call_request: CallInitiationRequest,
    ) -> None:
        mock_client = MagicMock(spec=httpx.Client)
        mock_client.post.return_value = httpx.Response(status_code=200, json={"success": False})

        with pytest.raises(CallInitiationError) as exc_info:
            _adapter(agent_config, mock_client).initiate_call_sync(call_request)

        assert exc_info.value.error_code == "INVALID_RESPONSE"


class TestGetConversationSync:
    def test_parses_conversation(self, agent_config: VoiceAgentConfig) -> None:
        url = agent_config.get_conversation_url("conv_abc")
        mock_client = MagicMock(spec=httpx.Client)
        mock_client.get.return_value = httpx.Response(
            status_code=200,
            json={
                "conversation_id": "conv_abc",
                "status": "done",
                "transcript": [
                    {"role": "agent", "message": "Bonjour"},
                    {"role": "user", "message": "On accepte"},
                    {"role": "user", "message": None},
                ],
                "metadata": {"call_duration_secs": 42},
            },
            request=httpx.Request("GET", url),
        )

        snapshot = _adapter(agent_config, mock_client).get_conversation_sync("conv_abc")

        assert snapshot.status == "done"
        assert snapshot.is_finished
        assert snapshot.duration_seconds == 42.0
        assert [turn.role for turn in snapshot.transcript] == ["agent", "user", "user"]
        assert snapshot.full_text == "Bonjour On accepte"
        assert mock_client.get.call_args[0][0] == "https://api.elevenlabs.io/v1/convai/conversations/conv_abc"

    def test_not_found(self, agent_config: VoiceAgentConfig) -> None:
        url = agent_config.get_conversation_url("missing")
        mock_client = MagicMock(spec=httpx.Client)
        mock_client.get.return_value = httpx.Response(
            status_code=404,
            json={"detail": "not found"},
            request=httpx.Request("GET", url),
        )

        with pytest.raises(ConversationFetchError) as exc_info:
            _adapter(agent_config, mock_client).get_conversation_sync("missing")

        assert exc_info.value.error_code == "404"

    def test_network_error(self, agent_config: VoiceAgentConfig) -> None:
        mock_client = MagicMock(spec=httpx.Client)
        mock_client.get.side_effect = httpx.ReadTimeout("timed out")

        with pytest.raises(ConversationFetchError) as exc_info:
            _adapter(agent_config, mock_client).get_conversation_sync("conv_abc")

        assert exc_info.value.error_code == "HTTP_ERROR"

    def test_malformed_conversation(self, agent_config: VoiceAgentConfig) -> None:
        url = agent_config.get_conversation_url("conv_abc")
        mock_client = MagicMock(spec=httpx.Client)
        mock_client.get.return_value = httpx.Response(
            status_code=200,
            json={"conversation_id": "conv_abc", "status": "done", "metadata": ["oops"]},
            request=httpx.Request("GET", url),
        )

        with pytest.raises(ConversationFetchError) as exc_info:
            _adapter(agent_config, mock_client).get_conversation_sync("conv_abc")

        assert exc_info.value.error_code == "INVALID_PAYLOAD"


class TestParseWebhookEvent:
    def test_post_call_transcription(self, agent_config: VoiceAgentConfig) -> None:
        snapshot = _adapter(agent_config).parse_webhook_event(
            {
                "type": "post_call_transcription",
                "event_timestamp": NOW,
                "data": {
                    "conversation_id": "conv_abc",
                    "status": "done",
                    "transcript": [{"role": "user", "message": "Nous refusons, c'est impossible"}],
                    "metadata": {"call_duration_secs": 30},
                },
            }
        )

        assert snapshot.conversation_id == "conv_abc"
        assert snapshot.duration_seconds == 30.0
        assert len(snapshot.transcript) == 1

    def test_unsupported_type(self, agent_config: VoiceAgentConfig) -> None:
        with pytest.raises(WebhookParseError) as exc_info:
            _adapter(agent_config).parse_webhook_event({"type": "call_initiation_failure", "data": {}})
        assert exc_info.value.error_code == "UNSUPPORTED_EVENT"

    def test_missing_conversation_id(self, agent_config: VoiceAgentConfig) -> None:
        with pytest.raises(WebhookParseError) as exc_info:
            _adapter(agent_config).parse_webhook_event({"type": "post_call_transcription", "data": {}})
        assert exc_info.value.error_code == "MISSING_CONVERSATION_ID"

    @pytest.mark.parametrize(
        "data",
        [
            {"metadata": "x"},
            {"metadata": {"call_duration_secs": "long"}},
            {"metadata": {"call_duration_secs": [1]}},
            {"transcript": "Bonjour"},
        ],
    )
    def test_malformed_payload(self, agent_config: VoiceAgentConfig, data: dict) -> None:
        with pytest.raises(WebhookParseError) as exc_info:
            _adapter(agent_config).parse_webhook_event(
                {"type": "post_call_transcription", "data": {"conversation_id": "conv_abc", "status": "done", **data}}
            )
        assert exc_info.value.error_code == "INVALID_PAYLOAD"


class TestWebhookSignature:
    BODY = b'{"type":"post_call_transcription","data":{"conversation_id":"conv_abc"}}'

    def test_valid(self, agent_config: VoiceAgentConfig) -> None:
        assert _adapter(agent_config).validate_webhook_signature(self.BODY, _sign(self.BODY))

    def test_tampered_body(self, agent_config: VoiceAgentConfig) -> None:
        assert not _adapter(agent_config).validate_webhook_signature(self.BODY + b" ", _sign(self.BODY))

    def test_wrong_secret(self, agent_config: VoiceAgentConfig) -> None:
        signature = _sign(self.BODY, secret="other")
        assert not _adapter(agent_config).validate_webhook_signature(self.BODY, signature)

    def test_expired(self, agent_config: VoiceAgentConfig) -> None:
        signature = _sign(self.BODY, timestamp=NOW - 3600)
        assert not _adapter(agent_config).validate_webhook_signature(self.BODY, signature)

    @pytest.mark.parametrize("header", [None, "", "garbage", "t=abc,v0=00", "t=123"])
    def test_malformed_header(self, agent_config: VoiceAgentConfig, header: str | None) -> None:
        assert not _adapter(agent_config).validate_webhook_signature(self.BODY, header)

    def test_no_secret_configured(self, agent_config: VoiceAgentConfig) -> None:
        config = agent_config.model_copy(update={"elevenlabs_webhook_secret": ""})
        assert _adapter(config).validate_webhook_signature(self.BODY, None)


class TestDescribe:
    def test_describe(self, agent_config: VoiceAgentConfig) -> None:
        assert _adapter(agent_config).describe() == {
            "agent_id": "agent_123",
            "phone_number": "+33100000000",
            "phone_number_id": "phnum_1",
        }
