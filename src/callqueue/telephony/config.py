"""
Voice-agent provider configuration.
"""

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderType(str, Enum):
    """Supported voice-agent provider types."""

    ELEVENLABS = "elevenlabs"
    MOCK = "mock"


# Field name -> environment variable reported when missing.
REQUIRED_VARIABLES: dict[str, str] = {
    "ai_agent_id": "AI_AGENT_ID",
    "ai_agent_api_url": "AI_AGENT_API_URL",
    "elevenlabs_api_key": "ELEVENLABS_API_KEY",
    "agent_phone_number": "AGENT_PHONE_NUMBER",
    "agent_phone_number_id": "AGENT_PHONE_NUMBER_ID",
}


class VoiceAgentConfig(BaseSettings):
    """Voice-agent configuration from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    provider_type: ProviderType = Field(default=ProviderType.ELEVENLABS)

    # Agent and outbound number
    ai_agent_id: str = Field(default="")
    ai_agent_api_url: str = Field(
        default="",
        description="Outbound call endpoint (e.g. .../v1/convai/twilio/outbound-call)",
    )
    elevenlabs_api_key: str = Field(default="")
    agent_phone_number: str = Field(default="")
    agent_phone_number_id: str = Field(default="")

    # Conversation lookup and post-call webhooks
    conversations_api_url: str = Field(
        default="https://api.elevenlabs.io/v1/convai/conversations",
    )
    elevenlabs_webhook_secret: str = Field(
        default="",
        description="Shared secret of the post-call webhook (empty disables verification)",
    )
    webhook_tolerance_seconds: int = Field(default=1800, ge=0)

    request_timeout_seconds: float = Field(default=60.0, gt=0, le=300)

    def missing_variables(self) -> list[str]:
        """Environment variables that must be set before calls can be placed."""
        return [env for field, env in REQUIRED_VARIABLES.items() if not getattr(self, field)]

    @property
    def is_configured(self) -> bool:
        return not self.missing_variables()

    def get_conversation_url(self, conversation_id: str) -> str:
        base = self.conversations_api_url.rstrip("/")
        return f"{base}/{conversation_id}"


def get_voice_agent_config() -> VoiceAgentConfig:
    return VoiceAgentConfig()
