"""
Voice-agent provider factory.

Configuration comes from ``VoiceAgentConfig`` (environment + .env); never
read raw ``os.getenv`` here.
"""

from __future__ import annotations

from functools import lru_cache

from callqueue.shared.logging import get_logger
from callqueue.telephony.config import ProviderType, VoiceAgentConfig
from callqueue.telephony.config import get_voice_agent_config as _load_voice_agent_config
from callqueue.telephony.elevenlabs_adapter import ElevenLabsAdapter
from callqueue.telephony.interface import VoiceAgentProvider
from callqueue.telephony.mock_adapter import MockVoiceAgentAdapter

logger = get_logger(__name__)


def _mask(s: str, keep: int = 6) -> str:
    if not s:
        return ""
    if len(s) <= keep:
        return "*" * len(s)
    return f"{s[:keep]}***"


@lru_cache(maxsize=1)
def get_voice_agent_config() -> VoiceAgentConfig:
    return _load_voice_agent_config()


@lru_cache(maxsize=1)
def get_voice_agent_provider() -> VoiceAgentProvider:
    """Create and cache the configured provider."""
    cfg = get_voice_agent_config()

    logger.info(
        "Voice agent config resolved",
        extra={
            "provider_type": cfg.provider_type.value,
            "agent_id": cfg.ai_agent_id,
            "api_key": _mask(cfg.elevenlabs_api_key),
            "agent_phone_number": cfg.agent_phone_number,
            "missing_variables": cfg.missing_variables(),
        },
    )

    if cfg.provider_type == ProviderType.ELEVENLABS:
        return ElevenLabsAdapter(cfg)

    if cfg.provider_type == ProviderType.MOCK:
        return MockVoiceAgentAdapter()

    raise ValueError(f"Unsupported voice agent provider_type: {cfg.provider_type}")
