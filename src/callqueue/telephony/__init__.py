"""
Voice-agent telephony package.

Keep import side effects minimal: factory and adapters are imported by
callers, not here.
"""

__all__ = [
    "classifier",
    "config",
    "elevenlabs_adapter",
    "factory",
    "interface",
    "mock_adapter",
    "phone",
]
