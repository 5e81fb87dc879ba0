"""Speech-to-text engines and their lifecycle management."""

from whisper_gateway.engine.manager import EngineResourceManager, EngineState
from whisper_gateway.engine.protocol import (
    Capabilities,
    DecodeOptions,
    DecodeOutput,
    Engine,
    EngineContext,
)

__all__ = [
    "Capabilities",
    "DecodeOptions",
    "DecodeOutput",
    "Engine",
    "EngineContext",
    "EngineResourceManager",
    "EngineState",
]
