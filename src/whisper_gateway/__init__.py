"""OpenAI-compatible local transcription gateway."""

from whisper_gateway.constants import (
    DEFAULT_PORT,
    SAMPLE_RATE,
    TRANSCRIPTION_PATH,
)

__version__ = "0.1.0"

__all__ = [
    "SAMPLE_RATE",
    "DEFAULT_PORT",
    "TRANSCRIPTION_PATH",
    "__version__",
]
