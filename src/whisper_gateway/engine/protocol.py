"""Engine protocol defining the interface for STT inference backends.

This is the sealed boundary that isolates model-dependent code from the
rest of the system (resource manager, orchestrator, server, tests). The
rest of the gateway only sees capability flags, never backend names.
"""

from dataclasses import dataclass, field
from typing import Protocol

import numpy as np

from whisper_gateway.models import ModelArtifact, ResponseFormat, TranscriptionSegment


@dataclass(frozen=True)
class Capabilities:
    """What a backend family can deliver."""

    supports_timestamps: bool
    supports_segment_streaming: bool

    def supports_format(self, response_format: ResponseFormat) -> bool:
        return self.supports_timestamps or not response_format.needs_timestamps


@dataclass(frozen=True)
class DecodeOptions:
    language: str | None = None
    prompt: str | None = None
    with_timestamps: bool = False
    temperature: float = 0.0


@dataclass
class DecodeOutput:
    """Result of decoding one chunk.

    Segment times are local to the decoded samples (0 = first sample).
    """

    text: str
    segments: list[TranscriptionSegment] = field(default_factory=list)


class EngineContext(Protocol):
    """A loaded, ready-to-decode model instance.

    Contexts are not assumed to be re-entrant: the resource manager never
    hands one context to two decodes at once.
    """

    def decode(self, samples: np.ndarray, options: DecodeOptions) -> DecodeOutput:
        """Decode 16kHz mono float32 samples.

        Raises:
            Exception: Any backend failure; the orchestrator reports it as
                a transcription failure.
        """
        ...

    def close(self) -> None:
        """Release the model memory held by this context."""
        ...


class Engine(Protocol):
    """Factory for contexts of one backend family."""

    name: str
    capabilities: Capabilities

    def create_context(self, artifact: ModelArtifact, use_gpu: bool = True) -> EngineContext:
        """Load the model at ``artifact`` into a new context.

        Raises:
            EngineInitError: If the artifact is missing, unreadable or fails to load.
        """
        ...
