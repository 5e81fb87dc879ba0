"""Fake engines for CPU-based testing.

Return deterministic output based on audio characteristics, allowing
reliable tests of the whole request pipeline without model weights.
"""

import hashlib
import time

import numpy as np

from whisper_gateway.constants import SAMPLE_RATE
from whisper_gateway.engine.loading import check_artifact
from whisper_gateway.engine.protocol import Capabilities, DecodeOptions, DecodeOutput
from whisper_gateway.models import ModelArtifact, TranscriptionSegment


class FakeContext:
    """Deterministic context: text encodes the audio hash and duration."""

    def __init__(self, engine: "FakeEngine", artifact: ModelArtifact):
        self._engine = engine
        self.artifact = artifact
        self.closed = False

    def decode(self, samples: np.ndarray, options: DecodeOptions) -> DecodeOutput:
        if self.closed:
            raise RuntimeError("decode on a closed context")
        return self._engine.decode(samples, options)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._engine.contexts_closed += 1


class FakeEngine:
    """Deterministic CPU engine for testing.

    Counts context creation and decode calls so tests can observe context
    reuse, and can be told to fail on a given decode call.
    """

    name = "fake"

    def __init__(
        self,
        latency_ms: float = 0.0,
        supports_timestamps: bool = True,
        fail_on_call: int | None = None,
    ):
        """Initialize the fake engine.

        Args:
            latency_ms: Simulated inference latency in milliseconds.
            supports_timestamps: Report the primary (timestamp-capable) capability set.
            fail_on_call: 1-based decode call number that raises instead of returning.
        """
        self._latency_ms = latency_ms
        self._fail_on_call = fail_on_call
        self.capabilities = Capabilities(
            supports_timestamps=supports_timestamps,
            supports_segment_streaming=supports_timestamps,
        )
        self.contexts_created = 0
        self.contexts_closed = 0
        self._call_count = 0

    def create_context(self, artifact: ModelArtifact, use_gpu: bool = True) -> FakeContext:
        check_artifact(artifact)
        self.contexts_created += 1
        return FakeContext(self, artifact)

    def decode(self, samples: np.ndarray, options: DecodeOptions) -> DecodeOutput:
        if self._latency_ms > 0:
            time.sleep(self._latency_ms / 1000.0)

        self._call_count += 1
        if self._fail_on_call is not None and self._call_count == self._fail_on_call:
            raise RuntimeError(f"simulated decode failure on call {self._call_count}")

        duration_s = len(samples) / SAMPLE_RATE
        text = f"[fake:{self._hash_audio(samples)[:8]}|{duration_s:.2f}s]"

        segments = []
        if options.with_timestamps and self.capabilities.supports_timestamps:
            segments.append(TranscriptionSegment(0.0, duration_s, text))
        return DecodeOutput(text=text, segments=segments)

    @property
    def call_count(self) -> int:
        """Number of decode calls made."""
        return self._call_count

    @staticmethod
    def _hash_audio(audio: np.ndarray) -> str:
        """Generate a short hash of audio content for deterministic output."""
        # Use first 100 samples (or all if shorter) for hash
        samples = np.ascontiguousarray(audio[: min(100, len(audio))], dtype=np.float32)
        return hashlib.sha256(samples.tobytes()).hexdigest()
