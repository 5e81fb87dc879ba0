"""Data model shared by the normalizer, segmenter, engines and formatter."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import numpy as np

from whisper_gateway.constants import SAMPLE_RATE


class ResponseFormat(str, Enum):
    """Output formats accepted by the transcription endpoint."""

    JSON = "json"
    TEXT = "text"
    SRT = "srt"
    VTT = "vtt"
    VERBOSE_JSON = "verbose_json"

    @classmethod
    def parse(cls, value: str | None) -> "ResponseFormat":
        """Parse a wire value; empty or unrecognized values fall back to json."""
        if not value:
            return cls.JSON
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.JSON

    @property
    def needs_timestamps(self) -> bool:
        return self in (ResponseFormat.SRT, ResponseFormat.VTT, ResponseFormat.VERBOSE_JSON)


class Provider(str, Enum):
    """Backend engine families."""

    PRIMARY = "whisper"
    SECONDARY = "fluid"

    @classmethod
    def parse(cls, value: str) -> "Provider":
        """Parse a provider selector (wire name or family alias).

        Raises:
            ValueError: If the selector names no known backend.
        """
        normalized = value.strip().lower()
        aliases = {"primary": cls.PRIMARY, "secondary": cls.SECONDARY}
        if normalized in aliases:
            return aliases[normalized]
        return cls(normalized)


@dataclass(frozen=True)
class ModelArtifact:
    """Resolved on-disk location of a model, as handed out by the resolver."""

    binary_path: Path
    auxiliary_dir: Path | None = None

    @property
    def model_name(self) -> str:
        """Short display name derived from the artifact file name."""
        filename = self.binary_path.name.lower()
        for size in ("tiny", "base", "small", "medium", "large"):
            if size in filename:
                return size.capitalize()
        return self.binary_path.stem


@dataclass
class TranscriptionRequest:
    """A validated transcription request, independent of the HTTP layer."""

    audio: bytes
    response_format: ResponseFormat = ResponseFormat.JSON
    language: str | None = None
    prompt: str | None = None
    stream: bool = False
    provider: Provider | None = None
    model: str | None = None
    temperature: float = 0.0
    filename: str = "audio"


@dataclass(frozen=True)
class NormalizedAudio:
    """Mono float32 samples at SAMPLE_RATE."""

    samples: np.ndarray
    sample_rate: int = SAMPLE_RATE

    @property
    def num_samples(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        """Total duration in seconds."""
        return self.num_samples / self.sample_rate


@dataclass(frozen=True)
class SpeechSegment:
    """A detected speech region in normalized-audio coordinates."""

    start_time: float
    end_time: float
    start_sample: int
    end_sample: int

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class AudioChunk:
    """A contiguous decode unit submitted to an engine.

    ``original_start_time`` is the position in the source audio that the
    engine's chunk-local times are offset by.
    """

    samples: np.ndarray
    start_time: float
    end_time: float
    original_start_time: float

    @property
    def duration(self) -> float:
        return len(self.samples) / SAMPLE_RATE


@dataclass(frozen=True)
class TranscriptionSegment:
    """A piece of recognized text with absolute start/end times in seconds."""

    start_time: float
    end_time: float
    text: str


@dataclass
class TranscriptionResult:
    """Full text plus ordered segments (empty when timestamps were not requested)."""

    text: str
    segments: list[TranscriptionSegment] = field(default_factory=list)
    duration: float = 0.0
    language: str | None = None
