"""Gateway configuration.

``Settings`` is read once from the environment; ``EngineConfig`` is the
immutable slice of it handed to the engine resource managers.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

from whisper_gateway.constants import (
    DEFAULT_PORT,
    IDLE_TIMEOUT_SECONDS,
    MAX_CHUNK_DURATION,
    MIN_CHUNK_DURATION,
    MIN_IDLE_TIMEOUT_SECONDS,
    VAD_ENERGY_THRESHOLD,
    VAD_MIN_SILENCE_DURATION,
    VAD_MIN_SPEECH_DURATION,
)
from whisper_gateway.models import Provider


@dataclass(frozen=True)
class EngineConfig:
    """Immutable engine settings handed to the resource managers.

    ``version`` increases on every change so a manager can tell that the
    configuration it built its shared context from is stale.
    """

    use_gpu: bool = True
    idle_timeout: float = IDLE_TIMEOUT_SECONDS
    version: int = 0

    def updated(self, **changes) -> EngineConfig:
        return replace(self, version=self.version + 1, **changes)


class Settings(BaseSettings):
    """Gateway settings validated via Pydantic.

    Values are loaded from ``WHISPER_GATEWAY_*`` environment variables
    and/or a .env file.
    """

    # Server
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    log_level: str = "INFO"

    # Engines
    default_provider: str = "whisper"
    use_gpu: bool = True
    idle_timeout: float = IDLE_TIMEOUT_SECONDS
    whisper_model_path: Path | None = None
    fluid_model_path: Path | None = None
    preload_on_start: bool = False
    isolate_chunk_contexts: bool = False

    # Chunking / VAD
    vad_enabled: bool = True
    remove_leading_silence: bool = True
    vad_energy_threshold: float = VAD_ENERGY_THRESHOLD
    vad_min_speech_duration: float = VAD_MIN_SPEECH_DURATION
    vad_min_silence_duration: float = VAD_MIN_SILENCE_DURATION
    max_chunk_duration: float = MAX_CHUNK_DURATION
    chunk_overlap: float = 0.0

    model_config = {
        "env_prefix": "WHISPER_GATEWAY_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("default_provider")
    @classmethod
    def _known_provider(cls, value: str) -> str:
        try:
            return Provider.parse(value).value
        except ValueError:
            choices = ", ".join(p.value for p in Provider)
            raise ValueError(f"unknown provider {value!r}, expected one of: {choices}") from None

    @field_validator("idle_timeout")
    @classmethod
    def _clamp_idle_timeout(cls, value: float) -> float:
        return max(MIN_IDLE_TIMEOUT_SECONDS, value)

    @field_validator("vad_energy_threshold")
    @classmethod
    def _clamp_threshold(cls, value: float) -> float:
        return max(0.0, min(1.0, value))

    @field_validator("vad_min_speech_duration", "vad_min_silence_duration")
    @classmethod
    def _clamp_vad_durations(cls, value: float) -> float:
        return max(0.1, value)

    @field_validator("max_chunk_duration")
    @classmethod
    def _clamp_chunk_duration(cls, value: float) -> float:
        return max(MIN_CHUNK_DURATION, value)

    @field_validator("chunk_overlap")
    @classmethod
    def _clamp_overlap(cls, value: float) -> float:
        return max(0.0, value)

    def engine_config(self) -> EngineConfig:
        return EngineConfig(use_gpu=self.use_gpu, idle_timeout=self.idle_timeout)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Falls back to environment variables and defaults when the .env file
    is missing or unreadable.
    """
    try:
        return Settings()
    except OSError:
        return Settings(_env_file=None)  # type: ignore[call-arg]
