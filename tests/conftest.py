"""Shared fixtures: synthesized WAV uploads and fake-engine gateways."""

import io

import numpy as np
import pytest
import soundfile as sf

from whisper_gateway.constants import SAMPLE_RATE
from whisper_gateway.engine.fake import FakeEngine
from whisper_gateway.engine.manager import EngineResourceManager
from whisper_gateway.models import ModelArtifact, Provider
from whisper_gateway.resolver import ModelRegistry
from whisper_gateway.router import ProviderRouter
from whisper_gateway.status import StatusBus


def tone(duration: float, amplitude: float = 0.3, freq: float = 440.0, rate: int = SAMPLE_RATE):
    t = np.arange(int(duration * rate)) / rate
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def silence(duration: float, rate: int = SAMPLE_RATE):
    return np.zeros(int(duration * rate), dtype=np.float32)


def speech_with_gap() -> np.ndarray:
    """11 seconds: speech 0-4s, silence 4-6s, speech 6-11s."""
    return np.concatenate([tone(4.0), silence(2.0), tone(5.0, freq=220.0)])


def wav_bytes(samples: np.ndarray, rate: int = SAMPLE_RATE) -> bytes:
    buf = io.BytesIO()
    sf.write(buf, samples, rate, format="WAV", subtype="PCM_16")
    return buf.getvalue()


@pytest.fixture
def model_file(tmp_path):
    """A stand-in model artifact that exists on disk."""
    path = tmp_path / "ggml-base.en.bin"
    path.write_bytes(b"\0" * 16)
    return ModelArtifact(binary_path=path)


@pytest.fixture
def status():
    return StatusBus()


@pytest.fixture
def primary_engine():
    return FakeEngine()


@pytest.fixture
def secondary_engine():
    return FakeEngine(supports_timestamps=False)


@pytest.fixture
def registry(model_file, status):
    registry = ModelRegistry(status)
    registry.model_ready(Provider.PRIMARY, model_file)
    registry.model_ready(Provider.SECONDARY, model_file)
    return registry


@pytest.fixture
def router(primary_engine, secondary_engine, registry, status):
    managers = {
        Provider.PRIMARY: EngineResourceManager(primary_engine, status=status),
        Provider.SECONDARY: EngineResourceManager(secondary_engine, status=status),
    }
    return ProviderRouter(managers, registry)
