"""Integration tests for the model-backed engines.

These tests load real checkpoints and are skipped unless a model path is
configured:

    WHISPER_GATEWAY_WHISPER_MODEL_PATH=/models/whisper-base \
        pytest tests/integration_gpu -m gpu -v
"""

import os
from pathlib import Path

import numpy as np
import pytest

from whisper_gateway.engine.protocol import DecodeOptions
from whisper_gateway.models import ModelArtifact

# Mark all tests in this module as requiring model weights
pytestmark = pytest.mark.gpu

WHISPER_MODEL = os.environ.get("WHISPER_GATEWAY_WHISPER_MODEL_PATH")
FLUID_MODEL = os.environ.get("WHISPER_GATEWAY_FLUID_MODEL_PATH")


@pytest.mark.skipif(not WHISPER_MODEL, reason="Requires WHISPER_GATEWAY_WHISPER_MODEL_PATH")
class TestWhisperEngine:
    """Integration tests for WhisperEngine."""

    @pytest.fixture(scope="class")
    def context(self):
        from whisper_gateway.engine.whisper import WhisperEngine

        context = WhisperEngine().create_context(ModelArtifact(binary_path=Path(WHISPER_MODEL)))
        yield context
        context.close()

    def test_engine_transcribes(self, context):
        """Engine should produce text for one second of silence."""
        output = context.decode(np.zeros(16000, dtype=np.float32), DecodeOptions())
        assert isinstance(output.text, str)
        assert output.segments == []

    def test_engine_timestamps(self, context):
        """Segments stay inside the decoded audio."""
        audio = np.random.randn(16000 * 3).astype(np.float32) * 0.1
        output = context.decode(audio, DecodeOptions(with_timestamps=True, language="en"))
        for segment in output.segments:
            assert 0.0 <= segment.start_time <= segment.end_time <= 3.0

    def test_long_audio(self, context):
        """Inputs longer than the 30s window are decoded in strides."""
        audio = np.random.randn(16000 * 45).astype(np.float32) * 0.05
        output = context.decode(audio, DecodeOptions(with_timestamps=True))
        assert isinstance(output.text, str)


@pytest.mark.skipif(not FLUID_MODEL, reason="Requires WHISPER_GATEWAY_FLUID_MODEL_PATH")
class TestFluidEngine:
    """Integration tests for the text-only engine."""

    def test_engine_transcribes(self):
        from whisper_gateway.engine.fluid import FluidEngine

        engine = FluidEngine()
        assert not engine.capabilities.supports_timestamps

        context = engine.create_context(ModelArtifact(binary_path=Path(FLUID_MODEL)))
        try:
            output = context.decode(np.zeros(16000, dtype=np.float32), DecodeOptions())
        finally:
            context.close()
        assert isinstance(output.text, str)
        assert output.segments == []
