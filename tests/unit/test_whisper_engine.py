"""Unit tests for Whisper decode options that need no model weights."""

import logging
from types import SimpleNamespace

import pytest

from whisper_gateway.engine.protocol import DecodeOptions
from whisper_gateway.engine.whisper import WhisperContext


def _context(is_multilingual: bool | None) -> WhisperContext:
    generation_config = SimpleNamespace()
    if is_multilingual is not None:
        generation_config.is_multilingual = is_multilingual
    pipe = SimpleNamespace(model=SimpleNamespace(generation_config=generation_config))
    return WhisperContext(pipe, "cpu", "Base")


class TestGenerateKwargs:
    """Tests for the generate() arguments built per request."""

    def test_english_only_model_gets_no_task(self):
        """English-only checkpoints raise if task or language is passed."""
        kwargs = _context(is_multilingual=False)._generate_kwargs(DecodeOptions())
        assert "task" not in kwargs
        assert "language" not in kwargs

    def test_english_only_model_drops_language_hint(self, caplog):
        context = _context(is_multilingual=False)
        with caplog.at_level(logging.DEBUG, logger="whisper_gateway.engine.whisper"):
            kwargs = context._generate_kwargs(DecodeOptions(language="de"))

        assert "language" not in kwargs
        assert "task" not in kwargs
        assert "ignored" in caplog.text

    def test_multilingual_model(self):
        kwargs = _context(is_multilingual=True)._generate_kwargs(DecodeOptions(language="fr"))
        assert kwargs == {"task": "transcribe", "language": "fr"}

    def test_config_without_flag_is_multilingual(self):
        assert _context(is_multilingual=None).is_multilingual

    @pytest.mark.parametrize("temperature,sampled", [(0.0, False), (0.4, True)])
    def test_temperature(self, temperature, sampled):
        kwargs = _context(is_multilingual=False)._generate_kwargs(
            DecodeOptions(temperature=temperature)
        )
        assert kwargs.get("do_sample", False) is sampled
