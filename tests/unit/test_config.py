"""Unit tests for settings loading and engine configuration."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from whisper_gateway.config import EngineConfig, Settings
from whisper_gateway.models import ModelArtifact, Provider
from whisper_gateway.resolver import ModelRegistry, ModelStatus
from whisper_gateway.status import DownloadProgress, StatusBus
from whisper_gateway.vad import ChunkingOptions


def _settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


class TestSettings:
    """Tests for Settings defaults, env loading and clamps."""

    def test_defaults(self):
        settings = _settings()
        assert settings.port == 12017
        assert settings.idle_timeout == 30.0
        assert settings.default_provider == "whisper"
        assert settings.whisper_model_path is None

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("WHISPER_GATEWAY_PORT", "9000")
        monkeypatch.setenv("WHISPER_GATEWAY_USE_GPU", "false")
        settings = _settings()
        assert settings.port == 9000
        assert settings.use_gpu is False

    def test_idle_timeout_floor(self):
        assert _settings(idle_timeout=1).idle_timeout == 5.0

    @pytest.mark.parametrize(
        "field,value,expected",
        [
            ("vad_energy_threshold", 3.0, 1.0),
            ("vad_energy_threshold", -1.0, 0.0),
            ("vad_min_speech_duration", 0.0, 0.1),
            ("vad_min_silence_duration", 0.01, 0.1),
            ("max_chunk_duration", 2.0, 10.0),
            ("chunk_overlap", -1.0, 0.0),
        ],
    )
    def test_clamps(self, field, value, expected):
        assert getattr(_settings(**{field: value}), field) == expected

    @pytest.mark.parametrize(
        "value,expected", [("primary", "whisper"), (" Fluid ", "fluid"), ("whisper", "whisper")]
    )
    def test_default_provider_normalized(self, value, expected):
        assert _settings(default_provider=value).default_provider == expected

    def test_unknown_default_provider_rejected_at_load(self, monkeypatch):
        """A typo fails when settings load, not on the first request."""
        monkeypatch.setenv("WHISPER_GATEWAY_DEFAULT_PROVIDER", "parakeet")
        with pytest.raises(ValidationError, match="parakeet"):
            _settings()

    def test_chunking_options(self):
        options = ChunkingOptions.from_settings(_settings(vad_enabled=False, chunk_overlap=1.5))
        assert options.vad_enabled is False
        assert options.chunk_overlap == 1.5

    def test_engine_config(self):
        config = _settings(use_gpu=False, idle_timeout=12).engine_config()
        assert config == EngineConfig(use_gpu=False, idle_timeout=12.0, version=0)


class TestEngineConfig:
    def test_updated_bumps_version(self):
        config = EngineConfig()
        newer = config.updated(idle_timeout=60.0)
        assert newer.version == config.version + 1
        assert newer.idle_timeout == 60.0
        assert config.idle_timeout == 30.0


class TestModelRegistry:
    """Tests for the settings-backed model resolver."""

    def test_from_settings(self, tmp_path):
        path = tmp_path / "ggml-large-v3.bin"
        registry = ModelRegistry.from_settings(_settings(whisper_model_path=path))

        assert registry.resolve_active_model(Provider.PRIMARY) == ModelArtifact(binary_path=path)
        assert registry.resolve_active_model(Provider.SECONDARY) is None
        assert registry.status(Provider.SECONDARY) is ModelStatus.PENDING
        assert registry.resolve_active_model(Provider.PRIMARY).model_name == "Large"

    def test_download_progress_event(self):
        status = StatusBus()
        events = []
        status.subscribe(events.append)

        ModelRegistry(status).download_progress("Base", 1.7)

        assert events == [DownloadProgress("Base", 1.0)]

    def test_recovery_after_failure(self, tmp_path):
        registry = ModelRegistry()
        registry.model_preparation_failed(Provider.PRIMARY, "disk full")
        registry.model_ready(Provider.PRIMARY, ModelArtifact(binary_path=Path(tmp_path)))

        assert registry.status(Provider.PRIMARY) is ModelStatus.READY
        assert registry.failure_reason(Provider.PRIMARY) is None


class TestStatusBus:
    def test_unsubscribe(self):
        status = StatusBus()
        events = []
        unsubscribe = status.subscribe(events.append)
        unsubscribe()
        status.emit(DownloadProgress("Base", 0.5))
        assert events == []

    def test_failing_sink_does_not_block_others(self):
        status = StatusBus()
        events = []

        def broken(event):
            raise RuntimeError("sink down")

        status.subscribe(broken)
        status.subscribe(events.append)
        status.emit(DownloadProgress("Base", 0.5))
        assert len(events) == 1
