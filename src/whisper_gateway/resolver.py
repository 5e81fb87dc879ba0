"""Model artifact resolution.

Model acquisition (download, verification, extraction) happens outside the
gateway. It reports back through two signals, ``model_ready`` and
``model_preparation_failed``; the gateway only ever reads the result via
``resolve_active_model``.
"""

import logging
import threading
from collections.abc import Callable
from enum import Enum
from typing import Protocol

from whisper_gateway.models import ModelArtifact, Provider
from whisper_gateway.status import DownloadProgress, StatusBus

logger = logging.getLogger(__name__)


class ModelStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class ModelResolver(Protocol):
    def resolve_active_model(self, provider: Provider) -> ModelArtifact | None:
        """Return the artifact to load for ``provider``, or None if not ready."""
        ...

    def failure_reason(self, provider: Provider) -> str | None:
        ...


ModelChangeListener = Callable[[Provider, ModelArtifact], None]


class ModelRegistry:
    """Resolver holding the active artifact per provider.

    Listeners registered with :meth:`on_model_change` are told when a
    provider's ready artifact is replaced by a different one, so the
    matching engine context can be reinitialized.
    """

    def __init__(self, status: StatusBus | None = None):
        self._status = status or StatusBus()
        self._lock = threading.Lock()
        self._artifacts: dict[Provider, ModelArtifact] = {}
        self._states: dict[Provider, ModelStatus] = {}
        self._failures: dict[Provider, str] = {}
        self._listeners: list[ModelChangeListener] = []

    @classmethod
    def from_settings(cls, settings, status: StatusBus | None = None) -> "ModelRegistry":
        """Mark the model paths configured in settings as ready."""
        registry = cls(status)
        configured = {
            Provider.PRIMARY: settings.whisper_model_path,
            Provider.SECONDARY: settings.fluid_model_path,
        }
        for provider, path in configured.items():
            if path is not None:
                registry.model_ready(provider, ModelArtifact(binary_path=path))
        return registry

    def on_model_change(self, listener: ModelChangeListener) -> None:
        self._listeners.append(listener)

    # Signals from model acquisition

    def model_ready(self, provider: Provider, artifact: ModelArtifact) -> None:
        with self._lock:
            previous = self._artifacts.get(provider)
            self._artifacts[provider] = artifact
            self._states[provider] = ModelStatus.READY
            self._failures.pop(provider, None)
        logger.info("Model ready for %s: %s", provider.value, artifact.binary_path)

        if previous is not None and previous != artifact:
            for listener in list(self._listeners):
                listener(provider, artifact)

    def model_preparation_failed(self, provider: Provider, reason: str) -> None:
        with self._lock:
            self._artifacts.pop(provider, None)
            self._states[provider] = ModelStatus.FAILED
            self._failures[provider] = reason
        logger.warning("Model preparation failed for %s: %s", provider.value, reason)

    def download_progress(self, model_name: str, fraction: float) -> None:
        self._status.emit(DownloadProgress(model_name, max(0.0, min(1.0, fraction))))

    # Read side

    def status(self, provider: Provider) -> ModelStatus:
        with self._lock:
            return self._states.get(provider, ModelStatus.PENDING)

    def resolve_active_model(self, provider: Provider) -> ModelArtifact | None:
        with self._lock:
            return self._artifacts.get(provider)

    def failure_reason(self, provider: Provider) -> str | None:
        with self._lock:
            return self._failures.get(provider)
