"""Provider routing: pick a backend family and check it can serve the request."""

import logging
from dataclasses import dataclass

from whisper_gateway.config import EngineConfig
from whisper_gateway.engine.manager import EngineResourceManager
from whisper_gateway.engine.protocol import Capabilities
from whisper_gateway.errors import ModelUnavailable, UnsupportedCombinationError
from whisper_gateway.models import ModelArtifact, Provider, TranscriptionRequest
from whisper_gateway.resolver import ModelResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Route:
    """A request bound to one backend and the model artifact it will load."""

    provider: Provider
    manager: EngineResourceManager
    artifact: ModelArtifact

    @property
    def capabilities(self) -> Capabilities:
        return self.manager.engine.capabilities


class ProviderRouter:
    """Maps each request to one backend and its ready model.

    Holds one resource manager per provider. Requests that name no provider
    go to the default one, which can be switched at runtime.
    """

    def __init__(
        self,
        managers: dict[Provider, EngineResourceManager],
        resolver: ModelResolver,
        default_provider: Provider = Provider.PRIMARY,
    ):
        self._managers = managers
        self._resolver = resolver
        self._default_provider = default_provider

    @property
    def default_provider(self) -> Provider:
        return self._default_provider

    @property
    def managers(self) -> dict[Provider, EngineResourceManager]:
        return dict(self._managers)

    def select_default_provider(self, provider: Provider) -> None:
        logger.info("Default provider: %s -> %s", self._default_provider.value, provider.value)
        self._default_provider = provider

    def resolve(self, request: TranscriptionRequest) -> Route:
        """Resolve the backend for a request without touching any engine.

        Raises:
            UnsupportedCombinationError: If the backend cannot produce the
                requested format or streaming mode.
            ModelUnavailable: If the provider has no ready model.
        """
        provider = request.provider or self._default_provider
        manager = self._managers.get(provider)
        if manager is None:
            raise ModelUnavailable(f"Provider '{provider.value}' is not configured")

        capabilities = manager.engine.capabilities
        response_format = request.response_format
        if not capabilities.supports_format(response_format):
            raise UnsupportedCombinationError(
                f"Provider '{provider.value}' does not support "
                f"response_format '{response_format.value}'"
            )
        if (
            request.stream
            and response_format.needs_timestamps
            and not capabilities.supports_segment_streaming
        ):
            raise UnsupportedCombinationError(
                f"Provider '{provider.value}' does not support streaming "
                f"response_format '{response_format.value}'"
            )

        artifact = self._resolver.resolve_active_model(provider)
        if artifact is None:
            reason = self._resolver.failure_reason(provider)
            raise ModelUnavailable(
                f"Model for provider '{provider.value}' is not ready"
                + (f": {reason}" if reason else "")
            )

        return Route(provider=provider, manager=manager, artifact=artifact)

    def reinitialize(self, provider: Provider, config: EngineConfig | None = None) -> None:
        manager = self._managers.get(provider)
        if manager is not None:
            manager.reinitialize(config)

    def apply_config(self, config: EngineConfig) -> None:
        """Push new engine settings to every backend."""
        for manager in self._managers.values():
            manager.reinitialize(config)

    def start(self) -> None:
        for manager in self._managers.values():
            manager.start()

    def shutdown(self) -> None:
        for manager in self._managers.values():
            manager.shutdown()
