"""Lifecycle owner for backend engine contexts.

One manager exists per engine family. It holds at most one shared context,
creates it lazily, serializes every decode on it behind a single lock, and
evicts it after a period without access. Callers borrow the context for
exactly one decode through :meth:`EngineResourceManager.shared_context`.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from enum import Enum

from whisper_gateway.config import EngineConfig
from whisper_gateway.constants import MIN_IDLE_TIMEOUT_SECONDS
from whisper_gateway.engine.protocol import Engine, EngineContext
from whisper_gateway.models import ModelArtifact
from whisper_gateway.status import EngineActivated, EngineReleased, StatusBus

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"


class EngineResourceManager:
    """Owns the shared context of one engine family.

    Lifecycle transitions (create, reinitialize, idle eviction, shutdown)
    and decodes on the shared context are mutually exclusive: they all run
    under ``self._lock``.
    """

    def __init__(
        self,
        engine: Engine,
        config: EngineConfig | None = None,
        status: StatusBus | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the manager.

        Args:
            engine: Factory for contexts of this engine family.
            config: Engine settings; replaced on :meth:`reinitialize`.
            status: Bus receiving activation/release events.
            clock: Monotonic time source, injectable for tests.
        """
        self._engine = engine
        self._config = config or EngineConfig()
        self._status = status or StatusBus()
        self._clock = clock

        self._lock = threading.Lock()
        self._context: EngineContext | None = None
        self._artifact: ModelArtifact | None = None
        self._last_access = clock()
        self._contexts_created = 0

        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def idle_timeout(self) -> float:
        return max(MIN_IDLE_TIMEOUT_SECONDS, self._config.idle_timeout)

    @property
    def state(self) -> EngineState:
        return EngineState.READY if self._context is not None else EngineState.UNINITIALIZED

    @property
    def contexts_created(self) -> int:
        """Number of shared contexts created since start-up."""
        return self._contexts_created

    # ------------------------------------------------------------------
    # Context access
    # ------------------------------------------------------------------

    def get_or_create_shared_context(self, artifact: ModelArtifact) -> EngineContext:
        """Return the shared context, creating it from ``artifact`` if needed.

        The returned handle must not be used for decoding outside
        :meth:`shared_context`; this accessor exists for warm-up.

        Raises:
            EngineInitError: If the artifact cannot be loaded.
        """
        with self._lock:
            context = self._get_or_create_locked(artifact)
            self._touch()
            return context

    def preload(self, artifact: ModelArtifact) -> None:
        """Load the shared context ahead of the first request."""
        self.get_or_create_shared_context(artifact)

    @contextmanager
    def shared_context(self, artifact: ModelArtifact) -> Iterator[EngineContext]:
        """Borrow the shared context for a single decode.

        Holds the manager lock for the duration of the ``with`` block, so
        concurrent decodes on the shared context run one at a time and no
        eviction can happen underneath them.
        """
        with self._lock:
            context = self._get_or_create_locked(artifact)
            self._touch()
            try:
                yield context
            finally:
                self._touch()

    def create_isolated_context(self, artifact: ModelArtifact) -> EngineContext:
        """Create a throwaway context independent of the shared one.

        The caller owns the result and must close it.
        """
        logger.debug("Creating isolated %s context", self._engine.name)
        return self._engine.create_context(artifact, use_gpu=self._config.use_gpu)

    @contextmanager
    def isolated_context(self, artifact: ModelArtifact) -> Iterator[EngineContext]:
        """Borrow a fresh isolated context, closed when the block exits."""
        context = self.create_isolated_context(artifact)
        try:
            yield context
        finally:
            context.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reinitialize(self, config: EngineConfig | None = None) -> None:
        """Drop the shared context now; the next access recreates it.

        Args:
            config: New engine settings to apply to future contexts.
        """
        with self._lock:
            if config is not None:
                logger.info(
                    "%s engine config v%d -> v%d",
                    self._engine.name,
                    self._config.version,
                    config.version,
                )
                self._config = config
            self._release_locked("reinitialize")

    def idle_sweep(self, now: float | None = None) -> bool:
        """Release the shared context if it has been idle long enough.

        Returns:
            True if a context was released.
        """
        with self._lock:
            if self._context is None:
                return False
            now = self._clock() if now is None else now
            idle_for = now - self._last_access
            if idle_for < self.idle_timeout:
                return False
            logger.info(
                "Releasing %s context after %.1fs of inactivity", self._engine.name, idle_for
            )
            self._release_locked("idle")
            return True

    def start(self) -> None:
        """Start the background idle sweeper."""
        if self._sweeper is not None:
            return
        self._stop.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop,
            name=f"{self._engine.name}-idle-sweeper",
            daemon=True,
        )
        self._sweeper.start()

    def shutdown(self) -> None:
        """Stop the sweeper and release any live context."""
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5.0)
            self._sweeper = None
        with self._lock:
            self._release_locked("shutdown")

    # ------------------------------------------------------------------
    # Internals (call with self._lock held)
    # ------------------------------------------------------------------

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self._sweep_interval()):
            try:
                self.idle_sweep()
            except Exception:
                logger.exception("Idle sweep of %s context failed", self._engine.name)

    def _sweep_interval(self) -> float:
        return min(5.0, self.idle_timeout / 2)

    def _touch(self) -> None:
        self._last_access = self._clock()

    def _get_or_create_locked(self, artifact: ModelArtifact) -> EngineContext:
        if self._context is not None and self._artifact != artifact:
            logger.info(
                "Active %s model changed to %s", self._engine.name, artifact.model_name
            )
            self._release_locked("model_change")

        if self._context is None:
            started = time.perf_counter()
            self._context = self._engine.create_context(artifact, use_gpu=self._config.use_gpu)
            self._artifact = artifact
            self._contexts_created += 1
            logger.info(
                "Created %s context for %s in %.2fs",
                self._engine.name,
                artifact.model_name,
                time.perf_counter() - started,
            )
            self._status.emit(EngineActivated(self._engine.name, artifact.model_name))

        return self._context

    def _release_locked(self, reason: str) -> None:
        if self._context is None:
            return
        context, self._context = self._context, None
        self._artifact = None
        try:
            context.close()
        finally:
            logger.info("Released %s context (%s)", self._engine.name, reason)
            self._status.emit(EngineReleased(self._engine.name, reason))
