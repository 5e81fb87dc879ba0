"""FastAPI gateway exposing an OpenAI-compatible transcription endpoint.

The app depends only on the router and transcriber, so it runs the same
with real engines or with the fake engines used in tests.
"""

import asyncio
import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

from whisper_gateway import __version__
from whisper_gateway.audio import normalize_audio
from whisper_gateway.config import Settings, get_settings
from whisper_gateway.constants import TRANSCRIPTION_PATH
from whisper_gateway.engine.manager import EngineResourceManager
from whisper_gateway.errors import ERROR_TYPE, GatewayError, InvalidRequest
from whisper_gateway.formatting import StreamEncoder, content_type_for, render
from whisper_gateway.models import NormalizedAudio, Provider, ResponseFormat, TranscriptionRequest
from whisper_gateway.orchestrator import Transcriber
from whisper_gateway.resolver import ModelRegistry
from whisper_gateway.router import ProviderRouter, Route
from whisper_gateway.status import RequestLog, StatusBus
from whisper_gateway.vad import ChunkingOptions

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


def parse_bool(value: str | None) -> bool:
    return value is not None and value.strip().lower() in _TRUE_VALUES


def supports_sse(request: Request) -> bool:
    """Check whether the client advertised server-sent events."""
    return "text/event-stream" in request.headers.get("accept", "").lower()


async def parse_transcription_request(request: Request) -> TranscriptionRequest:
    """Build a TranscriptionRequest from a form upload or a raw audio body.

    Any other content type is treated as raw audio; options then come
    from query parameters.

    Raises:
        InvalidRequest: On unparseable forms, missing audio or bad field values.
    """
    content_type = request.headers.get("content-type", "").lower()

    if "multipart/form-data" in content_type or "application/x-www-form-urlencoded" in content_type:
        try:
            async with request.form() as form:
                upload = form.get("file")
                if not isinstance(upload, UploadFile):
                    raise InvalidRequest("Invalid request: Missing audio file")
                audio = await upload.read()
                filename = upload.filename or "audio"
                fields = {k: v for k, v in form.items() if isinstance(v, str)}
        except (MultiPartException, StarletteHTTPException) as e:
            raise InvalidRequest(f"Invalid multipart body: {getattr(e, 'detail', e)}") from e
    else:
        audio = await request.body()
        filename = "audio"
        fields = dict(request.query_params)

    if not audio:
        raise InvalidRequest("Invalid request: Missing audio file")

    provider = None
    provider_value = (fields.get("provider") or "").strip()
    if provider_value:
        try:
            provider = Provider.parse(provider_value)
        except ValueError as e:
            raise InvalidRequest(f"Unknown provider '{provider_value}'") from e

    temperature = 0.0
    if fields.get("temperature"):
        try:
            temperature = float(fields["temperature"])
        except ValueError:
            logger.debug("Ignoring invalid temperature %r", fields["temperature"])

    return TranscriptionRequest(
        audio=audio,
        response_format=ResponseFormat.parse(fields.get("response_format")),
        language=(fields.get("language") or "").strip() or None,
        prompt=(fields.get("prompt") or "").strip() or None,
        stream=parse_bool(fields.get("stream")),
        provider=provider,
        model=(fields.get("model") or "").strip() or None,
        temperature=temperature,
        filename=filename,
    )


def normalize_upload(data: bytes, filename: str) -> NormalizedAudio:
    """Write the upload to a scratch file, normalize it, and remove the file."""
    suffix = Path(filename).suffix[:16]
    fd, scratch = tempfile.mkstemp(prefix="whisper-gateway-", suffix=suffix)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        return normalize_audio(scratch)
    finally:
        Path(scratch).unlink(missing_ok=True)


def create_app(
    router: ProviderRouter,
    transcriber: Transcriber | None = None,
    status: StatusBus | None = None,
    preload: bool = False,
) -> FastAPI:
    """Create a FastAPI application around the given router.

    Args:
        router: Provider router owning one resource manager per backend.
        transcriber: Chunking/decode driver; defaults to VAD chunking.
        status: Bus receiving per-request log events.
        preload: Load the default provider's model during start-up.

    Returns:
        Configured FastAPI application.
    """
    transcriber = transcriber or Transcriber()
    status = status or StatusBus()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        router.start()
        if preload:
            await _preload_default(router)
        yield
        router.shutdown()

    app = FastAPI(title="Whisper Gateway", version=__version__, lifespan=lifespan)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        logger.warning("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            {"error": {"message": f"Internal server error: {exc}", "type": ERROR_TYPE}},
            status_code=500,
        )

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "ok",
            "version": __version__,
            "default_provider": router.default_provider.value,
            "providers": {
                provider.value: {
                    "state": manager.state.value,
                    "supports_timestamps": manager.engine.capabilities.supports_timestamps,
                }
                for provider, manager in router.managers.items()
            },
        }

    @app.post(TRANSCRIPTION_PATH)
    async def transcribe(request: Request):
        """Transcribe an uploaded audio file.

        Form fields: file (required), language, prompt, response_format,
        temperature, stream, provider, model.
        """
        transcription_request = await parse_transcription_request(request)
        route = router.resolve(transcription_request)

        message = (
            f"Transcription request: {len(transcription_request.audio)} bytes, "
            f"format={transcription_request.response_format.value}, "
            f"provider={route.provider.value}, stream={transcription_request.stream}"
        )
        logger.info(message)
        status.emit(RequestLog(message))
        if transcription_request.model and transcription_request.model != route.artifact.model_name:
            logger.info(
                "Model hint %r ignored; serving with %s",
                transcription_request.model,
                route.artifact.model_name,
            )

        loop = asyncio.get_event_loop()
        audio = await loop.run_in_executor(
            None,
            normalize_upload,
            transcription_request.audio,
            transcription_request.filename,
        )

        if transcription_request.stream:
            encoder = StreamEncoder(transcription_request.response_format, sse=supports_sse(request))
            body = _stream_body(transcriber, encoder, audio, transcription_request, route)
            headers = SSE_HEADERS if encoder.sse else None
            return StreamingResponse(body, media_type=encoder.content_type, headers=headers)

        result = await loop.run_in_executor(
            None, transcriber.transcribe, audio, transcription_request, route
        )
        response_format = transcription_request.response_format
        return Response(
            content=render(result, response_format),
            media_type=content_type_for(response_format),
        )

    @app.api_route(
        "/{path:path}",
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"],
        include_in_schema=False,
    )
    async def default_route(path: str):
        """Every other route answers a plain OK."""
        return PlainTextResponse("OK")

    return app


def _stream_body(
    transcriber: Transcriber,
    encoder: StreamEncoder,
    audio: NormalizedAudio,
    request: TranscriptionRequest,
    route: Route,
) -> Iterator[str]:
    """Yield encoded increments as chunks finish decoding.

    Headers are already sent when this runs, so a failure ends the stream
    (with the SSE end event when SSE is active) instead of returning an
    error object. Closing the generator abandons the remaining chunks.
    """
    sent = 0
    try:
        for piece in transcriber.iter_chunks(audio, request, route):
            for frame in encoder.encode_chunk(piece):
                sent += 1
                yield frame
    except GatewayError as e:
        logger.error("Streaming transcription aborted after %d increment(s): %s", sent, e)
    else:
        logger.info("Streamed %d increment(s)", sent)

    trailer = encoder.close()
    if trailer:
        yield trailer


async def _preload_default(router: ProviderRouter) -> None:
    provider = router.default_provider
    manager = router.managers.get(provider)
    if manager is None:
        return
    try:
        route = router.resolve(TranscriptionRequest(audio=b"", provider=provider))
    except GatewayError as e:
        logger.warning("Skipping preload of %s: %s", provider.value, e)
        return
    loop = asyncio.get_event_loop()
    try:
        await loop.run_in_executor(None, manager.preload, route.artifact)
    except GatewayError as e:
        logger.error("Preload of %s failed: %s", provider.value, e)


def build_router(
    settings: Settings, status: StatusBus, managers: dict[Provider, EngineResourceManager]
) -> ProviderRouter:
    registry = ModelRegistry.from_settings(settings, status)
    router = ProviderRouter(
        managers,
        registry,
        default_provider=Provider.parse(settings.default_provider),
    )
    registry.on_model_change(lambda provider, artifact: router.reinitialize(provider))
    return router


def build_app(settings: Settings | None = None) -> FastAPI:
    """Create the app with the real Whisper and Fluid engines."""
    from whisper_gateway.engine.fluid import FluidEngine
    from whisper_gateway.engine.whisper import WhisperEngine

    settings = settings or get_settings()
    status = StatusBus()
    engine_config = settings.engine_config()
    managers = {
        Provider.PRIMARY: EngineResourceManager(WhisperEngine(), engine_config, status),
        Provider.SECONDARY: EngineResourceManager(FluidEngine(), engine_config, status),
    }
    router = build_router(settings, status, managers)
    transcriber = Transcriber(
        chunking=ChunkingOptions.from_settings(settings),
        isolate_chunk_contexts=settings.isolate_chunk_contexts,
    )
    return create_app(router, transcriber, status, preload=settings.preload_on_start)
