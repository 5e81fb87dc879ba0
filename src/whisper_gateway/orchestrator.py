"""Drives chunk planning and engine decodes for one request.

Backends that can decode segment by segment get the audio cut into chunks
(VAD regions or fixed windows) for every response format, so streamed
responses emit one increment per chunk and buffered responses carry the
same text. For timestamped formats each chunk's local times are shifted
by its ``original_start_time``. Other backends decode in one pass.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field

from whisper_gateway.engine.protocol import DecodeOptions, DecodeOutput
from whisper_gateway.errors import GatewayError, TranscriptionFailure
from whisper_gateway.models import (
    AudioChunk,
    NormalizedAudio,
    TranscriptionRequest,
    TranscriptionResult,
    TranscriptionSegment,
)
from whisper_gateway.router import Route
from whisper_gateway.vad import ChunkingOptions, plan_chunks, whole_audio_chunk

logger = logging.getLogger(__name__)


@dataclass
class ChunkTranscript:
    """Decoded text of one chunk, with segments in absolute time."""

    index: int
    chunk: AudioChunk
    text: str
    segments: list[TranscriptionSegment] = field(default_factory=list)


def split_text_segments(text: str, duration: float) -> list[TranscriptionSegment]:
    """Approximate segments for a chunk decoded without timestamps.

    Splits the words in half across the chunk's real duration. The
    boundary is a guess; only the chunk edges are true times.
    """
    words = text.split()
    if not words:
        return []
    if len(words) == 1:
        return [TranscriptionSegment(0.0, duration, words[0])]
    half = len(words) // 2
    midpoint = duration / 2
    return [
        TranscriptionSegment(0.0, midpoint, " ".join(words[:half])),
        TranscriptionSegment(midpoint, duration, " ".join(words[half:])),
    ]


class Transcriber:
    """Turns normalized audio into text and timestamped segments."""

    def __init__(
        self,
        chunking: ChunkingOptions | None = None,
        isolate_chunk_contexts: bool = False,
    ):
        """Initialize the transcriber.

        Args:
            chunking: How to cut audio for timestamped decodes.
            isolate_chunk_contexts: Decode every chunk on a fresh isolated
                context instead of the shared one.
        """
        self.chunking = chunking or ChunkingOptions()
        self.isolate_chunk_contexts = isolate_chunk_contexts

    def plan(
        self, audio: NormalizedAudio, request: TranscriptionRequest, route: Route
    ) -> list[AudioChunk]:
        # independent of request.stream so both modes decode the same chunks
        if route.capabilities.supports_segment_streaming:
            return plan_chunks(audio, self.chunking)
        return [whole_audio_chunk(audio)]

    def iter_chunks(
        self, audio: NormalizedAudio, request: TranscriptionRequest, route: Route
    ) -> Iterator[ChunkTranscript]:
        """Decode chunks in chronological order, yielding each as it completes.

        Raises:
            TranscriptionFailure: If the engine fails on any chunk.
            EngineInitError: If the model cannot be loaded.
        """
        with_timestamps = self._wants_timestamps(request, route)
        options = DecodeOptions(
            language=request.language,
            prompt=request.prompt,
            with_timestamps=with_timestamps,
            temperature=request.temperature,
        )
        chunks = self.plan(audio, request, route)
        logger.info(
            "Processing %d audio chunk(s) with %s (%.1fs of audio)",
            len(chunks),
            route.provider.value,
            audio.duration,
        )

        for index, chunk in enumerate(chunks, start=1):
            logger.debug(
                "Processing chunk %d/%d (%.1fs - %.1fs)",
                index,
                len(chunks),
                chunk.start_time,
                chunk.end_time,
            )
            output = self._decode(route, chunk, options, index)
            text = output.text.strip()
            segments = self._absolute_segments(output, chunk) if with_timestamps else []
            if not text:
                logger.info("Chunk %d produced empty transcription", index)
            yield ChunkTranscript(index=index, chunk=chunk, text=text, segments=segments)

    def transcribe(
        self, audio: NormalizedAudio, request: TranscriptionRequest, route: Route
    ) -> TranscriptionResult:
        """Decode the whole request and aggregate chunk results."""
        texts: list[str] = []
        segments: list[TranscriptionSegment] = []
        for piece in self.iter_chunks(audio, request, route):
            if piece.text:
                texts.append(piece.text)
            segments.extend(piece.segments)

        segments.sort(key=lambda segment: segment.start_time)
        result = TranscriptionResult(
            text=" ".join(texts),
            segments=segments,
            duration=audio.duration,
            language=request.language,
        )
        logger.info("Transcription produced %d chars, %d segment(s)", len(result.text), len(segments))
        return result

    def _wants_timestamps(self, request: TranscriptionRequest, route: Route) -> bool:
        return request.response_format.needs_timestamps and route.capabilities.supports_timestamps

    def _decode(
        self, route: Route, chunk: AudioChunk, options: DecodeOptions, index: int
    ) -> DecodeOutput:
        borrow = (
            route.manager.isolated_context
            if self.isolate_chunk_contexts
            else route.manager.shared_context
        )
        try:
            with borrow(route.artifact) as context:
                return context.decode(chunk.samples, options)
        except GatewayError:
            raise
        except Exception as e:
            logger.exception("Failed to transcribe chunk %d", index)
            raise TranscriptionFailure(f"Transcription failed on chunk {index}: {e}") from e

    @staticmethod
    def _absolute_segments(output: DecodeOutput, chunk: AudioChunk) -> list[TranscriptionSegment]:
        local = output.segments or split_text_segments(output.text, chunk.duration)
        offset = chunk.original_start_time
        segments = []
        for segment in local:
            start = max(0.0, segment.start_time)
            end = max(start, segment.end_time)
            segments.append(TranscriptionSegment(start + offset, end + offset, segment.text.strip()))
        return segments
