"""Energy-based voice activity detection and chunk planning.

Speech regions are found with a two-state (silence/speech) machine over
20ms RMS windows with a 10ms hop. Each accepted region becomes one decode
chunk whose ``original_start_time`` anchors the engine's local timestamps.
"""

import logging
from dataclasses import dataclass

import numpy as np

from whisper_gateway.audio import seconds_to_samples
from whisper_gateway.constants import (
    MAX_CHUNK_DURATION,
    SAMPLE_RATE,
    SEGMENT_JOIN_PAD_SAMPLES,
    VAD_ENERGY_THRESHOLD,
    VAD_HOP_SAMPLES,
    VAD_MIN_SILENCE_DURATION,
    VAD_MIN_SPEECH_DURATION,
    VAD_WINDOW_SAMPLES,
)
from whisper_gateway.models import AudioChunk, NormalizedAudio, SpeechSegment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkingOptions:
    """How normalized audio is cut into decode chunks."""

    vad_enabled: bool = True
    remove_leading_silence: bool = True
    energy_threshold: float = VAD_ENERGY_THRESHOLD
    min_speech_duration: float = VAD_MIN_SPEECH_DURATION
    min_silence_duration: float = VAD_MIN_SILENCE_DURATION
    max_chunk_duration: float = MAX_CHUNK_DURATION
    chunk_overlap: float = 0.0

    @classmethod
    def from_settings(cls, settings) -> "ChunkingOptions":
        return cls(
            vad_enabled=settings.vad_enabled,
            remove_leading_silence=settings.remove_leading_silence,
            energy_threshold=settings.vad_energy_threshold,
            min_speech_duration=settings.vad_min_speech_duration,
            min_silence_duration=settings.vad_min_silence_duration,
            max_chunk_duration=settings.max_chunk_duration,
            chunk_overlap=settings.chunk_overlap,
        )


def window_energies(samples: np.ndarray) -> np.ndarray:
    """RMS energy of every full analysis window.

    Window ``i`` covers ``[i * hop, i * hop + window)``. The window is
    exactly two hops long, so it is the sum of two adjacent hop blocks.
    """
    hop = VAD_HOP_SAMPLES
    num_hops = len(samples) // hop
    if num_hops < VAD_WINDOW_SAMPLES // hop:
        return np.zeros(0, dtype=np.float32)

    blocks = np.asarray(samples[: num_hops * hop], dtype=np.float32).reshape(num_hops, hop)
    hop_power = np.einsum("ij,ij->i", blocks, blocks)
    window_power = hop_power[:-1] + hop_power[1:]
    return np.sqrt(window_power / VAD_WINDOW_SAMPLES)


def detect_speech_segments(
    samples: np.ndarray,
    energy_threshold: float = VAD_ENERGY_THRESHOLD,
    min_speech_duration: float = VAD_MIN_SPEECH_DURATION,
    min_silence_duration: float = VAD_MIN_SILENCE_DURATION,
    sample_rate: int = SAMPLE_RATE,
) -> list[SpeechSegment]:
    """Detect speech regions in 16kHz mono audio.

    Args:
        samples: Float32 samples in [-1, 1].
        energy_threshold: RMS level above which a window counts as speech.
        min_speech_duration: Regions this short or shorter are discarded.
        min_silence_duration: Silence must last longer than this to close a region.
        sample_rate: Sample rate of ``samples``.

    Returns:
        Ordered, non-overlapping segments. Empty when nothing qualifies.
    """
    energies = window_energies(samples)

    segments: list[SpeechSegment] = []
    in_speech = False
    speech_start = 0
    speech_end = 0

    def close_segment() -> None:
        if (speech_end - speech_start) / sample_rate > min_speech_duration:
            segments.append(
                SpeechSegment(
                    start_time=speech_start / sample_rate,
                    end_time=speech_end / sample_rate,
                    start_sample=speech_start,
                    end_sample=speech_end,
                )
            )

    for index, energy in enumerate(energies):
        window_start = index * VAD_HOP_SAMPLES
        if energy > energy_threshold:
            if not in_speech:
                speech_start = window_start
                in_speech = True
            speech_end = window_start + VAD_WINDOW_SAMPLES
        elif in_speech:
            silence = (window_start - speech_end) / sample_rate
            if silence > min_silence_duration:
                close_segment()
                in_speech = False

    if in_speech:
        close_segment()

    return segments


def whole_audio_chunk(audio: NormalizedAudio) -> AudioChunk:
    return AudioChunk(
        samples=audio.samples,
        start_time=0.0,
        end_time=audio.duration,
        original_start_time=0.0,
    )


def chunk_from_segments(
    segments: list[SpeechSegment],
    samples: np.ndarray,
    remove_leading_silence: bool = True,
    pad_samples: int = SEGMENT_JOIN_PAD_SAMPLES,
) -> AudioChunk:
    """Build one decode chunk from one or more adjacent speech segments.

    With ``remove_leading_silence`` only the speech samples are kept and
    consecutive segments are joined with ``pad_samples`` of zeros. Without
    it the chunk is the raw span from the first segment to the last.
    """
    if not segments:
        raise ValueError("chunk_from_segments needs at least one segment")

    first, last = segments[0], segments[-1]

    if not remove_leading_silence:
        return AudioChunk(
            samples=samples[first.start_sample : last.end_sample],
            start_time=first.start_time,
            end_time=last.end_time,
            original_start_time=first.start_time,
        )

    parts: list[np.ndarray] = []
    for index, segment in enumerate(segments):
        if index > 0:
            parts.append(np.zeros(pad_samples, dtype=np.float32))
        parts.append(samples[segment.start_sample : segment.end_sample])

    chunk_samples = parts[0] if len(parts) == 1 else np.concatenate(parts)
    return AudioChunk(
        samples=chunk_samples,
        start_time=first.start_time,
        end_time=first.start_time + len(chunk_samples) / SAMPLE_RATE,
        original_start_time=first.start_time,
    )


def fixed_window_chunks(
    audio: NormalizedAudio, max_duration: float, overlap: float = 0.0
) -> list[AudioChunk]:
    """Cut audio into ``max_duration`` windows, each after the first reaching
    back ``overlap`` seconds into its predecessor."""
    total = audio.duration
    if total <= max_duration:
        return [whole_audio_chunk(audio)]

    chunks: list[AudioChunk] = []
    start = 0.0
    while start < total:
        end = min(start + max_duration, total)
        actual_start = max(0.0, start - overlap) if chunks else start
        chunk_samples = audio.samples[seconds_to_samples(actual_start) : seconds_to_samples(end)]
        if chunk_samples.size:
            chunks.append(
                AudioChunk(
                    samples=chunk_samples,
                    start_time=start,
                    end_time=end,
                    original_start_time=actual_start,
                )
            )
        start = end
    return chunks


def plan_chunks(audio: NormalizedAudio, options: ChunkingOptions) -> list[AudioChunk]:
    """Split normalized audio into decode chunks.

    Falls back to the whole audio as a single chunk when VAD finds no
    qualifying speech.
    """
    if not options.vad_enabled:
        return fixed_window_chunks(audio, options.max_chunk_duration, options.chunk_overlap)

    segments = detect_speech_segments(
        audio.samples,
        energy_threshold=options.energy_threshold,
        min_speech_duration=options.min_speech_duration,
        min_silence_duration=options.min_silence_duration,
    )
    if not segments:
        logger.info("No speech detected, processing entire audio")
        return [whole_audio_chunk(audio)]

    chunks = [
        chunk_from_segments([segment], audio.samples, options.remove_leading_silence)
        for segment in segments
    ]
    logger.info("Created %d VAD-based audio chunks", len(chunks))
    for index, chunk in enumerate(chunks, start=1):
        logger.debug(
            "Chunk %d: %.1fs - %.1fs (original: %.1fs)",
            index,
            chunk.start_time,
            chunk.end_time,
            chunk.original_start_time,
        )
    return chunks
