"""Unit tests for speech detection and chunk planning."""

import numpy as np
import pytest

from conftest import silence, speech_with_gap, tone
from whisper_gateway.constants import SAMPLE_RATE, SEGMENT_JOIN_PAD_SAMPLES
from whisper_gateway.models import NormalizedAudio, SpeechSegment
from whisper_gateway.vad import (
    ChunkingOptions,
    chunk_from_segments,
    detect_speech_segments,
    fixed_window_chunks,
    plan_chunks,
    window_energies,
)


class TestWindowEnergies:
    """Tests for RMS window computation."""

    def test_too_short_for_one_window(self):
        assert window_energies(np.ones(100, dtype=np.float32)).size == 0

    def test_constant_signal(self):
        """RMS of a constant signal is its absolute value."""
        energies = window_energies(np.full(1600, -0.5, dtype=np.float32))
        assert len(energies) == 9  # 10 hops -> 9 two-hop windows
        np.testing.assert_allclose(energies, 0.5, rtol=1e-5)


class TestDetectSpeechSegments:
    """Tests for the two-state speech detector."""

    def test_two_regions_split_by_silence(self):
        """A 2s pause splits speech into two ordered segments."""
        segments = detect_speech_segments(speech_with_gap())

        assert len(segments) == 2
        first, second = segments
        assert first.start_time == 0.0
        assert first.end_time == pytest.approx(4.0, abs=0.05)
        assert second.start_time == pytest.approx(6.0, abs=0.05)
        assert second.end_time == pytest.approx(11.0, abs=0.001)
        assert first.end_time < second.start_time

    def test_silence_only(self):
        assert detect_speech_segments(silence(3.0)) == []

    def test_short_burst_discarded(self):
        """Speech no longer than the minimum duration is dropped."""
        samples = np.concatenate([silence(1.0), tone(0.2), silence(1.0)])
        assert detect_speech_segments(samples) == []

    def test_short_pause_does_not_split(self):
        """Pauses shorter than the minimum silence keep one segment."""
        samples = np.concatenate([tone(1.0), silence(0.3), tone(1.0)])
        segments = detect_speech_segments(samples)
        assert len(segments) == 1
        assert segments[0].end_time == pytest.approx(2.3, abs=0.001)

    def test_open_segment_closed_at_end(self):
        """Speech running to the end of the audio still produces a segment."""
        samples = np.concatenate([silence(1.0), tone(2.0)])
        segments = detect_speech_segments(samples)
        assert len(segments) == 1
        assert segments[0].end_sample == len(samples)

    def test_threshold_is_strict(self):
        """Windows at exactly the threshold count as silence."""
        samples = np.full(SAMPLE_RATE, 0.02, dtype=np.float32)
        assert detect_speech_segments(samples, energy_threshold=0.03) == []
        assert len(detect_speech_segments(samples, energy_threshold=0.01)) == 1


class TestChunkFromSegments:
    """Tests for building decode chunks from segments."""

    def _segment(self, start: int, end: int) -> SpeechSegment:
        return SpeechSegment(start / SAMPLE_RATE, end / SAMPLE_RATE, start, end)

    def test_joins_with_padding(self):
        samples = np.ones(64000, dtype=np.float32)
        chunk = chunk_from_segments([self._segment(0, 16000), self._segment(32000, 48000)], samples)

        assert len(chunk.samples) == 16000 + SEGMENT_JOIN_PAD_SAMPLES + 16000
        assert not chunk.samples[16000 : 16000 + SEGMENT_JOIN_PAD_SAMPLES].any()
        assert chunk.original_start_time == 0.0

    def test_raw_span_without_silence_removal(self):
        samples = np.ones(64000, dtype=np.float32)
        chunk = chunk_from_segments(
            [self._segment(16000, 20000), self._segment(32000, 48000)],
            samples,
            remove_leading_silence=False,
        )
        assert len(chunk.samples) == 32000
        assert chunk.start_time == 1.0
        assert chunk.end_time == 3.0

    def test_empty_segments_rejected(self):
        with pytest.raises(ValueError):
            chunk_from_segments([], np.zeros(10, dtype=np.float32))


class TestPlanChunks:
    """Tests for plan_chunks."""

    def test_vad_chunks_carry_offsets(self):
        audio = NormalizedAudio(speech_with_gap())
        chunks = plan_chunks(audio, ChunkingOptions())

        assert len(chunks) == 2
        assert chunks[0].original_start_time == 0.0
        assert chunks[1].original_start_time == pytest.approx(6.0, abs=0.05)
        assert chunks[1].duration == pytest.approx(5.0, abs=0.05)

    def test_no_speech_falls_back_to_whole_audio(self):
        audio = NormalizedAudio(silence(2.0))
        chunks = plan_chunks(audio, ChunkingOptions())

        assert len(chunks) == 1
        assert chunks[0].original_start_time == 0.0
        assert len(chunks[0].samples) == audio.num_samples

    def test_fixed_windows_when_vad_disabled(self):
        audio = NormalizedAudio(silence(25.0))
        chunks = plan_chunks(audio, ChunkingOptions(vad_enabled=False, max_chunk_duration=10.0))

        assert [(c.start_time, c.end_time) for c in chunks] == [
            (0.0, 10.0),
            (10.0, 20.0),
            (20.0, 25.0),
        ]

    def test_fixed_window_overlap(self):
        audio = NormalizedAudio(silence(25.0))
        chunks = fixed_window_chunks(audio, max_duration=10.0, overlap=1.0)

        assert chunks[0].original_start_time == 0.0
        assert chunks[1].original_start_time == 9.0
        assert len(chunks[1].samples) == 11 * SAMPLE_RATE

    def test_short_audio_single_window(self):
        audio = NormalizedAudio(silence(5.0))
        assert len(fixed_window_chunks(audio, max_duration=10.0)) == 1
