"""Rendering of transcription results into the five response formats.

Buffered responses go through :func:`render`. Streamed responses use a
:class:`StreamEncoder`, which keeps per-response state (SRT cue counter,
whether the VTT header was sent) and optionally wraps every increment in
server-sent-event framing.
"""

import json

from whisper_gateway.constants import SSE_END_EVENT
from whisper_gateway.models import ResponseFormat, TranscriptionResult, TranscriptionSegment
from whisper_gateway.orchestrator import ChunkTranscript

CONTENT_TYPES: dict[ResponseFormat, str] = {
    ResponseFormat.JSON: "application/json",
    ResponseFormat.TEXT: "text/plain",
    ResponseFormat.SRT: "application/x-subrip",
    ResponseFormat.VTT: "text/vtt",
    ResponseFormat.VERBOSE_JSON: "application/json",
}
SSE_CONTENT_TYPE = "text/event-stream"
VTT_HEADER = "WEBVTT\n\n"


def _format_timestamp(seconds: float, decimal_marker: str) -> str:
    total_ms = int(round(max(0.0, seconds) * 1000))
    hours, remainder = divmod(total_ms, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    secs, millis = divmod(remainder, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}{decimal_marker}{millis:03d}"


def format_srt_timestamp(seconds: float) -> str:
    """HH:MM:SS,mmm"""
    return _format_timestamp(seconds, ",")


def format_vtt_timestamp(seconds: float) -> str:
    """HH:MM:SS.mmm"""
    return _format_timestamp(seconds, ".")


def srt_cue(index: int, segment: TranscriptionSegment) -> str:
    start = format_srt_timestamp(segment.start_time)
    end = format_srt_timestamp(segment.end_time)
    return f"{index}\n{start} --> {end}\n{segment.text.strip()}\n\n"


def vtt_cue(segment: TranscriptionSegment) -> str:
    start = format_vtt_timestamp(segment.start_time)
    end = format_vtt_timestamp(segment.end_time)
    return f"{start} --> {end}\n{segment.text.strip()}\n\n"


def segment_dict(segment: TranscriptionSegment) -> dict:
    return {
        "start": round(segment.start_time, 3),
        "end": round(segment.end_time, 3),
        "text": segment.text.strip(),
    }


def _dumps(payload: dict) -> str:
    return json.dumps(payload, ensure_ascii=False)


def _spoken(segments: list[TranscriptionSegment]) -> list[TranscriptionSegment]:
    return [segment for segment in segments if segment.text.strip()]


def format_srt(segments: list[TranscriptionSegment]) -> str:
    return "".join(srt_cue(i, s) for i, s in enumerate(_spoken(segments), start=1))


def format_vtt(segments: list[TranscriptionSegment]) -> str:
    return VTT_HEADER + "".join(vtt_cue(s) for s in _spoken(segments))


def format_verbose_json(result: TranscriptionResult) -> str:
    """OpenAI-compatible verbose_json body."""
    segments = []
    for index, segment in enumerate(_spoken(result.segments)):
        segments.append({"id": index, **segment_dict(segment)})
    return _dumps(
        {
            "task": "transcribe",
            "language": result.language or "auto",
            "duration": round(result.duration, 3),
            "text": result.text,
            "segments": segments,
        }
    )


def render(result: TranscriptionResult, response_format: ResponseFormat) -> str:
    """Render a complete result as a buffered response body."""
    if response_format is ResponseFormat.TEXT:
        return result.text
    if response_format is ResponseFormat.SRT:
        return format_srt(result.segments)
    if response_format is ResponseFormat.VTT:
        return format_vtt(result.segments)
    if response_format is ResponseFormat.VERBOSE_JSON:
        return format_verbose_json(result)
    return _dumps({"text": result.text})


def content_type_for(response_format: ResponseFormat, sse: bool = False) -> str:
    return SSE_CONTENT_TYPE if sse else CONTENT_TYPES[response_format]


def format_sse(payload: str) -> str:
    """Wrap a payload as one SSE event; each payload line gets its own data: field."""
    lines = payload.split("\n")
    return "\n".join(f"data: {line}" for line in lines) + "\n\n"


class StreamEncoder:
    """Incremental encoder for one streamed response."""

    def __init__(self, response_format: ResponseFormat, sse: bool = False):
        self.response_format = response_format
        self.sse = sse
        self._cue_index = 0
        self._sent_text = False

    @property
    def content_type(self) -> str:
        return content_type_for(self.response_format, self.sse)

    def encode_chunk(self, piece: ChunkTranscript) -> list[str]:
        """Encode everything a decoded chunk contributes to the stream."""
        if self.response_format.needs_timestamps:
            increments = [self._encode_segment(s) for s in _spoken(piece.segments)]
        else:
            increments = [self._encode_text(piece.text)] if piece.text else []
        return [self._frame(payload) for payload in increments]

    def close(self) -> str:
        """Trailer written after the last increment."""
        return SSE_END_EVENT if self.sse else ""

    def _encode_text(self, text: str) -> str:
        if self.response_format is ResponseFormat.JSON:
            return _dumps({"text": text}) + "\n"
        # Raw text increments concatenate back to the buffered text
        payload = f" {text}" if self._sent_text else text
        self._sent_text = True
        return payload

    def _encode_segment(self, segment: TranscriptionSegment) -> str:
        self._cue_index += 1
        if self.response_format is ResponseFormat.SRT:
            return srt_cue(self._cue_index, segment)
        if self.response_format is ResponseFormat.VTT:
            cue = vtt_cue(segment)
            return VTT_HEADER + cue if self._cue_index == 1 else cue
        return _dumps(segment_dict(segment)) + "\n"

    def _frame(self, payload: str) -> str:
        return format_sse(payload) if self.sse else payload
