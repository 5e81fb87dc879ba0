"""Audio decoding and normalization.

Uploads are decoded with libsndfile (via soundfile), downmixed, and
resampled to 16kHz mono float32 with libsoxr (via soxr). Containers
libsndfile cannot read are piped through ffmpeg when it is installed.
"""

import logging
import shutil
import subprocess
from pathlib import Path
from typing import BinaryIO

import numpy as np
import soundfile as sf
import soxr

from whisper_gateway.constants import CHANNELS, DECODE_BLOCK_FRAMES, SAMPLE_RATE
from whisper_gateway.errors import AudioConversionError, AudioDecodeError
from whisper_gateway.models import NormalizedAudio

logger = logging.getLogger(__name__)

# libsoxr preset; HQ keeps aliasing below -100 dB at a fraction of VHQ's cost
RESAMPLE_QUALITY = "HQ"


def pcm16_to_float32(data: bytes) -> np.ndarray:
    """Convert PCM16 bytes to float32 array normalized to [-1, 1].

    Args:
        data: Raw PCM16 little-endian audio bytes.

    Returns:
        Float32 numpy array with values in [-1, 1].
    """
    audio = np.frombuffer(data, dtype=np.int16).astype(np.float32)
    audio /= 32768.0
    return audio


def seconds_to_samples(seconds: float) -> int:
    return int(round(seconds * SAMPLE_RATE))


def downmix(block: np.ndarray) -> np.ndarray:
    """Average a (frames, channels) block down to a mono vector."""
    if block.ndim == 1:
        return block
    if block.shape[1] == 1:
        return block[:, 0]
    return block.mean(axis=1, dtype=np.float32)


class StreamingResampler:
    """Band-limited mono resampler fed one block at a time.

    Wraps a libsoxr stream, whose low-pass filter removes content above
    the target Nyquist frequency before decimation. The filter delay is
    held inside the stream, so ``flush()`` must be called after the last
    block to drain it.
    """

    def __init__(self, source_rate: int, target_rate: int = SAMPLE_RATE):
        if source_rate <= 0 or target_rate <= 0:
            raise AudioConversionError(
                f"Invalid resampling rates: {source_rate} -> {target_rate}"
            )
        self._stream = soxr.ResampleStream(
            source_rate, target_rate, 1, dtype="float32", quality=RESAMPLE_QUALITY
        )

    def process(self, block: np.ndarray) -> np.ndarray:
        return self._resample(block, last=False)

    def flush(self) -> np.ndarray:
        """Return the samples still held in the filter."""
        return self._resample(np.zeros(0, dtype=np.float32), last=True)

    def _resample(self, block: np.ndarray, last: bool) -> np.ndarray:
        data = np.ascontiguousarray(block, dtype=np.float32)
        try:
            out = self._stream.resample_chunk(data, last=last)
        except (ValueError, RuntimeError) as e:
            raise AudioConversionError(f"Resampling failed: {e}") from e
        return np.asarray(out, dtype=np.float32).reshape(-1)


def normalize_audio(source: str | Path | BinaryIO) -> NormalizedAudio:
    """Decode audio and convert it to 16kHz mono float32.

    Args:
        source: Path to an audio file, or a binary file object.

    Returns:
        NormalizedAudio with at least one sample.

    Raises:
        AudioDecodeError: If the input is empty or cannot be decoded.
        AudioConversionError: If resampling produced no usable samples.
    """
    try:
        audio_file = sf.SoundFile(source)
    except (sf.SoundFileError, RuntimeError) as e:
        if isinstance(source, (str, Path)):
            logger.info("libsndfile cannot read %s (%s), trying ffmpeg", source, e)
            return _decode_with_ffmpeg(Path(source))
        raise AudioDecodeError(f"Unsupported or corrupt audio: {e}") from e

    with audio_file:
        samples = _read_normalized(audio_file)

    return _finish(samples)


def _read_normalized(audio_file: sf.SoundFile) -> np.ndarray:
    if audio_file.frames == 0:
        raise AudioDecodeError("Audio file is empty")

    source_rate = audio_file.samplerate
    channels = audio_file.channels
    logger.debug(
        "Decoding %d frames at %d Hz, %d channel(s)", audio_file.frames, source_rate, channels
    )

    if source_rate == SAMPLE_RATE and channels == CHANNELS:
        return audio_file.read(dtype="float32", always_2d=False)

    resampler = None if source_rate == SAMPLE_RATE else StreamingResampler(source_rate)
    parts: list[np.ndarray] = []
    try:
        for block in audio_file.blocks(
            blocksize=DECODE_BLOCK_FRAMES, dtype="float32", always_2d=True
        ):
            mono = downmix(block)
            parts.append(resampler.process(mono) if resampler else mono.copy())
        if resampler:
            parts.append(resampler.flush())
    except (sf.SoundFileError, RuntimeError) as e:
        raise AudioConversionError(f"Failed to convert audio: {e}") from e

    if not parts:
        raise AudioConversionError("No frames were converted")
    return np.concatenate(parts)


def _decode_with_ffmpeg(path: Path) -> NormalizedAudio:
    """Decode any container ffmpeg understands straight to 16kHz mono PCM16."""
    ffmpeg = shutil.which("ffmpeg")
    if ffmpeg is None:
        raise AudioDecodeError("Unsupported audio format")

    cmd = [
        ffmpeg,
        "-nostdin",
        "-v",
        "error",
        "-i",
        str(path),
        "-f",
        "s16le",
        "-ac",
        str(CHANNELS),
        "-ar",
        str(SAMPLE_RATE),
        "-",
    ]
    proc = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    if proc.returncode != 0:
        stderr = proc.stderr.decode("utf-8", errors="replace").strip()
        raise AudioDecodeError(f"Failed to decode audio: {stderr or 'ffmpeg error'}")

    data = proc.stdout
    if len(data) % 2:
        data = data[:-1]
    return _finish(pcm16_to_float32(data))


def _finish(samples: np.ndarray) -> NormalizedAudio:
    if samples.size == 0:
        raise AudioDecodeError("Audio file is empty")
    if not np.all(np.isfinite(samples)):
        raise AudioConversionError("Converted audio contains invalid samples")
    samples = np.ascontiguousarray(samples, dtype=np.float32)
    samples.setflags(write=False)
    return NormalizedAudio(samples=samples)
