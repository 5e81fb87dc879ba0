"""Core constants for the transcription gateway.

Both backend engines consume 16kHz mono float32 PCM, so every upload is
normalized to that layout before segmentation and decoding.
"""

# Audio format requirements
SAMPLE_RATE: int = 16000  # Hz - required by Whisper and Parakeet-style models
CHANNELS: int = 1

# Normalizer reads and resamples the source in bounded windows
DECODE_BLOCK_FRAMES: int = 65536

# VAD analysis window: 20ms with 10ms hop
VAD_WINDOW_SAMPLES: int = 320  # 20ms at SAMPLE_RATE
VAD_HOP_SAMPLES: int = 160

# VAD defaults
VAD_ENERGY_THRESHOLD: float = 0.02
VAD_MIN_SPEECH_DURATION: float = 0.3  # seconds
VAD_MIN_SILENCE_DURATION: float = 0.5  # seconds

# Silence spliced between joined speech segments
SEGMENT_JOIN_PAD_MS: int = 100
SEGMENT_JOIN_PAD_SAMPLES: int = SAMPLE_RATE * SEGMENT_JOIN_PAD_MS // 1000

# Fixed-window chunking (used when VAD is disabled)
MAX_CHUNK_DURATION: float = 30.0
MIN_CHUNK_DURATION: float = 10.0

# Engine context idle eviction
IDLE_TIMEOUT_SECONDS: float = 30.0
MIN_IDLE_TIMEOUT_SECONDS: float = 5.0

DEFAULT_PORT: int = 12017
TRANSCRIPTION_PATH: str = "/v1/audio/transcriptions"

# SSE framing
SSE_END_EVENT: str = "event: end\ndata: \n\n"
