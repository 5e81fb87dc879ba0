"""Run the transcription gateway.

Usage:
    python -m whisper_gateway [--host HOST] [--port PORT] [--whisper-model PATH]

Every option can also be set through WHISPER_GATEWAY_* environment
variables or a .env file; command-line values win.
"""

import argparse
import logging
from pathlib import Path

from whisper_gateway.config import get_settings

logger = logging.getLogger("whisper_gateway")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="OpenAI-compatible local transcription gateway")
    parser.add_argument("--host", help="Bind address")
    parser.add_argument("--port", type=int, help="Listen port")
    parser.add_argument("--whisper-model", type=Path, help="Path to the Whisper model")
    parser.add_argument("--fluid-model", type=Path, help="Path to the secondary model")
    parser.add_argument(
        "--provider",
        choices=["whisper", "fluid", "primary", "secondary"],
        help="Provider used when a request names none",
    )
    parser.add_argument("--idle-timeout", type=float, help="Seconds before an idle model is released")
    parser.add_argument("--cpu", action="store_true", help="Disable GPU acceleration")
    parser.add_argument("--preload", action="store_true", help="Load the default model at start-up")
    parser.add_argument("--log-level", help="Logging level (DEBUG, INFO, ...)")
    return parser.parse_args()


def main() -> None:
    args = parse_args()

    overrides = {
        "host": args.host,
        "port": args.port,
        "whisper_model_path": args.whisper_model,
        "fluid_model_path": args.fluid_model,
        "default_provider": args.provider,
        "idle_timeout": args.idle_timeout,
        "log_level": args.log_level,
    }
    if args.cpu:
        overrides["use_gpu"] = False
    if args.preload:
        overrides["preload_on_start"] = True

    base = get_settings()
    settings = base.model_validate(
        {**base.model_dump(), **{k: v for k, v in overrides.items() if v is not None}}
    )

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    import uvicorn

    from whisper_gateway.server import build_app

    app = build_app(settings)
    logger.info("Listening on http://%s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level="warning")


if __name__ == "__main__":
    main()
