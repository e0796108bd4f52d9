from __future__ import annotations

import argparse
import asyncio
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from live_transcriber.app.stop_signal import StdinStopSignal
from live_transcriber.app.supervisor import EXIT_FATAL, TranscriberSupervisor
from live_transcriber.config.settings import (
    AppSettings,
    default_settings_path,
    load_settings,
    save_settings,
)
from live_transcriber.core.errors import DeviceUnavailable

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO", log_file: Path | None = None) -> None:
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        raise ValueError(f"unknown log level: {level}")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=1024 * 1024, backupCount=3, encoding="utf-8"))

    logging.basicConfig(level=numeric, format=LOG_FORMAT, datefmt="%H:%M:%S", handlers=handlers, force=True)
    # Frame-level websockets logging drowns out everything else.
    logging.getLogger("websockets").setLevel(max(numeric, logging.INFO))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="live-transcriber")
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument(
        "--config",
        type=Path,
        default=default_settings_path(),
        help="Path to settings JSON (default: $LIVE_TRANSCRIBER_CONFIG or user config dir)",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    parser.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")

    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Transcribe the microphone until ENTER is pressed (default)")
    run.add_argument("--device", default=None, help="Input device index or name")
    run.add_argument("--host-api", default=None, help="Audio host API name (e.g. ALSA, WASAPI)")
    run.add_argument("--model", default=None, help="Transcription model name")
    run.add_argument("--language", default=None, help="Language hint (e.g. en)")
    run.add_argument("--prompt", default=None, help="Vocabulary hint for the transcription model")
    run.add_argument("--debounce", type=float, default=None, help="Seconds of quiet before printing")

    sub.add_parser("devices", help="List audio input devices")

    init = sub.add_parser("init-config", help="Write default settings to --config")
    init.add_argument("--force", action="store_true", help="Overwrite an existing file")

    return parser


def apply_overrides(settings: AppSettings, args: argparse.Namespace) -> AppSettings:
    if getattr(args, "device", None) is not None:
        settings.audio.input_device = args.device
    if getattr(args, "host_api", None) is not None:
        settings.audio.input_host_api = args.host_api
    if getattr(args, "model", None) is not None:
        settings.transcription.model = args.model
    if getattr(args, "language", None) is not None:
        settings.transcription.language = args.language
    if getattr(args, "prompt", None) is not None:
        settings.transcription.prompt = args.prompt
    if getattr(args, "debounce", None) is not None:
        settings.output.debounce_s = args.debounce
    settings.validate()
    return settings


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        from . import __version__

        print(__version__)
        return 0

    try:
        configure_logging(args.log_level, args.log_file)
    except ValueError as exc:
        print(f"Error: {exc}", flush=True)
        return EXIT_FATAL

    if args.command == "devices":
        return _list_devices()

    if args.command == "init-config":
        if args.config.exists() and not args.force:
            print(f"Error: {args.config} already exists (use --force to overwrite)", flush=True)
            return EXIT_FATAL
        save_settings(args.config, AppSettings())
        print(args.config)
        return 0

    try:
        settings = apply_overrides(_load_settings_or_default(args.config), args)
    except (OSError, ValueError) as exc:
        print(f"Error: invalid settings: {exc}", flush=True)
        return EXIT_FATAL

    if args.command in (None, "run"):
        runner = TranscriberSupervisor(settings=settings, stop_signal=StdinStopSignal())
        try:
            return asyncio.run(runner.run())
        except KeyboardInterrupt:
            return 0

    parser.print_help()
    return EXIT_FATAL


def _list_devices() -> int:
    from live_transcriber.core.audio.source import list_input_devices

    try:
        devices = list_input_devices()
    except (OSError, DeviceUnavailable) as exc:
        print(f"Error: {exc}", flush=True)
        return EXIT_FATAL

    if not devices:
        print("No input devices found.")
        return EXIT_FATAL
    for info in devices:
        print(
            f"{info['index']:>3}  {info['name']}  [{info['host_api']}]  "
            f"{info['channels']}ch @ {info['default_sample_rate']:.0f} Hz"
        )
    return 0


def _load_settings_or_default(path: Path) -> AppSettings:
    if path.exists():
        return load_settings(path)
    return AppSettings()


if __name__ == "__main__":
    raise SystemExit(main())
