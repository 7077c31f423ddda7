from __future__ import annotations

import argparse
import json
import logging
import time
from pathlib import Path

import numpy as np
from rich.console import Console
from rich.table import Table

from .audio import write_wav
from .config import INSTRUMENTS, Pattern, is_instrument
from .errors import DrumseqError
from .graph import Mixer
from .logging_utils import configure_logging, debug_enabled, log_exception, setup_file_logger
from .machine import DrumMachine, bounce
from .output import LiveOutput
from .samples import RawSource
from .settings import EngineSettings
from .store import DEMO_PATTERNS, find_demo_pattern
from .voices import render_voice, voice_spec

_LOGGER = logging.getLogger("drumseq.cli")
_CONSOLE = Console()
PLAY_LOG = "drumseq-play.log"


def _load_pattern(spec: str) -> Pattern:
    """A demo pattern name or a path to a stored pattern document (JSON)."""

    path = Path(spec)
    if path.suffix == ".json" and path.exists():
        return Pattern.from_document(json.loads(path.read_text(encoding="utf-8")))
    return find_demo_pattern(spec)


def _parse_sample(value: str) -> tuple[str, Path]:
    track, sep, raw_path = value.partition("=")
    if not sep or not raw_path:
        raise argparse.ArgumentTypeError(f"expected TRACK=PATH, got {value!r}")
    if not is_instrument(track):
        raise argparse.ArgumentTypeError(f"unknown track {track!r}; expected one of {', '.join(INSTRUMENTS)}")
    return track, Path(raw_path)


def _render_error(context: str, exc: BaseException) -> None:
    _CONSOLE.print(f"[bold red]{context} failed:[/bold red] {type(exc).__name__}: {exc}")


def _print_patterns() -> None:
    table = Table(title="Demo patterns")
    table.add_column("Name", no_wrap=True)
    table.add_column("Tempo", justify="right")
    table.add_column("Tracks")
    for pattern in DEMO_PATTERNS:
        active = [track for track in INSTRUMENTS if any(pattern.steps(track))]
        table.add_row(pattern.name, str(pattern.tempo), ", ".join(active))
    _CONSOLE.print(table)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="drumseq")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("patterns", help="List the demo patterns.")

    render = sub.add_parser("render", help="Bounce a pattern to a wav file.")
    render.add_argument("pattern", type=str, help="Demo pattern name or pattern document (.json).")
    render.add_argument("--bars", type=int, default=2)
    render.add_argument("--output", type=str, default="pattern.wav")
    render.add_argument("--tail", type=float, default=2.0)
    render.add_argument(
        "--sample",
        type=_parse_sample,
        action="append",
        default=[],
        metavar="TRACK=PATH",
        help="Pattern sample for a track.",
    )
    render.add_argument(
        "--library",
        type=Path,
        action="append",
        default=[],
        metavar="PATH",
        help="Library sample; bound to tracks whose id appears in the file name.",
    )
    render.add_argument("--seed", type=int, default=None)

    voices = sub.add_parser("voices", help="Render every synthesized voice to wav files.")
    voices.add_argument("--output-dir", type=str, default="voices")
    voices.add_argument("--seed", type=int, default=None)

    play = sub.add_parser("play", help="Play a pattern through the default output device.")
    play.add_argument("pattern", type=str)
    play.add_argument("--seconds", type=float, default=8.0)
    return parser


def _run_render(args: argparse.Namespace, settings: EngineSettings) -> int:
    pattern = _load_pattern(args.pattern)
    pattern_sources: dict[str, RawSource] = {track: path for track, path in args.sample}
    library_sources: dict[str, RawSource] = {path.name: path for path in args.library}
    with _CONSOLE.status(f"Rendering {pattern.name}"):
        audio = bounce(
            pattern,
            args.bars,
            settings=settings,
            pattern_sources=pattern_sources,
            library_sources=library_sources,
            tail=args.tail,
            rng=np.random.default_rng(args.seed),
        )
    path = write_wav(args.output, audio, sample_rate=settings.sample_rate)
    _CONSOLE.print(f"Wrote {pattern.name} ({args.bars} bars) to {path} (sr={settings.sample_rate})")
    return 0


def _run_voices(args: argparse.Namespace, settings: EngineSettings) -> int:
    defaults = Pattern()
    rng = np.random.default_rng(args.seed)
    out_dir = Path(args.output_dir)
    for track in INSTRUMENTS:
        params = defaults.params(track)
        spec = voice_spec(track, params.velocity, params.tune, params.decay)
        assert spec is not None
        audio = render_voice(spec, settings.sample_rate, rng)
        path = write_wav(out_dir / f"{track}.wav", audio, sample_rate=settings.sample_rate)
        _CONSOLE.print(f"{track:<10} {spec.duration:5.2f}s  {path}")
    return 0


def _run_play(args: argparse.Namespace, settings: EngineSettings) -> int:
    log_file = setup_file_logger("drumseq", PLAY_LOG)
    _LOGGER.info("drumseq play logs at %s", log_file)
    pattern = _load_pattern(args.pattern)
    mixer = Mixer(settings.sample_rate)
    machine = DrumMachine(mixer, settings=settings, pattern=pattern)
    with LiveOutput(mixer, settings):
        machine.start()
        _CONSOLE.print(f"Playing {pattern.name} at {pattern.tempo} BPM (Ctrl-C to stop)")
        _LOGGER.info("Playing %r at %d BPM", pattern.name, pattern.tempo)
        try:
            time.sleep(max(args.seconds, 0.0))
        except KeyboardInterrupt:
            _LOGGER.info("Playback interrupted")
        finally:
            machine.stop()
    return 0


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        settings = EngineSettings.from_env()

        match args.command:
            case "patterns":
                _print_patterns()
                return 0
            case "render":
                return _run_render(args, settings)
            case "voices":
                return _run_voices(args, settings)
            case "play":
                return _run_play(args, settings)

        parser.print_help()
        return 1
    except (DrumseqError, OSError, ValueError) as exc:
        _LOGGER.warning("drumseq CLI failed: %s", exc, exc_info=debug_enabled())
        log_exception("drumseq CLI", exc)
        _render_error("drumseq CLI", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
