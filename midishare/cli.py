from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from core.config import get_settings
from core.errors import NetworkError, ParseError
from core.library import LibraryFetcher, MidiLibrary
from core.loader import ResourceLoader
from core.midi_parse import parse_midi_file
from core.models import PlayerStatus
from core.player import PlaybackController
from core.sampler import MidoSampler, SilentSampler, VoiceSampler
from core.timeline import ParsedTimeline, note_name

from midishare.api_client import ContractError, MidiShareClient


# exit codes (keep stable)
EXIT_OK = 0
EXIT_PLAYBACK_FAILED = 2
EXIT_TIMEOUT = 3
EXIT_NETWORK_OR_HTTP = 4
EXIT_BAD_ARGS = 5

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _print_err(msg: str) -> None:
    print(msg, file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="midishare", description="MidiShare CLI (headless player + catalog tools)")
    p.add_argument(
        "--log-level",
        dest="log_level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    # ------------------------------------------------------------
    # play: fetch -> parse -> schedule -> print progress
    # ------------------------------------------------------------
    pl = sub.add_parser("play", help="Play a MIDI resource and print progress")
    pl.add_argument("ref", type=str, help="Resource id (or stored filename)")
    src = pl.add_mutually_exclusive_group()
    src.add_argument("--base-url", dest="base_url", default=None, help="Server base url (default: API_BASE_URL)")
    src.add_argument("--library", dest="library", default=None, help="Play from a local MIDI directory (no server)")
    pl.add_argument("--port", dest="port", default=None, help="MIDI output port name (default: MIDI_OUTPUT_PORT or silent)")
    pl.add_argument("--silent", action="store_true", help="Never open a MIDI port; only print progress")
    pl.add_argument("--loop", action="store_true", help="Loop the whole track")
    pl.add_argument("--autoplay", action="store_true", help="Continue with another resource at end of track")
    pl.add_argument("--volume", type=float, default=None, help="Output volume 0.0~1.0")
    pl.add_argument("--timeout", type=float, default=None, help="Stop after this many seconds")
    pl.add_argument("--poll-interval", dest="poll_interval", type=float, default=0.5, help="Progress print interval seconds")

    # ------------------------------------------------------------
    # inspect: local MIDI -> JSON summary (no server)
    # ------------------------------------------------------------
    ins = sub.add_parser("inspect", help="Parse a local MIDI file and print a JSON summary")
    ins.add_argument("file", type=str, help="Path to MIDI file")

    # ------------------------------------------------------------
    # list: remote catalog
    # ------------------------------------------------------------
    ls = sub.add_parser("list", help="List the remote catalog")
    ls.add_argument("--base-url", dest="base_url", default=None, help="Server base url (default: API_BASE_URL)")

    return p


def timeline_summary(timeline: ParsedTimeline) -> dict[str, Any]:
    tracks = []
    for tr in timeline.tracks:
        pitches = [n.pitch for n in tr.notes]
        tracks.append(
            {
                "name": tr.name,
                "channel": tr.channel,
                "program": tr.program,
                "notes": len(tr.notes),
                "range": f"{note_name(min(pitches))}-{note_name(max(pitches))}" if pitches else None,
                "end_time": round(tr.end_time, 3),
            }
        )
    return {
        "name": timeline.name,
        "duration": round(timeline.duration, 3),
        "note_count": timeline.note_count,
        "tracks": tracks,
    }


# -------------------------------
# Commands
# -------------------------------
def _make_sampler(args: argparse.Namespace, volume: float) -> VoiceSampler:
    if args.silent:
        return SilentSampler(volume=volume)
    port = args.port or get_settings().midi_output_port
    if port:
        return MidoSampler(port, volume=volume)
    return SilentSampler(volume=volume)


async def _play(args: argparse.Namespace) -> int:
    s = get_settings()
    volume = s.default_volume if args.volume is None else float(args.volume)

    client: Optional[MidiShareClient] = None
    if args.library:
        library = MidiLibrary(args.library)
        library.refresh()
        fetcher = LibraryFetcher(library)
        next_resource = fetcher.next_resource
    else:
        client = MidiShareClient(base_url=args.base_url or s.api_base_url, timeout_s=s.fetch_timeout_s)
        fetcher = client
        next_resource = client.next_resource

    controller = PlaybackController.from_settings(
        s,
        loader=ResourceLoader(fetcher),
        sampler=_make_sampler(args, volume),
        next_resource=next_resource,
    )
    try:
        if not await controller.prepare():
            _print_err(controller.snapshot().last_error or "Sampler failed to load")
            return EXIT_PLAYBACK_FAILED

        controller.set_volume(volume)
        controller.set_looping(bool(args.loop))
        controller.set_autoplay_next(bool(args.autoplay))

        if not await controller.play_resource(args.ref):
            snap = controller.snapshot()
            _print_err(snap.last_error or "Playback failed")
            if isinstance(controller.last_exception, NetworkError):
                return EXIT_NETWORK_OR_HTTP
            return EXIT_PLAYBACK_FAILED

        loop = asyncio.get_running_loop()
        deadline = None if args.timeout is None else loop.time() + float(args.timeout)
        interval = max(0.05, float(args.poll_interval))
        last_line = ""
        while True:
            snap = controller.snapshot()
            ref = snap.current_resource_ref or "-"
            line = f"status={snap.status.value} ref={ref} position={snap.position:.1f}/{snap.duration:.1f}"
            if line != last_line:
                print(line, flush=True)
                last_line = line

            if snap.status == PlayerStatus.error:
                _print_err(snap.last_error or "Playback failed")
                return EXIT_PLAYBACK_FAILED
            # natural end (or end of the autoplay queue) holds at paused
            if snap.status == PlayerStatus.paused:
                return EXIT_OK

            if deadline is not None and loop.time() > deadline:
                _print_err("Timeout reached; stopping playback.")
                return EXIT_TIMEOUT

            await asyncio.sleep(interval)
    finally:
        controller.dispose()
        if client is not None:
            await client.aclose()


def cmd_play(args: argparse.Namespace) -> int:
    if args.volume is not None and not (0.0 <= float(args.volume) <= 1.0):
        _print_err("--volume must be within 0.0~1.0")
        return EXIT_BAD_ARGS
    if args.timeout is not None and float(args.timeout) <= 0:
        _print_err("--timeout must be > 0")
        return EXIT_BAD_ARGS
    if args.library and not Path(args.library).is_dir():
        _print_err(f"library dir not found: {args.library}")
        return EXIT_BAD_ARGS

    try:
        return asyncio.run(_play(args))
    except KeyboardInterrupt:
        _print_err("Interrupted.")
        return EXIT_OK


def cmd_inspect(args: argparse.Namespace) -> int:
    try:
        timeline = parse_midi_file(Path(args.file))
    except FileNotFoundError as e:
        _print_err(str(e))
        return EXIT_BAD_ARGS
    except ParseError as e:
        _print_err(f"Invalid MIDI: {e}")
        return EXIT_PLAYBACK_FAILED

    print(json.dumps(timeline_summary(timeline), ensure_ascii=False, indent=2))
    return EXIT_OK


async def _list(args: argparse.Namespace) -> int:
    s = get_settings()
    client = MidiShareClient(base_url=args.base_url or s.api_base_url, timeout_s=s.fetch_timeout_s)
    try:
        items = await client.list_midis()
    except ContractError as e:
        _print_err(f"Contract error: {e}")
        return EXIT_NETWORK_OR_HTTP
    except NetworkError as e:
        _print_err(str(e))
        return EXIT_NETWORK_OR_HTTP
    finally:
        await client.aclose()

    for d in items:
        print(f"{d.id}\t{d.title}\t{d.artist}\tviews={d.views}\tdownloads={d.downloads}")
    return EXIT_OK


def cmd_list(args: argparse.Namespace) -> int:
    return asyncio.run(_list(args))


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not logging.getLogger().handlers:
        logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)

    if args.cmd == "play":
        return cmd_play(args)
    if args.cmd == "inspect":
        return cmd_inspect(args)
    if args.cmd == "list":
        return cmd_list(args)

    _print_err("Unknown command.")
    return EXIT_BAD_ARGS


if __name__ == "__main__":
    raise SystemExit(main())
