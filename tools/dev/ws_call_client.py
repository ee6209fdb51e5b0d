#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Luna — Dev WebSocket Call Client (/ws/call)
-------------------------------------------
Console tool that plays recorded audio files into a live call, the way the
browser does with its microphone.

Features:
- Streams each file as binary frames of --chunk-bytes, paced by --chunk-delay.
- Sends {"type": "segment_end"} after each file (one file = one segment).
- Prints every event the server sends (ready / partial / result / pong).
- Waits until every segment has its result, then hangs up.

Example:

    python3 tools/dev/ws_call_client.py hello.webm how_are_you.webm \
        --session dev-console-01

This client is meant for development / testing on your laptop.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed

DEFAULT_SERVER = "ws://127.0.0.1:3000/ws/call"


# ---------------------------------------------------------------------------
# CLI argument parsing
# ---------------------------------------------------------------------------


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Luna — Dev WebSocket Call Client (/ws/call)",
    )
    parser.add_argument(
        "files",
        nargs="+",
        type=Path,
        help="Audio files to send; each one becomes one segment.",
    )
    parser.add_argument(
        "--server",
        type=str,
        default=DEFAULT_SERVER,
        help=f"WebSocket server URL (default: {DEFAULT_SERVER})",
    )
    parser.add_argument(
        "--session",
        type=str,
        default=None,
        help="Browser session id to continue (e.g. 'dev-console-01').",
    )
    parser.add_argument(
        "--voice",
        type=str,
        default=None,
        help="TTS voice for spoken replies (default: server setting).",
    )
    parser.add_argument(
        "--chunk-bytes",
        type=int,
        default=4096,
        help="Bytes per binary frame (default: 4096).",
    )
    parser.add_argument(
        "--chunk-delay",
        type=float,
        default=0.05,
        help="Seconds to wait between frames, simulating real time (default: 0.05).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=60.0,
        help="Seconds to wait for all results after the last segment (default: 60).",
    )
    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def build_call_url(server: str, session: Optional[str] = None, voice: Optional[str] = None) -> str:
    """Append session_id / voice query parameters to the server URL."""
    params: Dict[str, str] = {}
    if session:
        params["session_id"] = session
    if voice:
        params["voice"] = voice
    if not params:
        return server
    sep = "&" if "?" in server else "?"
    return f"{server}{sep}{urlencode(params)}"


def iter_chunks(data: bytes, size: int) -> Iterator[bytes]:
    """Split `data` into frames of at most `size` bytes."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(data), size):
        yield data[start:start + size]


def format_event(event: Dict[str, Any]) -> str:
    """One console line per server event."""
    kind = event.get("type")

    if kind == "ready":
        return f"[ready] session={event.get('session_id')}"
    if kind == "partial":
        return f"[partial #{event.get('segment')}] {event.get('text')}"
    if kind == "result":
        line = f"[result #{event.get('segment')}] you: {event.get('transcript')!r}"
        line += f"\n  Luna: {event.get('reply')}"
        if event.get("mood"):
            line += f"  (mood={event['mood']})"
        if event.get("audio_url"):
            line += f"\n  audio: {event['audio_url']}"
        error = event.get("error")
        if error:
            line += f"\n  error: {error.get('code')} - {error.get('message')}"
        return line
    return f"[{kind}] {json.dumps(event)}"


# ---------------------------------------------------------------------------
# Call
# ---------------------------------------------------------------------------


async def _print_events(ws, expected_results: int) -> None:
    results = 0
    async for raw in ws:
        try:
            event = json.loads(raw)
        except json.JSONDecodeError:
            print(f"Raw frame (not JSON): {raw!r}")
            continue

        print(format_event(event))
        if event.get("type") == "result":
            results += 1
            if results >= expected_results:
                return


async def run_call(args: argparse.Namespace) -> None:
    url = build_call_url(args.server, args.session, args.voice)
    print(f"[client] server : {url}")
    print(f"[client] files  : {', '.join(str(f) for f in args.files)}\n")

    async with websockets.connect(url, ping_interval=None, ping_timeout=None) as ws:
        reader = asyncio.create_task(_print_events(ws, expected_results=len(args.files)))

        for path in args.files:
            audio = path.read_bytes()
            print(f"[client] sending {path.name} ({len(audio)} bytes)")
            for chunk in iter_chunks(audio, args.chunk_bytes):
                await ws.send(chunk)
                if args.chunk_delay > 0:
                    await asyncio.sleep(args.chunk_delay)
            await ws.send(json.dumps({"type": "segment_end"}))

        try:
            await asyncio.wait_for(reader, timeout=args.timeout)
        except asyncio.TimeoutError:
            print(f"\n[client] gave up waiting after {args.timeout:.0f}s")

    print("\nCall ended.")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    args = parse_args()
    try:
        asyncio.run(run_call(args))
    except KeyboardInterrupt:
        print("\nBye.")
        sys.exit(0)
    except (ConnectionClosed, OSError) as exc:
        print(f"\nConnection error: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
