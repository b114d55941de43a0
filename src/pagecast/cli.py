from __future__ import annotations

import argparse
import json
import logging
import signal
import threading
from datetime import datetime

from .constants import ACK_ATTEMPTS, ACK_POLL_INTERVAL_S, COLUMNS, DEFAULT_DURATION_S, DEFAULT_PORT, ROWS
from .display import NullDisplay, TextDisplay
from .loopback import run_loopback, sample_records
from .receiver import RecordReceiver
from .record import Color, PageRecord
from .records_io import append_records, import_records
from .scheduler import OnAirScheduler
from .sender import RecordSender, is_valid_address, is_valid_port
from .store import RecordStore


def _color(text: str) -> Color:
    try:
        return Color[text.upper()] if not text.isdigit() else Color(int(text))
    except (KeyError, ValueError):
        raise argparse.ArgumentTypeError(f"unknown color {text!r}") from None


def _timestamp(text: str) -> datetime:
    try:
        ts = datetime.fromisoformat(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid timestamp {text!r}") from None
    if ts.tzinfo is not None:
        raise argparse.ArgumentTypeError("timestamp must not carry a time zone")
    return ts


def _address(text: str) -> str:
    if not is_valid_address(text):
        raise argparse.ArgumentTypeError(f"not an IP address: {text!r}")
    return text


def _port(text: str) -> int:
    if not is_valid_port(text):
        raise argparse.ArgumentTypeError(f"port must be 0..65535, got {text!r}")
    return int(text)


def toggle_rendering(scheduler: OnAirScheduler) -> bool:
    """Flip the scheduler between rendering and paused; return the new state."""
    if scheduler.enabled:
        scheduler.disable()
    else:
        scheduler.enable()
    return scheduler.enabled


def cmd_compose(args: argparse.Namespace) -> int:
    try:
        records = import_records(args.file)
    except FileNotFoundError:
        records = []
    if any(r.record_id == args.id for r in records):
        print(f"a record with the ID {args.id} already exists")
        return 1

    record = PageRecord.blank(args.id, args.at, args.duration)
    for y, line in enumerate(args.text.replace("\\n", "\n").splitlines()[:ROWS]):
        for x, ch in enumerate(line[:COLUMNS]):
            record.modify_cell(x, y, ch, args.fore, args.back)
    append_records(args.file, [record])
    print(f"record {record.record_id} written; {len(records) + 1} records in {args.file}")
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    records = import_records(args.file)
    rows = [
        {
            "id": r.record_id,
            "timestamp": r.timestamp.isoformat(),
            "duration": r.duration_s,
            "cells": len(r.non_empty_cells()),
        }
        for r in records
    ]
    if args.json:
        print(json.dumps(rows, indent=2))
    else:
        for row in rows:
            print(row)
    return 0


def cmd_send(args: argparse.Namespace) -> int:
    records = import_records(args.file)
    if not records:
        print("there are no records available which could be sent")
        return 1

    with RecordSender(
        args.dest_host,
        args.dest_port,
        attempts=args.attempts,
        poll_interval_s=args.poll_interval,
    ) as sender:
        if not sender.connect():
            print(f"could not connect to {args.dest_host}:{args.dest_port}")
            return 1
        summary = sender.send_records(records)

    for o in summary.outcomes:
        print(f"record {o.record.record_id}: {o.status.value}")
    payload = {"role": "sender", **summary.as_dict()}
    print(json.dumps(payload, indent=2) if args.json else payload)
    return 0


def cmd_recv(args: argparse.Namespace) -> int:
    store = RecordStore()
    display = NullDisplay() if args.no_render else TextDisplay()
    scheduler = OnAirScheduler(store, display)
    receiver = RecordReceiver(store, args.listen_host, args.listen_port)

    receiver.start()
    scheduler.start()
    if hasattr(signal, "SIGUSR1"):
        signal.signal(signal.SIGUSR1, lambda signum, frame: toggle_rendering(scheduler))
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()
        receiver.stop()
    return 0


def cmd_bench(args: argparse.Namespace) -> int:
    records = sample_records(args.count, duration_s=args.duration)
    result = run_loopback(records, attempts=args.attempts, poll_interval_s=args.poll_interval)
    payload = {"role": "bench", "stored": result.stored, **result.summary.as_dict()}
    print(json.dumps(payload, indent=2) if args.json else payload)
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="pagecast", description="Compose and broadcast timed text pages over TCP.")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_transfer(x: argparse.ArgumentParser) -> None:
        x.add_argument("--attempts", type=int, default=ACK_ATTEMPTS)
        x.add_argument("--poll-interval", type=float, default=ACK_POLL_INTERVAL_S)
        x.add_argument("--json", action="store_true")

    compose = sub.add_parser("compose", help="append a text page to a records file")
    compose.add_argument("--file", required=True)
    compose.add_argument("--id", type=int, required=True)
    compose.add_argument("--duration", type=int, default=DEFAULT_DURATION_S)
    compose.add_argument("--at", type=_timestamp, default=None, help="broadcast time, ISO format (default: now)")
    compose.add_argument("--text", default="", help="page text; '\\n' starts a new row")
    compose.add_argument("--fore", type=_color, default=Color.WHITE)
    compose.add_argument("--back", type=_color, default=Color.BLACK)
    compose.set_defaults(func=cmd_compose)

    ls = sub.add_parser("list", help="show the records stored in a file")
    ls.add_argument("--file", required=True)
    ls.add_argument("--json", action="store_true")
    ls.set_defaults(func=cmd_list)

    send = sub.add_parser("send", help="transfer the records of a file to a receiver")
    add_transfer(send)
    send.add_argument("--file", required=True)
    send.add_argument("--dest-host", type=_address, required=True)
    send.add_argument("--dest-port", type=_port, default=DEFAULT_PORT)
    send.set_defaults(func=cmd_send)

    recv = sub.add_parser("recv", help="receive records and show the one on air")
    recv.add_argument("--listen-host", default="0.0.0.0")
    recv.add_argument("--listen-port", type=_port, default=DEFAULT_PORT)
    recv.add_argument("--no-render", action="store_true")
    recv.set_defaults(func=cmd_recv)

    bench = sub.add_parser("bench", help="loopback transfer of generated records")
    add_transfer(bench)
    bench.add_argument("--count", type=int, default=10)
    bench.add_argument("--duration", type=int, default=DEFAULT_DURATION_S)
    bench.set_defaults(func=cmd_bench)

    args = p.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        return int(args.func(args))
    except OSError as e:
        print(f"error: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
