#!/usr/bin/env python3
"""
RouteKeeper - GPS route capture with crash-safe local storage

Usage:
    python -m routekeeper [options]

Options:
    --record FILE       Record GPS trace to JSON file for debugging
    --playback FILE     Playback GPS trace from JSON file
    --speed FACTOR      Playback speed multiplier (default: 1.0)
    --websocket         Receive locations from WebSocket clients
    --db PATH           SQLite database path
    --fallback PATH     Fallback JSON store path
    --duration SECONDS  Stop capturing after this many seconds
    --name NAME         Save the route under NAME without prompting
    --list              List saved routes and exit
    --info              Show storage usage and exit
    --recover           Offer to save an unsaved route and exit
    --clear-sessions    Delete all saved routes and exit
"""

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

from .app import RouteKeeper
from .config import CONFIG
from .gps import GPSRecorder, GPSPlayback
from .websocket_gps import WebSocketGPS


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="RouteKeeper - GPS route capture with crash-safe local storage"
    )
    parser.add_argument("--record", metavar="FILE",
                        help="Record GPS trace to JSON file")
    parser.add_argument("--playback", metavar="FILE",
                        help="Playback GPS trace from JSON file")
    parser.add_argument("--speed", type=float, default=1.0,
                        help="Playback speed multiplier (default: 1.0)")
    parser.add_argument("--websocket", action="store_true",
                        help=f"Receive locations over WebSocket (port {CONFIG['websocket_port']})")
    parser.add_argument("--db", metavar="PATH",
                        help=f"SQLite database path (default: {CONFIG['db_path']})")
    parser.add_argument("--fallback", metavar="PATH",
                        help=f"Fallback store path (default: {CONFIG['fallback_path']})")
    parser.add_argument("--log", metavar="FILE",
                        help="Log file path (default: routekeeper_TIMESTAMP.log)")
    parser.add_argument("--duration", type=float, metavar="SECONDS",
                        help="Stop capturing after this many seconds")
    parser.add_argument("--name", metavar="NAME",
                        help="Save the route under this name without prompting")
    parser.add_argument("--verbose", action="store_true",
                        help="Echo log lines to the console")
    parser.add_argument("--list", action="store_true",
                        help="List saved routes and exit")
    parser.add_argument("--info", action="store_true",
                        help="Show storage usage and exit")
    parser.add_argument("--recover", action="store_true",
                        help="Offer to save an unsaved route and exit")
    parser.add_argument("--clear-sessions", action="store_true",
                        help="Delete all saved routes and exit")

    args = parser.parse_args(argv)

    sources = [bool(args.playback), bool(args.record), args.websocket]
    if sum(sources) > 1:
        parser.error("--playback, --record and --websocket are mutually exclusive")
    if args.duration is not None and args.duration <= 0:
        parser.error("--duration must be positive")

    # Determine log path
    log_path = args.log
    if not log_path:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = f"routekeeper_{timestamp}.log"

    app = RouteKeeper(
        log_path=log_path,
        db_path=args.db,
        fallback_path=args.fallback,
        route_name=args.name,
        duration=args.duration,
        echo=args.verbose,
    )

    # Storage commands: early exit
    if args.list:
        asyncio.run(app.list_sessions())
        return
    if args.info:
        asyncio.run(app.show_info())
        return
    if args.recover:
        asyncio.run(app.recover())
        return
    if args.clear_sessions:
        count = asyncio.run(app.clear_sessions())
        print(f"Cleared {count} saved routes.")
        return

    # Set up GPS source
    if args.playback:
        if not Path(args.playback).exists():
            print(f"Playback file not found: {args.playback}")
            sys.exit(1)
        app.set_gps_source(GPSPlayback(args.playback, args.speed))
    elif args.record:
        app.set_gps_source(GPSRecorder(app.gps_source, args.record))
    elif args.websocket:
        app.set_gps_source(WebSocketGPS(host="0.0.0.0", logger=app.logger))

    app.run()


if __name__ == "__main__":
    main()
