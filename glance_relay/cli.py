#!/usr/bin/env python3
"""
glance-relay command line.

Subcommands:
    serve       run the provider handler and the relay server
    watch       connect as a subscriber and log what arrives
    validate    check a handler configuration against the provider
    configure   store a handler configuration
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import Config, parse_handler_config
from .errors import ConfigInvalid
from .logs import configure_logging
from .manager import PlaybackManager
from .providers import available_handlers, create_handler
from .reconciler import StateReconciler
from .relay import RelayClient, RelayServer
from .storage import JsonFileStore

logger = logging.getLogger(__name__)


def _read_config_file(path: str) -> Dict[str, Any]:
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ConfigInvalid(f"{path} must contain a JSON object")
    return data


# =============================================================================
# COMMANDS
# =============================================================================

async def _serve(args: argparse.Namespace) -> int:
    store = JsonFileStore(Path(args.store))
    manager = PlaybackManager(store)
    server = RelayServer(manager, password=args.password, lyrics_enabled=not args.no_lyrics)

    await server.start(args.host, args.port)
    if not await manager.setup(args.handler):
        logger.error(f"Handler '{args.handler}' did not start; the relay keeps running")
    try:
        await asyncio.Event().wait()
    finally:
        await manager.cleanup()
        await server.stop()
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    try:
        return asyncio.run(_serve(args))
    except KeyboardInterrupt:
        logger.info("Stopped")
        return 0


async def _watch(args: argparse.Namespace) -> int:
    reconciler = StateReconciler()

    def on_state(state):
        if state is None:
            logger.info("Nothing playing")
        else:
            logger.info(f"{'Playing' if state.is_playing else 'Paused'}: {state.track.artist} - {state.track.name}")

    def on_line(index):
        lyrics = reconciler.lyrics
        if lyrics is not None and 0 <= index < len(lyrics.lines):
            logger.info(f"  > {lyrics.lines[index].words}")

    reconciler.on("state", on_state)
    reconciler.on("line", on_line)
    reconciler.on("lyrics", lambda doc: doc and doc.message and logger.info(doc.message))

    client = RelayClient(args.url, reconciler=reconciler, password=args.password)
    try:
        await client.run()
    finally:
        await client.stop()
    return 0


def cmd_watch(args: argparse.Namespace) -> int:
    try:
        return asyncio.run(_watch(args))
    except KeyboardInterrupt:
        return 0


def cmd_validate(args: argparse.Namespace) -> int:
    store = JsonFileStore(Path(args.store))
    manager = PlaybackManager(store)
    if args.config:
        config = _read_config_file(args.config)
    else:
        config = manager.get_handler_config(args.handler)
        if config is None:
            logger.error(f"No stored configuration for '{args.handler}'")
            return 1
    valid = asyncio.run(manager.validate_config(args.handler, config))
    print("valid" if valid else "invalid")
    return 0 if valid else 1


def cmd_configure(args: argparse.Namespace) -> int:
    store = JsonFileStore(Path(args.store))
    handler = create_handler(args.handler, store)
    config = _read_config_file(args.config)
    try:
        parsed = parse_handler_config(handler.config_model, config)
    except ConfigInvalid as e:
        logger.error(str(e))
        return 1
    PlaybackManager(store).set_handler_config(args.handler, parsed.to_store())
    print(f"Stored configuration for '{args.handler}'")
    return 0


# =============================================================================
# MAIN
# =============================================================================

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="glance-relay",
        description="Mirror streaming playback state to a display client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s configure --handler spotify --config spotify.json
  %(prog)s serve --handler spotify --port 8000
  %(prog)s watch --url ws://127.0.0.1:8000/
        """,
    )
    parser.add_argument('--store', default=str(Config.DEFAULT_STORE_FILE), help='Key-value store file')
    parser.add_argument('--log-level', default=Config.LOG_LEVEL, choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    sub = parser.add_subparsers(dest='command', help='Command to run')

    serve = sub.add_parser('serve', help='Run handler and relay server')
    serve.add_argument('--handler', default=Config.DEFAULT_HANDLER, choices=available_handlers())
    serve.add_argument('--host', default=Config.RELAY_HOST)
    serve.add_argument('--port', type=int, default=Config.RELAY_PORT)
    serve.add_argument('--password', default=Config.RELAY_PASSWORD, help='Shared secret subscribers must send')
    serve.add_argument('--no-lyrics', action='store_true', default=not Config.LYRICS_ENABLED)
    serve.set_defaults(func=cmd_serve)

    watch = sub.add_parser('watch', help='Subscribe and log state and lyric lines')
    watch.add_argument('--url', default=Config.relay_url())
    watch.add_argument('--password', default=Config.RELAY_PASSWORD)
    watch.set_defaults(func=cmd_watch)

    validate = sub.add_parser('validate', help='Check a handler configuration live')
    validate.add_argument('--handler', default=Config.DEFAULT_HANDLER, choices=available_handlers())
    validate.add_argument('--config', help='JSON file (default: stored configuration)')
    validate.set_defaults(func=cmd_validate)

    configure = sub.add_parser('configure', help='Store a handler configuration')
    configure.add_argument('--handler', default=Config.DEFAULT_HANDLER, choices=available_handlers())
    configure.add_argument('--config', required=True, help='JSON file with the handler fields')
    configure.set_defaults(func=cmd_configure)

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    if not args.command:
        logger.error("command is required: serve | watch | validate | configure")
        return 1
    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
