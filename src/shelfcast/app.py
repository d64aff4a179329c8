"""Command-line entry point for shelfcast."""

from __future__ import annotations

import argparse
import logging
import os
import sys
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from shelfcast.audio.engine import AudioEngine
from shelfcast.core.config import SettingsManager
from shelfcast.core.errors import ShelfcastError
from shelfcast.core.models import Credentials, DeviceInfo
from shelfcast.core.state import PlayerEvent, PlayerState
from shelfcast.playback.engine import PlayerEngine
from shelfcast.remote.cache import CachedSourceResolver
from shelfcast.remote.client import ABSClient
from shelfcast.remote.progress import ProgressFeed
from shelfcast.remote.push import ProgressPushClient


logger = logging.getLogger(__name__)


def _configure_logging(level_override: Optional[str] = None) -> Optional[Path]:
    env_level = os.environ.get("LOGLEVEL")
    level_name = (env_level or level_override or "WARNING").upper()
    level = getattr(logging, level_name, logging.WARNING)

    primary_dir = Path.cwd() / "logs"
    fallback_dir = Path(tempfile.gettempdir()) / "shelfcast_logs"
    logs_dir = primary_dir
    log_path: Path | None = None

    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        logs_dir = fallback_dir
        try:
            logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            logging.basicConfig(level=level)
            return None

    try:
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        log_path = logs_dir / f"shelfcast-{timestamp}.log"
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        file_handler.setFormatter(formatter)
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        logging.basicConfig(level=level, handlers=[file_handler, stream_handler])
    except OSError:
        logging.basicConfig(level=level)
        log_path = None
    if log_path:
        logger.info("Writing log to %s", log_path)
        if logs_dir is fallback_dir:
            logger.warning("Using fallback log directory %s", logs_dir)
    return log_path


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default=None, help="path to settings.yaml")
    common.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    common.add_argument("--server", default=None, help="media server URL (default: from settings)")
    common.add_argument("--token", default=os.environ.get("SHELFCAST_TOKEN"), help="API token")

    parser = argparse.ArgumentParser(prog="shelfcast", description="Audiobook player for Audiobookshelf servers")
    commands = parser.add_subparsers(dest="command", required=True)

    play = commands.add_parser("play", parents=[common], help="play an item until it ends or Ctrl-C")
    play.add_argument("item_id")
    play.add_argument("--start", type=float, default=None, help="start position in seconds")
    play.add_argument("--rate", type=float, default=None, help="playback rate (0.5-3.0)")
    sleep = play.add_mutually_exclusive_group()
    sleep.add_argument("--sleep-minutes", type=float, default=None)
    sleep.add_argument("--sleep-chapters", type=int, default=None)
    play.add_argument("--backend", choices=("mpv", "mock"), default=None)

    progress = commands.add_parser("progress", parents=[common], help="print the server's progress record for an item")
    progress.add_argument("item_id")
    return parser


def _print_state(event: PlayerEvent, state: PlayerState) -> None:
    if event is PlayerEvent.ERROR and state.error:
        print(f"error ({state.error_kind}): {state.error}", file=sys.stderr)
    elif event is PlayerEvent.SESSION_OPENED:
        print(f"session {state.session_id} opened")
    elif event is PlayerEvent.ENDED:
        print("finished")


def _run_play(args: argparse.Namespace, settings: SettingsManager, client: ABSClient, credentials: Credentials) -> int:
    item = client.get_item(args.item_id)
    audio = AudioEngine(network_timeout=settings.get_audio_network_timeout())
    # --backend applies to this run only
    output = audio.create_output(args.backend or settings.get_audio_backend())
    cache_dir = settings.get_cache_dir()
    feed = ProgressFeed()
    push: Optional[ProgressPushClient] = None
    if settings.get_progress_push():
        push = ProgressPushClient(credentials, feed, connect_timeout=settings.get_network_timeout())
        push.connect()
    engine = PlayerEngine(
        client,
        output,
        settings=settings.engine_settings(),
        device=DeviceInfo(device_id=settings.get_device_id(), client_name=settings.get_client_name()),
        local_sources=CachedSourceResolver(cache_dir) if cache_dir else None,
        progress_feed=feed,
    )
    done = threading.Event()

    def _on_event(event: PlayerEvent, state: PlayerState) -> None:
        _print_state(event, state)
        if event is PlayerEvent.ENDED or (event is PlayerEvent.ERROR and state.error):
            done.set()

    engine.state.subscribe(_on_event)
    try:
        if args.rate is not None:
            engine.set_rate(args.rate)
        if not engine.load(item, credentials, args.start):
            return 1
        if args.sleep_minutes:
            engine.set_sleep_minutes(args.sleep_minutes)
        elif args.sleep_chapters:
            engine.set_sleep_chapters(args.sleep_chapters)
        engine.start()
        print(f"playing {item.title or item.id} by {item.author or 'unknown author'}")
        while not done.wait(1.0):
            pass
    except KeyboardInterrupt:
        print("stopping")
    finally:
        engine.destroy()
        if push is not None:
            push.close()
        audio.release_all()
    return 1 if engine.state.error else 0


def _run_progress(args: argparse.Namespace, client: ABSClient) -> int:
    record = client.get_progress(args.item_id)
    if record is None:
        print(f"no progress recorded for {args.item_id}")
        return 0
    status = "finished" if record.is_finished else f"{record.progress * 100:.1f}%"
    print(f"{record.item_id}: {record.current_time:.1f}s / {record.duration:.1f}s ({status})")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = SettingsManager(Path(args.config)) if args.config else SettingsManager()
    _configure_logging(args.log_level or settings.get_diagnostics_log_level())

    server_url = args.server or settings.get_server_url()
    if not server_url or not args.token:
        print("a server URL and token are required (--server, --token or SHELFCAST_TOKEN)", file=sys.stderr)
        return 2
    credentials = Credentials(server_url=server_url, token=args.token)
    client = ABSClient(
        server_url,
        args.token,
        timeout=settings.get_network_timeout(),
        retries=settings.get_network_retries(),
    )
    try:
        if args.command == "play":
            return _run_play(args, settings, client, credentials)
        return _run_progress(args, client)
    except ShelfcastError as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"error ({exc.kind}): {exc}", file=sys.stderr)
        return 1
    finally:
        client.close()


if __name__ == "__main__":
    sys.exit(main())
