#!/usr/bin/env python3
"""Flux Remote - headless monitor for a Transmission daemon.

Connects with one server profile, logs status changes and prints a line
per torrent after every refresh.
"""

import os
import sys
import signal
import logging
import argparse
import traceback
from pathlib import Path
from typing import List, Optional

APP_DIR = Path.home() / ".fluxremote"


def _write_crash_log(title: str, message: str):
    try:
        crash_dir = APP_DIR / "logs"
        crash_dir.mkdir(parents=True, exist_ok=True)
        (crash_dir / "crash.log").write_text(f"{title}\n\n{message}", encoding="utf-8")
    except OSError:
        pass
    print(f"FATAL: {title}\n{message}", file=sys.stderr)


def setup_logging(verbose: bool = False):
    log_dir = APP_DIR / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers = [
        logging.FileHandler(log_dir / "fluxremote.log", encoding="utf-8"),
        logging.StreamHandler(sys.stdout),
    ]

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fluxremote",
        description="Monitor a Transmission daemon over RPC.",
    )
    parser.add_argument("torrents", nargs="*",
                        help=".torrent files or magnet links to add once connected")
    parser.add_argument("--profile", metavar="FILE", help="server profile JSON file")
    parser.add_argument("--address", help="server host name or address")
    parser.add_argument("--port", type=int, help="RPC port (default 9091)")
    parser.add_argument("--path", dest="api_path", help="RPC path (default /transmission/rpc)")
    parser.add_argument("--https", action="store_true", default=None, help="use HTTPS")
    parser.add_argument("--user", dest="username", help="user name for basic authentication")
    parser.add_argument("--password", help="password for basic authentication")
    parser.add_argument("--timeout", type=int, help="request timeout in seconds")
    parser.add_argument("--interval", dest="update_interval", type=int,
                        help="seconds between updates")
    parser.add_argument("--background", action="store_true",
                        help="poll at the background update interval")
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    return parser


def profile_from_args(args: argparse.Namespace):
    """Profile file first, command line options override it.

    Returns None when no server was given at all.
    """
    from fluxremote.core.servers import ServerProfile

    values = {}
    if args.profile:
        values = ServerProfile.from_file(args.profile).to_dict()

    for key in ("address", "port", "api_path", "https", "username",
                "password", "timeout", "update_interval"):
        value = getattr(args, key)
        if value is not None:
            values[key] = value
    if args.username:
        values["authentication"] = True

    if not values.get("address"):
        return None
    return ServerProfile.from_dict(values)


def describe_torrent(torrent) -> str:
    from fluxremote.utils.formatters import (
        format_speed, format_eta, format_ratio, format_progress, format_timestamp,
    )
    return (f"#{torrent.id:<4} {torrent.state.display_name:<20} "
            f"{format_progress(torrent.percent_done):>6} "
            f"down {format_speed(torrent.download_speed):>12} "
            f"up {format_speed(torrent.upload_speed):>12} "
            f"eta {format_eta(torrent.eta):>8} "
            f"ratio {format_ratio(torrent.ratio):>5} "
            f"added {format_timestamp(torrent.added_date)}  {torrent.name}")


class Monitor:
    """Wires an RpcSession to stdout."""

    def __init__(self, session, pending: Optional[List[str]] = None):
        self.session = session
        self.pending = list(pending or [])
        self._logger = logging.getLogger("fluxremote.monitor")

        session.status_changed.connect(self._on_status_changed)
        session.updated.connect(self._print_torrents)
        session.torrent_finished.connect(self._on_torrent_finished)
        session.torrent_duplicate.connect(lambda: self._logger.warning("Torrent already added"))
        session.torrent_add_error.connect(lambda: self._logger.error("Server refused torrent"))

    def _on_status_changed(self, status):
        self._logger.info(self.session.status_string)
        if self.session.connected:
            self._add_pending()
            self._print_torrents()

    def _on_torrent_finished(self, torrent):
        self._logger.info(f"Finished: {torrent.name}")

    def _add_pending(self):
        directory = self.session.server_settings.download_directory
        start = self.session.server_settings.start_added_torrents
        while self.pending:
            item = self.pending.pop(0)
            if item.startswith("magnet:") or "://" in item:
                self.session.add_torrent_link(item, directory, start=start)
            elif os.path.isfile(item):
                with open(item, "rb") as f:
                    self.session.add_torrent_file(f.read(), directory, start=start)
            else:
                self._logger.error(f"Not a torrent file or link: {item}")

    def _print_torrents(self):
        from fluxremote.utils.formatters import format_speed
        stats = self.session.server_stats
        print(f"-- {len(self.session.torrents)} torrents, "
              f"down {format_speed(stats.download_speed)}, "
              f"up {format_speed(stats.upload_speed)}")
        for torrent in self.session.torrents:
            print(describe_torrent(torrent))


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    logger = logging.getLogger("fluxremote")
    logger.info("Starting Flux Remote...")

    try:
        from PyQt6.QtCore import QCoreApplication, QTimer
    except ImportError as e:
        logger.error(f"PyQt6 import failed: {e}")
        _write_crash_log("Flux Remote - Missing Dependency", f"Failed to load PyQt6:\n{e}")
        return 1

    from fluxremote.core.rpc import RpcSession

    app = QCoreApplication(sys.argv[:1])
    app.setApplicationName("Flux Remote")
    app.setApplicationVersion("1.0.0")
    app.setOrganizationName("Flux")

    try:
        profile = profile_from_args(args)
    except (OSError, ValueError) as e:
        logger.error(f"Cannot read server profile: {e}")
        return 2

    session = RpcSession()
    monitor = Monitor(session, args.torrents)
    session.background_update = args.background
    app.aboutToQuit.connect(session.shutdown)

    # Let the interpreter see Ctrl+C while Qt runs its loop
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    heartbeat = QTimer()
    heartbeat.timeout.connect(lambda: None)
    heartbeat.start(250)

    session.open(profile)
    if not session.can_connect:
        logger.error(session.status_string)
        return 2

    logger.info("Flux Remote is running.")
    return app.exec()


def run():
    try:
        sys.exit(main())
    except SystemExit:
        raise
    except Exception:
        _write_crash_log("Flux Remote - Fatal Error", traceback.format_exc())
        sys.exit(1)


if __name__ == "__main__":
    run()
