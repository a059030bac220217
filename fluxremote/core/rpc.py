"""RPC session - the coordinator that mirrors one Transmission daemon.

Architecture:
  caller / QTimer -> RpcSession [coordinator thread]
  RpcSession -> RequestExecutor -> worker threads -> (queued signal) -> RpcSession
  RpcSession -> (signals) -> observers

Status, error, session id, settings, stats and the torrent list are only
touched on the coordinator thread. Connection bookkeeping is delegated to
the pure reducer in fluxremote.core.state; this class feeds it events and
carries out the effects it returns, one event at a time.

A refresh cycle is three legs (session-get, torrent-get, session-stats)
plus the file/peer fetches of torrents with enabled details. The first
cycle after connect() also gates the Connecting -> Connected transition.
"""

import base64
import logging
from collections import deque
from concurrent.futures import Executor
from typing import Any, Iterable, List, Optional

from PyQt6.QtCore import QObject, pyqtSignal, pyqtSlot

from fluxremote.core.rpc_client import (
    RequestExecutor, perform_request, reply_arguments, is_successful,
)
from fluxremote.core.scheduler import PollScheduler
from fluxremote.core.server_settings import (
    ServerSettings, ServerStats, parse_server_settings, parse_server_stats,
)
from fluxremote.core.servers import ServerProfile
from fluxremote.core.state import (
    ConnectionState, Status, Error, Effect, transition, describe_status,
    Connect, Disconnect, ConfigurationFailed, RequestFailed, SettingsReceived,
    TorrentsReceived, StatsReceived, RefreshRequested, PollingToggled,
)
from fluxremote.core.torrent import (
    Torrent, TORRENT_FIELDS, FILES_FIELDS, PEERS_FIELDS,
    parse_torrent_list, parse_torrent_files, parse_torrent_peers,
)
from fluxremote.core.torrent_model import TorrentListModel
from fluxremote.core.transport import build_connection, InvalidServerUrl

logger = logging.getLogger(__name__)


class RpcSession(QObject):
    """Connection to one server at a time. Lives on the coordinator thread."""

    # --- Outbound signals ---
    status_changed = pyqtSignal(object)      # Status
    error_changed = pyqtSignal(object)       # Error
    updated = pyqtSignal()
    torrent_finished = pyqtSignal(object)    # Torrent
    torrent_duplicate = pyqtSignal()
    torrent_add_error = pyqtSignal()
    torrent_files_updated = pyqtSignal(int)  # torrent id
    torrent_peers_updated = pyqtSignal(int)  # torrent id
    torrent_file_renamed = pyqtSignal(int, str, str)  # torrent id, path, new name

    def __init__(self, executor: Optional[Executor] = None, transport=perform_request,
                 parent=None):
        super().__init__(parent)
        self._state = ConnectionState()
        self._events: deque = deque()
        self._dispatching = False

        self._profile: Optional[ServerProfile] = None
        self._cycle = 0
        self._torrents_received = False
        self._torrents_reported = False

        self.torrents = TorrentListModel(self)
        self.server_settings = ServerSettings(self.set_session_property)
        self.server_stats = ServerStats()

        self._requests = RequestExecutor(executor, transport, self)
        self._requests.failed.connect(self._on_request_failed)

        self._scheduler = PollScheduler(parent=self)
        self._scheduler.fired.connect(self._on_poll_timer)

    # --- Lifecycle ---

    def open(self, profile: Optional[ServerProfile]):
        """Switch to a server profile (None = no servers) and connect."""
        self._dispatch(Disconnect())
        self._profile = profile
        self._requests.configure(None)

        if profile is None:
            self._dispatch(ConfigurationFailed(Error.NO_SERVERS))
            return

        try:
            connection = build_connection(profile)
        except InvalidServerUrl as e:
            logger.error(f"Invalid server url: {e}")
            self._dispatch(ConfigurationFailed(Error.INVALID_SERVER_URL))
            return

        self._requests.configure(connection)
        self._scheduler.set_intervals(profile.update_interval, profile.background_update_interval)
        logger.info(f"Using server {profile.name or profile.address}")
        self.connect_to_server()

    def close(self):
        self._dispatch(Disconnect())
        self._profile = None
        self._requests.configure(None)

    def shutdown(self):
        """Close and stop the worker pool. The session is unusable afterwards."""
        self.close()
        self._requests.shutdown()

    def connect_to_server(self):
        self._dispatch(Connect())

    def disconnect_from_server(self):
        self._dispatch(Disconnect())

    def update_data(self):
        """Start a full refresh cycle now (only while connected)."""
        self._dispatch(RefreshRequested())

    # --- State ---

    @property
    def profile(self) -> Optional[ServerProfile]:
        return self._profile

    @property
    def status(self) -> Status:
        return self._state.status

    @property
    def error(self) -> Error:
        return self._state.error

    @property
    def connected(self) -> bool:
        return self._state.connected

    @property
    def can_connect(self) -> bool:
        return self._state.error.allows_connect

    @property
    def status_string(self) -> str:
        return describe_status(self._state.status, self._state.error)

    @property
    def session_id(self) -> str:
        return self._requests.session_id

    @property
    def active_request_count(self) -> int:
        return self._requests.active_request_count

    @property
    def rpc_version(self) -> int:
        return self.server_settings.rpc_version

    @property
    def minimum_rpc_version(self) -> int:
        return self.server_settings.minimum_rpc_version

    @property
    def polling_enabled(self) -> bool:
        return self._state.polling_enabled

    @polling_enabled.setter
    def polling_enabled(self, value: bool):
        self._dispatch(PollingToggled(value))

    @property
    def background_update(self) -> bool:
        return self._scheduler.background

    @background_update.setter
    def background_update(self, value: bool):
        if value == self._scheduler.background:
            return
        self._scheduler.background = value
        if not value:
            # Back in the foreground: refresh now
            self.update_data()

    @property
    def scheduler(self) -> PollScheduler:
        return self._scheduler

    # --- State machine plumbing ---

    def _dispatch(self, event):
        """Run one event to completion; events raised meanwhile are queued."""
        self._events.append(event)
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._events:
                event = self._events.popleft()
                self._state, effects = transition(self._state, event)
                for effect in effects:
                    self._apply(effect)
        finally:
            self._dispatching = False
            self._events.clear()

    def _apply(self, effect: Effect):
        if effect == Effect.BEGIN_CYCLE:
            self._begin_cycle()
        elif effect == Effect.FETCH_SETTINGS:
            self._get_server_settings()
        elif effect == Effect.FETCH_TORRENTS:
            self._get_torrents()
        elif effect == Effect.FETCH_STATS:
            self._get_server_stats()
        elif effect == Effect.START_TIMER:
            self._scheduler.arm()
        elif effect == Effect.CANCEL_TIMER:
            self._scheduler.cancel()
        elif effect == Effect.TEAR_DOWN:
            self._tear_down()
        elif effect == Effect.NOTIFY_STATUS:
            logger.info(f"Status: {self._state.status.display_name}")
            self.status_changed.emit(self._state.status)
        elif effect == Effect.NOTIFY_ERROR:
            if self._state.error != Error.NONE:
                logger.warning(f"Error: {self._state.error.display_name}")
            self.error_changed.emit(self._state.error)
        elif effect == Effect.NOTIFY_UPDATED:
            self.updated.emit()

    def _begin_cycle(self):
        # Replies tagged with an older cycle are ignored from here on
        self._cycle += 1
        self._torrents_received = False
        self._torrents_reported = False

    def _tear_down(self):
        self._requests.abandon_all()
        self._scheduler.cancel()
        self._begin_cycle()
        self.torrents.clear()

    @pyqtSlot(object)
    def _on_request_failed(self, error: Error):
        self._dispatch(RequestFailed(error))

    @pyqtSlot()
    def _on_poll_timer(self):
        if self.connected:
            self.update_data()

    # --- Refresh legs ---

    def _get_server_settings(self):
        cycle = self._cycle
        self._requests.post("session-get",
                            on_success=lambda arguments: self._on_server_settings(cycle, arguments),
                            parse=parse_server_settings)

    def _on_server_settings(self, cycle: int, arguments: dict):
        if cycle != self._cycle:
            return
        logger.debug("Got server settings")
        self.server_settings.update(arguments)
        self._dispatch(SettingsReceived(self.server_settings.minimum_rpc_version,
                                        self.server_settings.rpc_version))

    def _get_torrents(self):
        cycle = self._cycle
        self._requests.post("torrent-get", {"fields": TORRENT_FIELDS},
                            on_success=lambda snapshots: self._on_torrents(cycle, snapshots),
                            parse=parse_torrent_list)

    def _on_torrents(self, cycle: int, snapshots):
        if cycle != self._cycle or self._torrents_received:
            return
        logger.debug(f"Got {len(snapshots)} torrents")
        self._torrents_received = True

        finished = self.torrents.merge(snapshots)
        for torrent in finished:
            logger.info(f"Torrent finished: {torrent.name}")
            self.torrent_finished.emit(torrent)

        for torrent in self.torrents:
            if torrent.files_enabled:
                self.get_torrent_files(torrent.id, scheduled=True)
            if torrent.peers_enabled:
                self.get_torrent_peers(torrent.id, scheduled=True)

        self._check_torrents_updated()

    def _check_torrents_updated(self):
        if not self._torrents_received or self._torrents_reported:
            return
        if all(t.updated for t in self.torrents):
            self._torrents_reported = True
            self._dispatch(TorrentsReceived())

    def _get_server_stats(self):
        cycle = self._cycle
        self._requests.post("session-stats",
                            on_success=lambda stats: self._on_server_stats(cycle, stats),
                            parse=parse_server_stats)

    def _on_server_stats(self, cycle: int, stats: ServerStats):
        if cycle != self._cycle:
            return
        self.server_stats = stats
        self._dispatch(StatsReceived())

    # --- Torrent details ---

    def set_files_enabled(self, torrent_id: int, enabled: bool):
        """Subscribe to (or drop) live file lists for one torrent."""
        torrent = self.torrents.get(torrent_id)
        if torrent is None or torrent.files_enabled == enabled:
            return
        torrent.files_enabled = enabled
        if enabled:
            # No scheduled fetch is pending for the running cycle
            torrent.files_updated = True
            self.get_torrent_files(torrent_id)
        else:
            self._check_torrents_updated()

    def set_peers_enabled(self, torrent_id: int, enabled: bool):
        torrent = self.torrents.get(torrent_id)
        if torrent is None or torrent.peers_enabled == enabled:
            return
        torrent.peers_enabled = enabled
        if enabled:
            torrent.peers_updated = True
            self.get_torrent_peers(torrent_id)
        else:
            self._check_torrents_updated()

    def get_torrent_files(self, torrent_id: int, scheduled: bool = False):
        cycle = self._cycle if scheduled else None
        self._requests.post("torrent-get", {"fields": FILES_FIELDS, "ids": [torrent_id]},
                            on_success=lambda files: self._on_torrent_files(torrent_id, cycle, files),
                            parse=parse_torrent_files)

    def _on_torrent_files(self, torrent_id: int, cycle: Optional[int], files):
        if cycle is not None and cycle != self._cycle:
            return
        torrent = self.torrents.get(torrent_id)
        if torrent is not None:
            torrent.update_files(files, scheduled=cycle is not None)
            self.torrents.notify_changed(torrent)
            self.torrent_files_updated.emit(torrent_id)
        self._check_torrents_updated()

    def get_torrent_peers(self, torrent_id: int, scheduled: bool = False):
        cycle = self._cycle if scheduled else None
        self._requests.post("torrent-get", {"fields": PEERS_FIELDS, "ids": [torrent_id]},
                            on_success=lambda peers: self._on_torrent_peers(torrent_id, cycle, peers),
                            parse=parse_torrent_peers)

    def _on_torrent_peers(self, torrent_id: int, cycle: Optional[int], peers):
        if cycle is not None and cycle != self._cycle:
            return
        torrent = self.torrents.get(torrent_id)
        if torrent is not None:
            torrent.update_peers(peers, scheduled=cycle is not None)
            self.torrents.notify_changed(torrent)
            self.torrent_peers_updated.emit(torrent_id)
        self._check_torrents_updated()

    # --- Commands ---

    def _refresh_now(self, _reply=None):
        self.update_data()

    def _on_torrent_added(self, reply: dict):
        if not is_successful(reply):
            logger.warning(f"Failed to add torrent: {reply.get('result')}")
            self.torrent_add_error.emit()
        elif "torrent-duplicate" in reply_arguments(reply):
            logger.info("Torrent already exists on server")
            self.torrent_duplicate.emit()
        else:
            self.update_data()

    def add_torrent_file(self, file_data: bytes,
                         download_directory: str,
                         wanted_files: Iterable[int] = (),
                         unwanted_files: Iterable[int] = (),
                         low_priority_files: Iterable[int] = (),
                         normal_priority_files: Iterable[int] = (),
                         high_priority_files: Iterable[int] = (),
                         priority: int = 0,
                         start: bool = True):
        if not self.connected:
            return
        arguments = {
            "metainfo": base64.b64encode(file_data).decode("ascii"),
            "download-dir": download_directory,
            "files-wanted": list(wanted_files),
            "files-unwanted": list(unwanted_files),
            "priority-low": list(low_priority_files),
            "priority-normal": list(normal_priority_files),
            "priority-high": list(high_priority_files),
            "bandwidthPriority": priority,
            "paused": not start,
        }
        self._requests.post("torrent-add", arguments, on_success=self._on_torrent_added)

    def add_torrent_link(self, link: str, download_directory: str,
                         priority: int = 0, start: bool = True):
        if not self.connected:
            return
        arguments = {
            "filename": link,
            "download-dir": download_directory,
            "bandwidthPriority": priority,
            "paused": not start,
        }
        self._requests.post("torrent-add", arguments, on_success=self._on_torrent_added)

    def _torrent_action(self, method: str, ids: Iterable[int], **extra):
        if not self.connected:
            return
        arguments = {"ids": list(ids)}
        arguments.update(extra)
        self._requests.post(method, arguments, on_success=self._refresh_now)

    def remove_torrents(self, ids: Iterable[int], delete_files: bool = False):
        self._torrent_action("torrent-remove", ids, **{"delete-local-data": delete_files})

    def start_torrents(self, ids: Iterable[int]):
        self._torrent_action("torrent-start", ids)

    def start_torrents_now(self, ids: Iterable[int]):
        self._torrent_action("torrent-start-now", ids)

    def pause_torrents(self, ids: Iterable[int]):
        self._torrent_action("torrent-stop", ids)

    def check_torrents(self, ids: Iterable[int]):
        self._torrent_action("torrent-verify", ids)

    def reannounce_torrents(self, ids: Iterable[int]):
        self._torrent_action("torrent-reannounce", ids)

    def set_session_property(self, key: str, value: Any) -> bool:
        """Send one session-set. Returns False when not connected."""
        if not self.connected:
            return False
        self._requests.post("session-set", {key: value})
        return True

    def set_torrent_property(self, torrent_id: int, key: str, value: Any,
                             update_on_success: bool = False):
        if not self.connected:
            return
        self._requests.post("torrent-set", {"ids": [torrent_id], key: value},
                            on_success=self._refresh_now if update_on_success else None)

    def set_torrent_location(self, torrent_id: int, location: str, move_files: bool):
        self._torrent_action("torrent-set-location", [torrent_id],
                             location=location, move=move_files)

    def rename_torrent_file(self, torrent_id: int, file_path: str, new_name: str):
        if not self.connected:
            return
        self._requests.post("torrent-rename-path",
                            {"ids": [torrent_id], "path": file_path, "name": new_name},
                            on_success=self._on_file_renamed)

    def _on_file_renamed(self, reply: dict):
        arguments = reply_arguments(reply)
        if is_successful(reply) and "id" in arguments:
            torrent_id = int(arguments["id"])
            if self.torrents.get(torrent_id) is not None:
                self.torrent_file_renamed.emit(torrent_id, str(arguments["path"]),
                                               str(arguments["name"]))
        else:
            logger.warning(f"Rename failed: {reply.get('result')}")
        self.update_data()

    # --- Read surface ---

    def torrent_list(self) -> List[Torrent]:
        return self.torrents.torrents
