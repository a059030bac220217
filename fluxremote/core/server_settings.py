"""Mirror of the daemon's session settings (`session-get`).

The whole mapping is replaced on every fetch. Setters write through: a
`session-set` for that one key is sent through the owning session, and the
local value changes only if the session accepted the write.
"""

from typing import Any, Callable, Optional

SetProperty = Callable[[str, Any], bool]


def _setting(key: str, cast=lambda v: v, default=None, doc: str = ""):
    def getter(self):
        value = self._values.get(key, default)
        return cast(value) if value is not None else value

    def setter(self, value):
        self.set(key, value)

    return property(getter, setter, doc=doc or key)


class ServerSettings:
    """Flat scalar settings keyed by their RPC names."""

    def __init__(self, set_property: Optional[SetProperty] = None):
        self._values: dict = {}
        self._set_property = set_property

    def update(self, arguments: dict):
        self._values = dict(arguments)

    def clear(self):
        self._values = {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any):
        if self._values.get(key) == value:
            return
        if self._set_property is not None and not self._set_property(key, value):
            return
        self._values[key] = value

    def get_all(self) -> dict:
        return dict(self._values)

    rpc_version = _setting("rpc-version", int, 0)
    minimum_rpc_version = _setting("rpc-version-minimum", int, 0)
    version = _setting("version", str, "")

    download_directory = _setting("download-dir", str, "")
    start_added_torrents = _setting("start-added-torrents", bool, True)
    trash_torrent_files = _setting("trash-original-torrent-files", bool, False)
    rename_incomplete_files = _setting("rename-partial-files", bool, False)
    incomplete_directory_enabled = _setting("incomplete-dir-enabled", bool, False)
    incomplete_directory = _setting("incomplete-dir", str, "")

    # Speed limits are KB/s
    download_speed_limited = _setting("speed-limit-down-enabled", bool, False)
    download_speed_limit = _setting("speed-limit-down", int, 0)
    upload_speed_limited = _setting("speed-limit-up-enabled", bool, False)
    upload_speed_limit = _setting("speed-limit-up", int, 0)
    alternative_speed_limits_enabled = _setting("alt-speed-enabled", bool, False)
    alternative_download_speed_limit = _setting("alt-speed-down", int, 0)
    alternative_upload_speed_limit = _setting("alt-speed-up", int, 0)

    ratio_limited = _setting("seedRatioLimited", bool, False)
    ratio_limit = _setting("seedRatioLimit", float, 0.0)
    idle_seeding_limited = _setting("idle-seeding-limit-enabled", bool, False)
    idle_seeding_limit = _setting("idle-seeding-limit", int, 0)  # minutes

    download_queue_enabled = _setting("download-queue-enabled", bool, False)
    download_queue_size = _setting("download-queue-size", int, 0)
    seed_queue_enabled = _setting("seed-queue-enabled", bool, False)
    seed_queue_size = _setting("seed-queue-size", int, 0)

    peer_port = _setting("peer-port", int, 0)
    random_port_enabled = _setting("peer-port-random-on-start", bool, False)
    port_forwarding_enabled = _setting("port-forwarding-enabled", bool, False)
    encryption = _setting("encryption", str, "preferred")
    utp_enabled = _setting("utp-enabled", bool, False)
    pex_enabled = _setting("pex-enabled", bool, False)
    dht_enabled = _setting("dht-enabled", bool, False)
    lpd_enabled = _setting("lpd-enabled", bool, False)
    maximum_peers_per_torrent = _setting("peer-limit-per-torrent", int, 0)
    maximum_peers_globally = _setting("peer-limit-global", int, 0)


class SessionStatsPeriod:
    """One of the `current-stats` / `cumulative-stats` blocks."""

    def __init__(self, values: Optional[dict] = None):
        values = values or {}
        self.downloaded = int(values.get("downloadedBytes", 0))
        self.uploaded = int(values.get("uploadedBytes", 0))
        self.files_added = int(values.get("filesAdded", 0))
        self.session_count = int(values.get("sessionCount", 0))
        self.seconds_active = int(values.get("secondsActive", 0))

    @property
    def ratio(self) -> float:
        return self.uploaded / self.downloaded if self.downloaded > 0 else -1.0


class ServerStats:
    """Aggregate transfer counters from `session-stats`."""

    def __init__(self):
        self.update({})

    def update(self, arguments: dict):
        self.download_speed = int(arguments.get("downloadSpeed", 0))
        self.upload_speed = int(arguments.get("uploadSpeed", 0))
        self.torrent_count = int(arguments.get("torrentCount", 0))
        self.active_torrent_count = int(arguments.get("activeTorrentCount", 0))
        self.paused_torrent_count = int(arguments.get("pausedTorrentCount", 0))
        self.current = SessionStatsPeriod(arguments.get("current-stats"))
        self.total = SessionStatsPeriod(arguments.get("cumulative-stats"))

    def clear(self):
        self.update({})


def parse_server_settings(reply: dict) -> dict:
    """Worker-side validation of a session-get reply."""
    arguments = reply["arguments"]
    for key in ("rpc-version", "rpc-version-minimum"):
        if not isinstance(arguments[key], int):
            raise TypeError(f"{key} is not an integer")
    return arguments


def parse_server_stats(reply: dict) -> ServerStats:
    stats = ServerStats()
    stats.update(reply["arguments"])
    return stats
