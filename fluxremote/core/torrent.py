"""Torrent entities mirrored from the daemon.

Key design: request workers turn each `torrent-get` entry into an immutable
TorrentSnapshot. The coordinator-owned Torrent caches the latest snapshot
and all properties read from it, so update() is a single comparison that
tells whether anything visible changed.

Files and peers are detail sets: None until first fetched, refreshed only
while a consumer has them enabled.
"""

import logging
from dataclasses import dataclass
from enum import Enum, IntEnum, auto
from typing import Optional, List, Dict, Tuple

logger = logging.getLogger(__name__)

# Fields requested for the torrent list
TORRENT_FIELDS = [
    "activityDate",
    "addedDate",
    "bandwidthPriority",
    "comment",
    "creator",
    "dateCreated",
    "doneDate",
    "downloadDir",
    "downloadedEver",
    "downloadLimit",
    "downloadLimited",
    "error",
    "errorString",
    "eta",
    "hashString",
    "haveValid",
    "honorsSessionLimits",
    "id",
    "leftUntilDone",
    "name",
    "peer-limit",
    "peersConnected",
    "peersGettingFromUs",
    "peersSendingToUs",
    "percentDone",
    "queuePosition",
    "rateDownload",
    "rateUpload",
    "recheckProgress",
    "seedIdleLimit",
    "seedIdleMode",
    "seedRatioLimit",
    "seedRatioMode",
    "sizeWhenDone",
    "status",
    "totalSize",
    "trackerStats",
    "uploadedEver",
    "uploadLimit",
    "uploadLimited",
    "uploadRatio",
]

FILES_FIELDS = ["files", "fileStats"]
PEERS_FIELDS = ["peers"]


class TorrentStatus(IntEnum):
    """Raw `status` codes of the RPC protocol."""
    STOPPED = 0
    CHECK_WAIT = 1
    CHECK = 2
    DOWNLOAD_WAIT = 3
    DOWNLOAD = 4
    SEED_WAIT = 5
    SEED = 6


class TorrentState(Enum):
    PAUSED = auto()
    CHECK_QUEUED = auto()
    CHECKING = auto()
    DOWNLOAD_QUEUED = auto()
    DOWNLOADING = auto()
    STALLED_DOWNLOADING = auto()
    SEED_QUEUED = auto()
    SEEDING = auto()
    STALLED_SEEDING = auto()
    ERRORED = auto()

    @property
    def display_name(self) -> str:
        return _STATE_DISPLAY.get(self, "Unknown")


_STATE_DISPLAY = {
    TorrentState.PAUSED: "Paused",
    TorrentState.CHECK_QUEUED: "Queued for checking",
    TorrentState.CHECKING: "Checking",
    TorrentState.DOWNLOAD_QUEUED: "Queued for download",
    TorrentState.DOWNLOADING: "Downloading",
    TorrentState.STALLED_DOWNLOADING: "Stalled",
    TorrentState.SEED_QUEUED: "Queued for seeding",
    TorrentState.SEEDING: "Seeding",
    TorrentState.STALLED_SEEDING: "Seeding (idle)",
    TorrentState.ERRORED: "Error",
}


class FilePriority(IntEnum):
    LOW = -1
    NORMAL = 0
    HIGH = 1


@dataclass(frozen=True)
class TrackerStat:
    id: int
    announce: str
    host: str = ""
    last_announce_succeeded: bool = False
    last_announce_result: str = ""
    last_announce_peer_count: int = 0
    next_announce_time: int = 0
    seeder_count: int = -1
    leecher_count: int = -1

    @classmethod
    def from_json(cls, d: dict) -> 'TrackerStat':
        return cls(
            id=int(d["id"]),
            announce=str(d["announce"]),
            host=str(d.get("host", "")),
            last_announce_succeeded=bool(d.get("lastAnnounceSucceeded", False)),
            last_announce_result=str(d.get("lastAnnounceResult", "")),
            last_announce_peer_count=int(d.get("lastAnnouncePeerCount", 0)),
            next_announce_time=int(d.get("nextAnnounceTime", 0)),
            seeder_count=int(d.get("seederCount", -1)),
            leecher_count=int(d.get("leecherCount", -1)),
        )


@dataclass(frozen=True)
class TorrentSnapshot:
    """Immutable state of one torrent as of one `torrent-get` reply."""
    id: int
    hash_string: str = ""
    name: str = ""
    status: TorrentStatus = TorrentStatus.STOPPED
    error: int = 0
    error_string: str = ""
    percent_done: float = 0.0
    recheck_progress: float = 0.0
    total_size: int = 0
    size_when_done: int = 0
    left_until_done: int = 0
    have_valid: int = 0
    downloaded_ever: int = 0
    uploaded_ever: int = 0
    ratio: float = 0.0
    download_speed: int = 0
    upload_speed: int = 0
    download_limited: bool = False
    download_limit: int = 0
    upload_limited: bool = False
    upload_limit: int = 0
    bandwidth_priority: int = 0
    honors_session_limits: bool = True
    seed_ratio_mode: int = 0
    seed_ratio_limit: float = 0.0
    seed_idle_mode: int = 0
    seed_idle_limit: int = 0
    peer_limit: int = 0
    peers_connected: int = 0
    peers_getting_from_us: int = 0
    peers_sending_to_us: int = 0
    queue_position: int = 0
    eta: int = -1
    download_directory: str = ""
    comment: str = ""
    creator: str = ""
    date_created: int = 0
    added_date: int = 0
    done_date: int = 0
    activity_date: int = 0
    trackers: Tuple[TrackerStat, ...] = ()

    @classmethod
    def from_json(cls, d: dict) -> 'TorrentSnapshot':
        """Raises KeyError/TypeError/ValueError on malformed entries."""
        return cls(
            id=int(d["id"]),
            hash_string=str(d["hashString"]),
            name=str(d["name"]),
            status=TorrentStatus(int(d["status"])),
            error=int(d["error"]),
            error_string=str(d["errorString"]),
            percent_done=float(d["percentDone"]),
            recheck_progress=float(d["recheckProgress"]),
            total_size=int(d["totalSize"]),
            size_when_done=int(d["sizeWhenDone"]),
            left_until_done=int(d["leftUntilDone"]),
            have_valid=int(d["haveValid"]),
            downloaded_ever=int(d["downloadedEver"]),
            uploaded_ever=int(d["uploadedEver"]),
            ratio=float(d["uploadRatio"]),
            download_speed=int(d["rateDownload"]),
            upload_speed=int(d["rateUpload"]),
            download_limited=bool(d["downloadLimited"]),
            download_limit=int(d["downloadLimit"]),
            upload_limited=bool(d["uploadLimited"]),
            upload_limit=int(d["uploadLimit"]),
            bandwidth_priority=int(d["bandwidthPriority"]),
            honors_session_limits=bool(d["honorsSessionLimits"]),
            seed_ratio_mode=int(d["seedRatioMode"]),
            seed_ratio_limit=float(d["seedRatioLimit"]),
            seed_idle_mode=int(d["seedIdleMode"]),
            seed_idle_limit=int(d["seedIdleLimit"]),
            peer_limit=int(d["peer-limit"]),
            peers_connected=int(d["peersConnected"]),
            peers_getting_from_us=int(d["peersGettingFromUs"]),
            peers_sending_to_us=int(d["peersSendingToUs"]),
            queue_position=int(d["queuePosition"]),
            eta=int(d["eta"]),
            download_directory=str(d["downloadDir"]),
            comment=str(d["comment"]),
            creator=str(d["creator"]),
            date_created=int(d["dateCreated"]),
            added_date=int(d["addedDate"]),
            done_date=int(d["doneDate"]),
            activity_date=int(d["activityDate"]),
            trackers=tuple(TrackerStat.from_json(t) for t in d["trackerStats"]),
        )


@dataclass(frozen=True)
class TorrentFile:
    index: int
    path: str
    size: int
    completed: int = 0
    wanted: bool = True
    priority: FilePriority = FilePriority.NORMAL

    @property
    def progress(self) -> float:
        return self.completed / self.size if self.size > 0 else 0.0


@dataclass(frozen=True)
class PeerSnapshot:
    address: str
    download_speed: int = 0
    upload_speed: int = 0
    progress: float = 0.0
    client: str = ""

    @classmethod
    def from_json(cls, d: dict) -> 'PeerSnapshot':
        return cls(
            address=str(d["address"]),
            download_speed=int(d["rateToClient"]),
            upload_speed=int(d["rateToPeer"]),
            progress=float(d["progress"]),
            client=str(d["clientName"]),
        )


class Peer:
    """A peer of one torrent, identified by its address.

    `changed` is set by update() only when a field actually differs.
    """

    def __init__(self, snapshot: PeerSnapshot):
        self.address = snapshot.address
        self.download_speed = 0
        self.upload_speed = 0
        self.progress = 0.0
        self.client = ""
        self.changed = False
        self.update(snapshot)
        self.changed = False

    def update(self, snapshot: PeerSnapshot) -> bool:
        changed = False
        for attr in ("download_speed", "upload_speed", "progress", "client"):
            value = getattr(snapshot, attr)
            if getattr(self, attr) != value:
                setattr(self, attr, value)
                changed = True
        self.changed = changed
        return changed

    def __repr__(self):
        return f"Peer({self.address!r}, client={self.client!r})"


# --- Worker-side parsers (run on the request thread) ---

def _reply_torrents(reply: dict) -> list:
    return reply["arguments"]["torrents"]


def parse_torrent_list(reply: dict) -> List[TorrentSnapshot]:
    return [TorrentSnapshot.from_json(t) for t in _reply_torrents(reply)]


def parse_files(files: list, file_stats: list) -> List[TorrentFile]:
    if len(files) != len(file_stats):
        raise ValueError("files and fileStats differ in length")
    result = []
    for index, (f, stats) in enumerate(zip(files, file_stats)):
        result.append(TorrentFile(
            index=index,
            path=str(f["name"]),
            size=int(f["length"]),
            completed=int(stats["bytesCompleted"]),
            wanted=bool(stats["wanted"]),
            priority=FilePriority(int(stats["priority"])),
        ))
    return result


def parse_torrent_files(reply: dict) -> Optional[List[TorrentFile]]:
    """None when the torrent is gone from the server."""
    torrents = _reply_torrents(reply)
    if not torrents:
        return None
    return parse_files(torrents[0]["files"], torrents[0]["fileStats"])


def parse_torrent_peers(reply: dict) -> Optional[List[PeerSnapshot]]:
    torrents = _reply_torrents(reply)
    if not torrents:
        return None
    return [PeerSnapshot.from_json(p) for p in torrents[0]["peers"]]


class Torrent:
    """Live torrent entity, owned by the TorrentListModel.

    Call update() with each new snapshot, then read properties from the
    cached snapshot.
    """

    def __init__(self, snapshot: TorrentSnapshot):
        self._snap = snapshot
        self.changed = False

        self._files: Optional[List[TorrentFile]] = None
        self.files_enabled = False
        self.files_updated = False

        self._peers: Optional[Dict[str, Peer]] = None
        self.peers_enabled = False
        self.peers_updated = False

    # --- Snapshot system ---

    def update(self, snapshot: TorrentSnapshot) -> bool:
        if snapshot.id != self._snap.id:
            raise ValueError(f"Snapshot for torrent {snapshot.id} applied to {self._snap.id}")
        self.changed = snapshot != self._snap
        self._snap = snapshot
        return self.changed

    @property
    def snapshot(self) -> TorrentSnapshot:
        return self._snap

    @property
    def updated(self) -> bool:
        """True once every enabled detail set was fetched this cycle."""
        if self.files_enabled and not self.files_updated:
            return False
        if self.peers_enabled and not self.peers_updated:
            return False
        return True

    # --- Cached property accessors ---

    @property
    def id(self) -> int:
        return self._snap.id

    @property
    def hash_string(self) -> str:
        return self._snap.hash_string

    @property
    def name(self) -> str:
        return self._snap.name

    @property
    def status(self) -> TorrentStatus:
        return self._snap.status

    @property
    def state(self) -> TorrentState:
        s = self._snap
        if s.error != 0:
            return TorrentState.ERRORED
        if s.status == TorrentStatus.STOPPED:
            return TorrentState.PAUSED
        if s.status == TorrentStatus.CHECK_WAIT:
            return TorrentState.CHECK_QUEUED
        if s.status == TorrentStatus.CHECK:
            return TorrentState.CHECKING
        if s.status == TorrentStatus.DOWNLOAD_WAIT:
            return TorrentState.DOWNLOAD_QUEUED
        if s.status == TorrentStatus.DOWNLOAD:
            if s.peers_sending_to_us == 0:
                return TorrentState.STALLED_DOWNLOADING
            return TorrentState.DOWNLOADING
        if s.status == TorrentStatus.SEED_WAIT:
            return TorrentState.SEED_QUEUED
        if s.peers_getting_from_us == 0:
            return TorrentState.STALLED_SEEDING
        return TorrentState.SEEDING

    @property
    def error_string(self) -> str:
        return self._snap.error_string

    @property
    def percent_done(self) -> float:
        return self._snap.percent_done

    @property
    def finished(self) -> bool:
        return self._snap.percent_done == 1.0

    @property
    def total_size(self) -> int:
        return self._snap.total_size

    @property
    def size_when_done(self) -> int:
        return self._snap.size_when_done

    @property
    def completed_size(self) -> int:
        return self._snap.size_when_done - self._snap.left_until_done

    @property
    def downloaded_ever(self) -> int:
        return self._snap.downloaded_ever

    @property
    def uploaded_ever(self) -> int:
        return self._snap.uploaded_ever

    @property
    def ratio(self) -> float:
        return self._snap.ratio

    @property
    def download_speed(self) -> int:
        return self._snap.download_speed

    @property
    def upload_speed(self) -> int:
        return self._snap.upload_speed

    @property
    def eta(self) -> int:
        return self._snap.eta

    @property
    def peers_connected(self) -> int:
        return self._snap.peers_connected

    @property
    def download_directory(self) -> str:
        return self._snap.download_directory

    @property
    def added_date(self) -> int:
        return self._snap.added_date

    @property
    def trackers(self) -> Tuple[TrackerStat, ...]:
        return self._snap.trackers

    @property
    def seeders(self) -> int:
        return sum(max(t.seeder_count, 0) for t in self._snap.trackers)

    @property
    def leechers(self) -> int:
        return sum(max(t.leecher_count, 0) for t in self._snap.trackers)

    # --- Files ---

    @property
    def files(self) -> Optional[List[TorrentFile]]:
        return self._files

    def update_files(self, files: Optional[List[TorrentFile]], scheduled: bool = True):
        """Store a file list. Only a scheduled fetch settles the running cycle."""
        if files is not None:
            self._files = files
        if scheduled:
            self.files_updated = True

    # --- Peers ---

    @property
    def peers(self) -> Optional[List[Peer]]:
        if self._peers is None:
            return None
        return list(self._peers.values())

    def update_peers(self, snapshots: Optional[List[PeerSnapshot]], scheduled: bool = True):
        """Reconcile the peer set by address, keeping unchanged Peer objects."""
        if scheduled:
            self.peers_updated = True
        if snapshots is None:
            return
        old = self._peers or {}
        peers: Dict[str, Peer] = {}
        for snap in snapshots:
            peer = old.get(snap.address)
            if peer is None:
                peer = Peer(snap)
            else:
                peer.update(snap)
            peers[snap.address] = peer
        self._peers = peers

    def __repr__(self):
        return f"Torrent(id={self.id}, name={self.name!r})"
