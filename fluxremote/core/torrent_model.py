"""Torrent repository as a Qt list model.

merge() reconciles a fresh torrent-get snapshot list against the rows
already held. Existing Torrent objects are kept and updated in place, so
views and other observers only receive the row events that really
happened: rowsRemoved for torrents gone from the server, rowsInserted for
new ones, rowsMoved when the order changed and dataChanged for torrents
whose fields differ.
"""

import logging
from typing import Iterator, List, Optional

from PyQt6.QtCore import Qt, QAbstractListModel, QModelIndex

from fluxremote.core.torrent import Torrent, TorrentSnapshot

logger = logging.getLogger(__name__)

TorrentRole = Qt.ItemDataRole.UserRole
TorrentIdRole = Qt.ItemDataRole.UserRole + 1


class TorrentListModel(QAbstractListModel):
    """Ordered collection of Torrent entities, unique by id."""

    def __init__(self, parent=None):
        super().__init__(parent)
        self._torrents: List[Torrent] = []
        self._id_index: dict[int, int] = {}  # torrent id -> row

    def merge(self, snapshots: List[TorrentSnapshot]) -> List[Torrent]:
        """Apply a snapshot list; returns torrents that just finished downloading.

        Torrents with enabled file/peer details are marked stale so the
        caller knows which detail fetches this cycle still waits for.
        """
        finished = []
        new_torrents: List[Torrent] = []
        seen = set()

        for snap in snapshots:
            if snap.id in seen:
                logger.warning(f"Duplicate torrent id {snap.id} in reply, ignoring")
                continue
            seen.add(snap.id)

            torrent = self.get(snap.id)
            if torrent is None:
                torrent = Torrent(snap)
            else:
                was_finished = torrent.finished
                torrent.update(snap)
                if torrent.finished and not was_finished:
                    finished.append(torrent)

            if torrent.files_enabled:
                torrent.files_updated = False
            if torrent.peers_enabled:
                torrent.peers_updated = False
            new_torrents.append(torrent)

        # Remove torrents that are gone
        row = 0
        while row < len(self._torrents):
            if self._torrents[row].id in seen:
                row += 1
            else:
                self.beginRemoveRows(QModelIndex(), row, row)
                del self._torrents[row]
                self.endRemoveRows()

        # Insert new torrents and move existing ones into place
        for row, torrent in enumerate(new_torrents):
            if row < len(self._torrents) and self._torrents[row] is torrent:
                if torrent.changed:
                    self._emit_changed(row)
                continue

            old_row = self._find_from(torrent, row)
            if old_row == -1:
                self.beginInsertRows(QModelIndex(), row, row)
                self._torrents.insert(row, torrent)
                self.endInsertRows()
            else:
                self.beginMoveRows(QModelIndex(), old_row, old_row, QModelIndex(), row)
                self._torrents.insert(row, self._torrents.pop(old_row))
                self.endMoveRows()
                if torrent.changed:
                    self._emit_changed(row)

        self._rebuild_index()
        return finished

    def clear(self):
        if not self._torrents:
            return
        self.beginRemoveRows(QModelIndex(), 0, len(self._torrents) - 1)
        self._torrents.clear()
        self.endRemoveRows()
        self._rebuild_index()

    def notify_changed(self, torrent: Torrent):
        row = self.find_row(torrent.id)
        if row != -1:
            self._emit_changed(row)

    def _find_from(self, torrent: Torrent, start: int) -> int:
        for row in range(start, len(self._torrents)):
            if self._torrents[row] is torrent:
                return row
        return -1

    def _emit_changed(self, row: int):
        index = self.index(row, 0)
        self.dataChanged.emit(index, index)

    def _rebuild_index(self):
        self._id_index = {t.id: i for i, t in enumerate(self._torrents)}

    # --- Lookup ---

    def get(self, torrent_id: int) -> Optional[Torrent]:
        row = self._id_index.get(torrent_id, -1)
        if 0 <= row < len(self._torrents):
            return self._torrents[row]
        return None

    def find_row(self, torrent_id: int) -> int:
        return self._id_index.get(torrent_id, -1)

    def torrent_at(self, row: int) -> Optional[Torrent]:
        if 0 <= row < len(self._torrents):
            return self._torrents[row]
        return None

    @property
    def torrents(self) -> List[Torrent]:
        return list(self._torrents)

    def __len__(self) -> int:
        return len(self._torrents)

    def __iter__(self) -> Iterator[Torrent]:
        return iter(list(self._torrents))

    # --- QAbstractListModel interface ---

    def rowCount(self, parent=QModelIndex()):
        if parent.isValid():
            return 0
        return len(self._torrents)

    def data(self, index: QModelIndex, role=Qt.ItemDataRole.DisplayRole):
        if not index.isValid():
            return None
        torrent = self.torrent_at(index.row())
        if torrent is None:
            return None

        if role == Qt.ItemDataRole.DisplayRole:
            return torrent.name
        elif role == TorrentRole:
            return torrent
        elif role == TorrentIdRole:
            return torrent.id
        return None
