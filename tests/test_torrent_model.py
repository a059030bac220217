"""Unit tests for the TorrentListModel merge."""

from PyQt6.QtCore import Qt

from fluxremote.core.torrent import TorrentSnapshot
from fluxremote.core.torrent_model import TorrentListModel, TorrentRole, TorrentIdRole

from rpc_fakes import torrent_json


def snaps(*ids, overrides: dict = None):
    overrides = overrides or {}
    return [TorrentSnapshot.from_json(torrent_json(i, **overrides.get(i, {}))) for i in ids]


class EventLog:
    """Records the model's row events in emission order."""

    def __init__(self, model):
        self.events = []
        model.rowsInserted.connect(lambda parent, first, last: self.events.append(("insert", first)))
        model.rowsRemoved.connect(lambda parent, first, last: self.events.append(("remove", first, last)))
        model.rowsMoved.connect(
            lambda parent, start, end, dest, row: self.events.append(("move", start, row)))
        model.dataChanged.connect(
            lambda top, bottom, roles: self.events.append(("change", top.row())))
        model.modelReset.connect(lambda: self.events.append(("reset",)))


def ids(model):
    return [t.id for t in model]


class TestMerge:
    def test_initial_inserts(self):
        model = TorrentListModel()
        log = EventLog(model)
        model.merge(snaps(1, 2, 3))
        assert ids(model) == [1, 2, 3]
        assert log.events == [("insert", 0), ("insert", 1), ("insert", 2)]

    def test_remove_and_insert(self):
        model = TorrentListModel()
        model.merge(snaps(1, 2, 3))
        log = EventLog(model)
        model.merge(snaps(2, 3, 4))
        assert ids(model) == [2, 3, 4]
        assert log.events == [("remove", 0, 0), ("insert", 2)]

    def test_unchanged_merge_is_silent(self):
        model = TorrentListModel()
        model.merge(snaps(1, 2))
        log = EventLog(model)
        model.merge(snaps(1, 2))
        assert log.events == []

    def test_changed_row(self):
        model = TorrentListModel()
        model.merge(snaps(1, 2))
        log = EventLog(model)
        model.merge(snaps(1, 2, overrides={2: {"rateDownload": 500}}))
        assert log.events == [("change", 1)]
        assert model.get(2).download_speed == 500

    def test_move(self):
        model = TorrentListModel()
        model.merge(snaps(1, 2, 3))
        first = model.get(3)
        log = EventLog(model)
        model.merge(snaps(3, 1, 2))
        assert ids(model) == [3, 1, 2]
        assert log.events == [("move", 2, 0)]
        assert model.get(3) is first

    def test_move_with_change(self):
        model = TorrentListModel()
        model.merge(snaps(1, 2))
        log = EventLog(model)
        model.merge(snaps(2, 1, overrides={2: {"name": "renamed"}}))
        assert ids(model) == [2, 1]
        assert log.events == [("move", 1, 0), ("change", 0)]

    def test_entities_are_kept(self):
        model = TorrentListModel()
        model.merge(snaps(1, 2))
        before = model.get(1)
        model.merge(snaps(1, 2, overrides={1: {"percentDone": 0.5}}))
        assert model.get(1) is before

    def test_duplicate_ids_ignored(self):
        model = TorrentListModel()
        model.merge(snaps(1, 1, 2))
        assert ids(model) == [1, 2]

    def test_empty_reply_removes_everything(self):
        model = TorrentListModel()
        model.merge(snaps(1, 2))
        model.merge([])
        assert len(model) == 0
        assert model.get(1) is None

    def test_never_resets(self):
        model = TorrentListModel()
        log = EventLog(model)
        model.merge(snaps(1, 2, 3))
        model.merge(snaps(3, 4))
        model.clear()
        assert ("reset",) not in log.events


class TestFinished:
    def test_finished_transition_reported_once(self):
        model = TorrentListModel()
        model.merge(snaps(1, overrides={1: {"percentDone": 0.999}}))
        finished = model.merge(snaps(1, overrides={1: {"percentDone": 1.0}}))
        assert [t.id for t in finished] == [1]
        assert model.merge(snaps(1, overrides={1: {"percentDone": 1.0}})) == []

    def test_new_complete_torrent_not_reported(self):
        model = TorrentListModel()
        assert model.merge(snaps(1, overrides={1: {"percentDone": 1.0}})) == []


class TestDetails:
    def test_enabled_details_marked_stale(self):
        model = TorrentListModel()
        model.merge(snaps(1, 2))
        torrent = model.get(1)
        torrent.files_enabled = True
        torrent.update_files([])
        torrent.peers_enabled = True
        torrent.update_peers([])
        assert torrent.updated

        model.merge(snaps(1, 2))
        assert not torrent.files_updated
        assert not torrent.peers_updated
        assert not torrent.updated
        assert model.get(2).updated

    def test_notify_changed(self):
        model = TorrentListModel()
        model.merge(snaps(1, 2))
        log = EventLog(model)
        model.notify_changed(model.get(2))
        assert log.events == [("change", 1)]


class TestLookup:
    def test_clear(self):
        model = TorrentListModel()
        model.merge(snaps(1, 2, 3))
        log = EventLog(model)
        model.clear()
        assert model.rowCount() == 0
        assert log.events == [("remove", 0, 2)]
        model.clear()
        assert len(log.events) == 1

    def test_find_row(self):
        model = TorrentListModel()
        model.merge(snaps(5, 9))
        assert model.find_row(9) == 1
        assert model.find_row(1) == -1
        assert model.torrent_at(0).id == 5
        assert model.torrent_at(2) is None
        assert model.torrent_at(-1) is None

    def test_data_roles(self):
        model = TorrentListModel()
        model.merge(snaps(5))
        index = model.index(0, 0)
        assert model.data(index, Qt.ItemDataRole.DisplayRole) == "torrent-5"
        assert model.data(index, TorrentRole) is model.get(5)
        assert model.data(index, TorrentIdRole) == 5
        assert model.data(model.index(3, 0)) is None
