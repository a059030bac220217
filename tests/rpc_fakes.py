"""Test doubles for the RPC layer: inline executors and a fake daemon."""

import json
from concurrent.futures import Executor, Future

from PyQt6.QtCore import QCoreApplication

from fluxremote.core.rpc_client import RequestOutcome
from fluxremote.core.state import Error
from fluxremote.core.servers import ServerProfile


def qt_app():
    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication([])
    return app


class InlineExecutor(Executor):
    """Runs every submitted call immediately on the calling thread."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class DeferredExecutor(Executor):
    """Holds submitted calls until run_next()/run_all() is called."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.pending.append((fn, args, kwargs, future))
        return future

    def run_next(self):
        fn, args, kwargs, future = self.pending.pop(0)
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)

    def run_all(self):
        while self.pending:
            self.run_next()


def torrent_json(torrent_id: int, **overrides) -> dict:
    """A complete torrent-get entry with all list fields present."""
    entry = {
        "activityDate": 0,
        "addedDate": 1700000000 + torrent_id,
        "bandwidthPriority": 0,
        "comment": "",
        "creator": "",
        "dateCreated": 0,
        "doneDate": 0,
        "downloadDir": "/downloads",
        "downloadedEver": 0,
        "downloadLimit": 100,
        "downloadLimited": False,
        "error": 0,
        "errorString": "",
        "eta": -1,
        "hashString": f"{torrent_id:040x}",
        "haveValid": 0,
        "honorsSessionLimits": True,
        "id": torrent_id,
        "leftUntilDone": 0,
        "name": f"torrent-{torrent_id}",
        "peer-limit": 50,
        "peersConnected": 0,
        "peersGettingFromUs": 0,
        "peersSendingToUs": 0,
        "percentDone": 0.0,
        "queuePosition": torrent_id,
        "rateDownload": 0,
        "rateUpload": 0,
        "recheckProgress": 0.0,
        "seedIdleLimit": 30,
        "seedIdleMode": 0,
        "seedRatioLimit": 2.0,
        "seedRatioMode": 0,
        "sizeWhenDone": 1000,
        "status": 4,
        "totalSize": 1000,
        "trackerStats": [],
        "uploadedEver": 0,
        "uploadLimit": 100,
        "uploadLimited": False,
        "uploadRatio": -1,
    }
    entry.update(overrides)
    return entry


def make_profile(**overrides) -> ServerProfile:
    values = dict(name="test", address="localhost", port=9091)
    values.update(overrides)
    return ServerProfile(**values)


class FakeDaemon:
    """Transport stand-in that answers like a Transmission daemon.

    Requests without the current session id get a 409, like the real
    thing. `errors` maps a method name to an Error returned instead of a
    reply; `replies` maps a method name to a fixed reply object.
    """

    def __init__(self):
        self.session_id = "token-1"
        self.rpc_version = 17
        self.rpc_version_minimum = 14
        self.torrents = []
        self.files = {}   # torrent id -> (files, fileStats)
        self.peers = {}   # torrent id -> peers
        self.settings = {"download-dir": "/downloads", "start-added-torrents": True}
        self.stats = {"downloadSpeed": 0, "uploadSpeed": 0, "torrentCount": 0}
        self.errors = {}
        self.replies = {}
        self.always_conflict = False
        self.calls = []  # (method, arguments, session_id)

    def methods(self):
        return [c[0] for c in self.calls]

    def arguments_of(self, method):
        return [c[1] for c in self.calls if c[0] == method]

    def __call__(self, connection, body, session_id, parse=None):
        query = json.loads(body.decode("utf-8"))
        method = query["method"]
        arguments = query.get("arguments")
        self.calls.append((method, arguments, session_id))

        if self.always_conflict or session_id != self.session_id:
            return RequestOutcome(session_id=self.session_id)
        if method in self.errors:
            return RequestOutcome(error=self.errors[method])

        reply = self.replies.get(method) or self.reply(method, arguments or {})
        try:
            result = parse(reply) if parse is not None else reply
        except (ValueError, KeyError, TypeError, IndexError):
            return RequestOutcome(error=Error.PARSING_ERROR)
        return RequestOutcome(result=result)

    def reply(self, method, arguments):
        if method == "session-get":
            values = dict(self.settings)
            values["rpc-version"] = self.rpc_version
            values["rpc-version-minimum"] = self.rpc_version_minimum
            return _success(values)
        if method == "session-stats":
            return _success(dict(self.stats))
        if method == "torrent-get":
            fields = arguments.get("fields", [])
            ids = arguments.get("ids")
            selected = [t for t in self.torrents if ids is None or t["id"] in ids]
            if "files" in fields:
                return _success({"torrents": [
                    {"files": self.files.get(t["id"], ([], []))[0],
                     "fileStats": self.files.get(t["id"], ([], []))[1]}
                    for t in selected
                ]})
            if "peers" in fields:
                return _success({"torrents": [
                    {"peers": self.peers.get(t["id"], [])} for t in selected
                ]})
            return _success({"torrents": [dict(t) for t in selected]})
        return _success({})


def _success(arguments: dict) -> dict:
    return {"result": "success", "arguments": arguments}


class FakeHTTPResponse:
    """Minimal urlopen() return value."""

    def __init__(self, payload):
        self._data = payload if isinstance(payload, bytes) else json.dumps(payload).encode()

    def read(self):
        return self._data

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

