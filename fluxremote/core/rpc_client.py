"""RPC request executor.

Architecture:
  RpcSession -> post() -> ThreadPoolExecutor [worker thread]
  worker: HTTP POST + JSON decode + optional parse -> RequestOutcome
  future done -> (queued signal) -> RequestExecutor._on_finished [coordinator]

Workers never touch session state. They get an immutable ConnectionConfig
and the session id current at submit time, and only hand an outcome back.
Everything else (session id rotation, retry, dropping late replies)
happens on the coordinator thread.
"""

import json
import socket
import logging
import http.client
from dataclasses import dataclass, field
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any, Callable, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from PyQt6.QtCore import QObject, pyqtSignal, pyqtSlot

from fluxremote.core.state import Error
from fluxremote.core.transport import ConnectionConfig

logger = logging.getLogger(__name__)

SESSION_ID_HEADER = "X-Transmission-Session-Id"
HTTP_CONFLICT = 409


def make_request_body(method: str, arguments: Optional[dict] = None) -> bytes:
    query: dict = {"method": method}
    if arguments is not None:
        query["arguments"] = arguments
    return json.dumps(query).encode("utf-8")


def reply_arguments(reply: dict) -> dict:
    return reply.get("arguments") or {}


def is_successful(reply: dict) -> bool:
    return reply.get("result") == "success"


@dataclass
class RequestOutcome:
    """What a worker reports back. Exactly one of the three is meaningful."""
    result: Any = None
    error: Optional[Error] = None
    session_id: Optional[str] = None  # set on 409 with a new token


def _is_timeout(e: BaseException) -> bool:
    if isinstance(e, (TimeoutError, socket.timeout)):
        return True
    return isinstance(e, URLError) and isinstance(e.reason, (TimeoutError, socket.timeout))


def perform_request(connection: ConnectionConfig, body: bytes, session_id: str,
                    parse: Optional[Callable[[dict], Any]] = None) -> RequestOutcome:
    """Blocking HTTP call. Runs on a worker thread; never raises for I/O errors."""
    headers = {
        SESSION_ID_HEADER: session_id,
        "Content-Type": "application/json",
    }
    if connection.auth_header:
        headers["Authorization"] = connection.auth_header
    req = Request(connection.url, data=body, headers=headers, method="POST")

    try:
        with urlopen(req, timeout=connection.timeout, context=connection.ssl_context) as resp:
            data = resp.read()
    except HTTPError as e:
        new_id = e.headers.get(SESSION_ID_HEADER) if e.headers is not None else None
        if e.code == HTTP_CONFLICT and new_id is not None:
            return RequestOutcome(session_id=new_id)
        logger.error(f"Connection error: {e.code} {e.reason}")
        return RequestOutcome(error=Error.CONNECTION_ERROR)
    except (URLError, OSError, http.client.HTTPException) as e:
        if _is_timeout(e):
            logger.error(f"Connection timed out: {e}")
            return RequestOutcome(error=Error.TIMED_OUT)
        logger.error(f"Connection error: {e}")
        return RequestOutcome(error=Error.CONNECTION_ERROR)

    try:
        reply = json.loads(data.decode("utf-8"))
        if not isinstance(reply, dict) or not isinstance(reply.get("result"), str):
            raise ValueError("reply is not an RPC result object")
        result = parse(reply) if parse is not None else reply
    except (ValueError, KeyError, TypeError, IndexError, UnicodeDecodeError) as e:
        logger.error(f"Parsing error: {e}")
        return RequestOutcome(error=Error.PARSING_ERROR)

    logger.debug(f"Reply: {len(data)} bytes")
    return RequestOutcome(result=result)


@dataclass(eq=False)
class RpcRequest:
    method: str
    body: bytes
    on_success: Optional[Callable[[Any], None]] = None
    parse: Optional[Callable[[dict], Any]] = None
    generation: int = 0
    retried: bool = False
    future: Optional[Future] = field(default=None, repr=False)


Transport = Callable[[ConnectionConfig, bytes, str, Optional[Callable]], RequestOutcome]


class RequestExecutor(QObject):
    """Runs RPC calls off the coordinator thread.

    Requests are tracked in an active set tagged with a generation number.
    abandon_all() bumps the generation and empties the set; replies that
    arrive for anything no longer tracked are dropped, which is how a
    disconnect voids in-flight calls without cancelling the HTTP request.
    """

    # Emitted once per failed request; the session turns it into a disconnect
    failed = pyqtSignal(object)  # Error

    _finished = pyqtSignal(object, object)  # RpcRequest, Future

    def __init__(self, executor: Optional[Executor] = None,
                 transport: Transport = perform_request, parent=None):
        super().__init__(parent)
        self._pool = executor or ThreadPoolExecutor(max_workers=8, thread_name_prefix="rpc")
        self._transport = transport
        self._connection: Optional[ConnectionConfig] = None
        self._session_id = ""
        self._generation = 0
        self._active: set = set()
        self._finished.connect(self._on_finished)

    # --- Configuration ---

    def configure(self, connection: Optional[ConnectionConfig]):
        """Swap the whole transport snapshot at once."""
        self._connection = connection

    @property
    def connection(self) -> Optional[ConnectionConfig]:
        return self._connection

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def active_request_count(self) -> int:
        return len(self._active)

    # --- Requests ---

    def post(self, method: str, arguments: Optional[dict] = None,
             on_success: Optional[Callable[[Any], None]] = None,
             parse: Optional[Callable[[dict], Any]] = None,
             body: Optional[bytes] = None):
        if self._connection is None:
            logger.warning(f"No server configured, dropping {method} request")
            return
        if body is None:
            body = make_request_body(method, arguments)
        logger.debug(f"Request: {method}")
        self._submit(RpcRequest(method, body, on_success, parse, self._generation))

    def abandon_all(self):
        """Forget every in-flight request and the session id."""
        if self._active:
            logger.debug(f"Abandoning {len(self._active)} active requests")
        self._generation += 1
        self._active.clear()
        self._session_id = ""

    def shutdown(self):
        self.abandon_all()
        self._pool.shutdown(wait=False)

    def _submit(self, request: RpcRequest):
        # Tracked before submitting: an inline executor completes immediately
        self._active.add(request)
        future = self._pool.submit(self._transport, self._connection, request.body,
                                   self._session_id, request.parse)
        request.future = future
        future.add_done_callback(lambda f, r=request: self._finished.emit(r, f))

    @pyqtSlot(object, object)
    def _on_finished(self, request: RpcRequest, future: Future):
        if request.generation != self._generation or request not in self._active:
            logger.debug(f"Dropping reply of abandoned {request.method} request")
            return
        self._active.discard(request)

        try:
            outcome = future.result()
        except Exception:
            logger.exception(f"{request.method} request crashed")
            outcome = RequestOutcome(error=Error.CONNECTION_ERROR)

        if outcome.session_id is not None:
            if request.retried:
                logger.error(f"Server rejected renewed session id for {request.method}")
                self.failed.emit(Error.CONNECTION_ERROR)
                return
            logger.debug("Session id changed, retrying request")
            self._session_id = outcome.session_id
            self._submit(RpcRequest(request.method, request.body, request.on_success,
                                    request.parse, self._generation, retried=True))
            return

        if outcome.error is not None:
            self.failed.emit(outcome.error)
            return

        if request.on_success is not None:
            request.on_success(outcome.result)
