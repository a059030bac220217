"""Connection state machine.

The session's status/error bookkeeping is a pure reducer:

    transition(state, event) -> (next_state, effects)

RpcSession feeds it events (user calls, RPC replies, transport failures)
and performs the returned effects in order. Nothing in this module touches
Qt, the network or the torrent list, so every edge can be tested directly.
"""

from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import List, Tuple

# Transmission 2.40+
MINIMUM_RPC_VERSION = 14
SUPPORTED_RPC_VERSION = 14


class Status(Enum):
    DISCONNECTED = auto()
    CONNECTING = auto()
    CONNECTED = auto()

    @property
    def display_name(self) -> str:
        return _STATUS_DISPLAY.get(self, "Unknown")


class Error(Enum):
    NONE = auto()
    NO_SERVERS = auto()
    INVALID_SERVER_URL = auto()
    TIMED_OUT = auto()
    CONNECTION_ERROR = auto()
    PARSING_ERROR = auto()
    SERVER_IS_TOO_NEW = auto()
    SERVER_IS_TOO_OLD = auto()

    @property
    def display_name(self) -> str:
        return _ERROR_DISPLAY.get(self, "Unknown error")

    @property
    def allows_connect(self) -> bool:
        """Configuration errors need a corrected profile, not a retry."""
        return self not in (Error.NO_SERVERS, Error.INVALID_SERVER_URL)


_STATUS_DISPLAY = {
    Status.DISCONNECTED: "Disconnected",
    Status.CONNECTING: "Connecting...",
    Status.CONNECTED: "Connected",
}

_ERROR_DISPLAY = {
    Error.NONE: "Disconnected",
    Error.NO_SERVERS: "No servers",
    Error.INVALID_SERVER_URL: "Invalid server URL",
    Error.TIMED_OUT: "Timed out",
    Error.CONNECTION_ERROR: "Connection error",
    Error.PARSING_ERROR: "Parsing error",
    Error.SERVER_IS_TOO_NEW: "Server is too new",
    Error.SERVER_IS_TOO_OLD: "Server is too old",
}


def describe_status(status: Status, error: Error) -> str:
    """Single line for a status bar."""
    if status == Status.DISCONNECTED:
        return error.display_name
    return status.display_name


class Effect(Enum):
    BEGIN_CYCLE = auto()
    FETCH_SETTINGS = auto()
    FETCH_TORRENTS = auto()
    FETCH_STATS = auto()
    START_TIMER = auto()
    CANCEL_TIMER = auto()
    TEAR_DOWN = auto()
    NOTIFY_STATUS = auto()
    NOTIFY_ERROR = auto()
    NOTIFY_UPDATED = auto()


@dataclass(frozen=True)
class ConnectionState:
    status: Status = Status.DISCONNECTED
    error: Error = Error.NONE
    polling_enabled: bool = True
    rpc_version_checked: bool = False
    settings_updated: bool = False
    torrents_updated: bool = False
    stats_updated: bool = False
    cycle_complete: bool = False

    @property
    def connected(self) -> bool:
        return self.status == Status.CONNECTED


# --- Events ---

@dataclass(frozen=True)
class Connect:
    pass


@dataclass(frozen=True)
class Disconnect:
    pass


@dataclass(frozen=True)
class ConfigurationFailed:
    error: Error


@dataclass(frozen=True)
class RequestFailed:
    error: Error


@dataclass(frozen=True)
class SettingsReceived:
    minimum_rpc_version: int
    rpc_version: int


@dataclass(frozen=True)
class TorrentsReceived:
    pass


@dataclass(frozen=True)
class StatsReceived:
    pass


@dataclass(frozen=True)
class RefreshRequested:
    pass


@dataclass(frozen=True)
class PollingToggled:
    enabled: bool


Transition = Tuple[ConnectionState, List[Effect]]

_CYCLE_RESET = dict(settings_updated=False, torrents_updated=False,
                    stats_updated=False, cycle_complete=False)


def transition(state: ConnectionState, event) -> Transition:
    effects: List[Effect] = []

    if isinstance(event, Connect):
        if state.status != Status.DISCONNECTED or not state.error.allows_connect:
            return state, effects
        state = _set_error(state, Error.NONE, effects)
        state = _set_status(state, Status.CONNECTING, effects)
        state = replace(state, **_CYCLE_RESET)
        effects += [Effect.BEGIN_CYCLE, Effect.FETCH_SETTINGS]

    elif isinstance(event, Disconnect):
        state = _set_error(state, Error.NONE, effects)
        state = _set_status(state, Status.DISCONNECTED, effects)

    elif isinstance(event, ConfigurationFailed):
        state = _set_status(state, Status.DISCONNECTED, effects)
        state = _set_error(state, event.error, effects)

    elif isinstance(event, RequestFailed):
        # Late failures of abandoned requests are dropped upstream; anything
        # reaching us while disconnected is stale.
        if state.status == Status.DISCONNECTED:
            return state, effects
        state = _set_error(state, event.error, effects)
        state = _set_status(state, Status.DISCONNECTED, effects)

    elif isinstance(event, SettingsReceived):
        if state.status == Status.DISCONNECTED:
            return state, effects
        state = replace(state, settings_updated=True)
        if not state.rpc_version_checked:
            state = replace(state, rpc_version_checked=True)
            if event.minimum_rpc_version > SUPPORTED_RPC_VERSION:
                state = _set_error(state, Error.SERVER_IS_TOO_NEW, effects)
                state = _set_status(state, Status.DISCONNECTED, effects)
            elif event.rpc_version < MINIMUM_RPC_VERSION:
                state = _set_error(state, Error.SERVER_IS_TOO_OLD, effects)
                state = _set_status(state, Status.DISCONNECTED, effects)
            else:
                effects += [Effect.FETCH_TORRENTS, Effect.FETCH_STATS]
        else:
            state = _check_cycle(state, effects)

    elif isinstance(event, TorrentsReceived):
        if state.status == Status.DISCONNECTED:
            return state, effects
        state = _check_cycle(replace(state, torrents_updated=True), effects)

    elif isinstance(event, StatsReceived):
        if state.status == Status.DISCONNECTED:
            return state, effects
        state = _check_cycle(replace(state, stats_updated=True), effects)

    elif isinstance(event, RefreshRequested):
        if state.status != Status.CONNECTED:
            return state, effects
        state = replace(state, **_CYCLE_RESET)
        effects += [Effect.CANCEL_TIMER, Effect.BEGIN_CYCLE, Effect.FETCH_SETTINGS,
                    Effect.FETCH_TORRENTS, Effect.FETCH_STATS]

    elif isinstance(event, PollingToggled):
        if event.enabled == state.polling_enabled:
            return state, effects
        state = replace(state, polling_enabled=event.enabled)
        if not event.enabled:
            effects.append(Effect.CANCEL_TIMER)
        else:
            state, more = transition(state, RefreshRequested())
            effects += more

    else:
        raise TypeError(f"Unknown event: {event!r}")

    return state, effects


def _set_error(state: ConnectionState, error: Error, effects: List[Effect]) -> ConnectionState:
    if state.error == error:
        return state
    effects.append(Effect.NOTIFY_ERROR)
    return replace(state, error=error)


def _set_status(state: ConnectionState, status: Status, effects: List[Effect]) -> ConnectionState:
    if state.status == status:
        return state
    if status == Status.DISCONNECTED:
        state = replace(state, status=status, rpc_version_checked=False, **_CYCLE_RESET)
        effects.append(Effect.TEAR_DOWN)
    else:
        state = replace(state, status=status)
    effects.append(Effect.NOTIFY_STATUS)
    return state


def _check_cycle(state: ConnectionState, effects: List[Effect]) -> ConnectionState:
    if state.cycle_complete:
        return state
    if not (state.settings_updated and state.torrents_updated and state.stats_updated):
        return state
    state = replace(state, cycle_complete=True)
    if state.status == Status.CONNECTING:
        state = _set_status(state, Status.CONNECTED, effects)
    else:
        effects.append(Effect.NOTIFY_UPDATED)
    if state.polling_enabled:
        effects.append(Effect.START_TIMER)
    return state
