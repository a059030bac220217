"""Poll scheduler: one single-shot timer between refresh cycles."""

import logging

from PyQt6.QtCore import QObject, QTimer, pyqtSignal

logger = logging.getLogger(__name__)


class PollScheduler(QObject):
    """Arms the next poll after a cycle settles.

    There is never more than one pending poll: arm() restarts the timer,
    cancel() stops it. The interval depends on whether the UI is in the
    foreground.
    """

    fired = pyqtSignal()

    def __init__(self, interval: float = 5, background_interval: float = 60, parent=None):
        super().__init__(parent)
        self._interval = interval
        self._background_interval = background_interval
        self._background = False

        self._timer = QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.timeout.connect(self.fired)

    def set_intervals(self, interval: float, background_interval: float):
        """Intervals in seconds. Takes effect the next time the timer is armed."""
        self._interval = interval
        self._background_interval = background_interval

    @property
    def background(self) -> bool:
        return self._background

    @background.setter
    def background(self, value: bool):
        if value == self._background:
            return
        self._background = value
        # Measure the new interval from now, not from the last poll
        if self.is_armed:
            self.arm()

    @property
    def current_interval(self) -> float:
        return self._background_interval if self._background else self._interval

    @property
    def is_armed(self) -> bool:
        return self._timer.isActive()

    def arm(self):
        msec = max(0, int(self.current_interval * 1000))
        logger.debug(f"Next update in {msec} ms")
        self._timer.start(msec)

    def cancel(self):
        self._timer.stop()
