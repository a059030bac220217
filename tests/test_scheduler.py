"""Tests for the poll scheduler."""

import unittest

from PyQt6.QtCore import QEventLoop, QTimer

from fluxremote.core.scheduler import PollScheduler

from rpc_fakes import qt_app


class TestPollScheduler(unittest.TestCase):
    def setUp(self):
        qt_app()
        self.scheduler = PollScheduler(interval=5, background_interval=60)

    def tearDown(self):
        self.scheduler.cancel()

    def test_not_armed_initially(self):
        self.assertFalse(self.scheduler.is_armed)

    def test_arm_and_cancel(self):
        self.scheduler.arm()
        self.assertTrue(self.scheduler.is_armed)
        self.scheduler.cancel()
        self.assertFalse(self.scheduler.is_armed)

    def test_intervals(self):
        self.assertEqual(self.scheduler.current_interval, 5)
        self.scheduler.background = True
        self.assertEqual(self.scheduler.current_interval, 60)
        self.scheduler.set_intervals(2, 30)
        self.assertEqual(self.scheduler.current_interval, 30)

    def test_background_toggle_rearms_pending_timer(self):
        self.scheduler.arm()
        self.scheduler.background = True
        self.assertTrue(self.scheduler.is_armed)
        self.assertEqual(self.scheduler._timer.interval(), 60000)

    def test_background_toggle_does_not_arm_idle_timer(self):
        self.scheduler.background = True
        self.assertFalse(self.scheduler.is_armed)

    def test_single_pending_poll(self):
        self.scheduler.arm()
        self.scheduler.arm()
        self.assertTrue(self.scheduler.is_armed)
        self.assertEqual(self.scheduler._timer.interval(), 5000)

    def test_fires_once(self):
        fired = []
        self.scheduler.set_intervals(0.01, 60)
        self.scheduler.fired.connect(lambda: fired.append(True))

        loop = QEventLoop()
        self.scheduler.fired.connect(loop.quit)
        QTimer.singleShot(2000, loop.quit)
        self.scheduler.arm()
        loop.exec()

        self.assertEqual(fired, [True])
        self.assertFalse(self.scheduler.is_armed)


if __name__ == "__main__":
    unittest.main()
