"""Tests for the server settings mirror and session statistics."""

import unittest

from fluxremote.core.server_settings import (
    ServerSettings, ServerStats, parse_server_settings, parse_server_stats,
)


class TestServerSettings(unittest.TestCase):
    def setUp(self):
        self.sent = []
        self.accepting = True
        self.settings = ServerSettings(self._send)
        self.settings.update({
            "rpc-version": 17,
            "rpc-version-minimum": 14,
            "version": "4.0.5",
            "download-dir": "/downloads",
            "speed-limit-down-enabled": True,
            "speed-limit-down": 500,
            "seedRatioLimited": False,
            "seedRatioLimit": 2,
            "idle-seeding-limit-enabled": True,
            "idle-seeding-limit": 30,
            "encryption": "required",
        })

    def _send(self, key, value):
        if not self.accepting:
            return False
        self.sent.append((key, value))
        return True

    def test_typed_accessors(self):
        self.assertEqual(self.settings.rpc_version, 17)
        self.assertEqual(self.settings.minimum_rpc_version, 14)
        self.assertEqual(self.settings.version, "4.0.5")
        self.assertTrue(self.settings.download_speed_limited)
        self.assertEqual(self.settings.download_speed_limit, 500)
        self.assertEqual(self.settings.ratio_limit, 2.0)
        self.assertIsInstance(self.settings.ratio_limit, float)
        self.assertTrue(self.settings.idle_seeding_limited)
        self.assertEqual(self.settings.encryption, "required")

    def test_defaults_for_missing_keys(self):
        self.assertFalse(self.settings.alternative_speed_limits_enabled)
        self.assertEqual(self.settings.peer_port, 0)
        self.assertEqual(ServerSettings().rpc_version, 0)

    def test_setter_writes_through(self):
        self.settings.ratio_limited = True
        self.settings.ratio_limit = 1.5
        self.assertEqual(self.sent, [("seedRatioLimited", True), ("seedRatioLimit", 1.5)])
        self.assertTrue(self.settings.ratio_limited)

    def test_rejected_write_keeps_value(self):
        self.accepting = False
        self.settings.download_directory = "/elsewhere"
        self.assertEqual(self.settings.download_directory, "/downloads")
        self.assertEqual(self.sent, [])

    def test_setter_skips_unchanged_value(self):
        self.settings.idle_seeding_limit = 30
        self.assertEqual(self.sent, [])

    def test_update_replaces_everything(self):
        self.settings.update({"rpc-version": 15, "rpc-version-minimum": 1})
        self.assertEqual(self.settings.rpc_version, 15)
        self.assertEqual(self.settings.download_directory, "")
        self.assertEqual(self.sent, [])

    def test_clear(self):
        self.settings.clear()
        self.assertEqual(self.settings.get_all(), {})

    def test_get_all_is_a_copy(self):
        values = self.settings.get_all()
        values["download-dir"] = "/elsewhere"
        self.assertEqual(self.settings.download_directory, "/downloads")


class TestParsers(unittest.TestCase):
    def test_parse_settings(self):
        reply = {"result": "success", "arguments": {"rpc-version": 16, "rpc-version-minimum": 14}}
        self.assertEqual(parse_server_settings(reply)["rpc-version"], 16)

    def test_parse_settings_requires_versions(self):
        with self.assertRaises(KeyError):
            parse_server_settings({"result": "success", "arguments": {"rpc-version": 16}})
        with self.assertRaises(TypeError):
            parse_server_settings({"result": "success", "arguments": {
                "rpc-version": "16", "rpc-version-minimum": 14}})

    def test_parse_stats(self):
        stats = parse_server_stats({"result": "success", "arguments": {
            "downloadSpeed": 100,
            "uploadSpeed": 20,
            "torrentCount": 3,
            "activeTorrentCount": 2,
            "pausedTorrentCount": 1,
            "current-stats": {"downloadedBytes": 400, "uploadedBytes": 100,
                              "filesAdded": 2, "sessionCount": 1, "secondsActive": 60},
        }})
        self.assertIsInstance(stats, ServerStats)
        self.assertEqual(stats.download_speed, 100)
        self.assertEqual(stats.paused_torrent_count, 1)
        self.assertEqual(stats.current.ratio, 0.25)
        self.assertEqual(stats.current.seconds_active, 60)
        self.assertEqual(stats.total.ratio, -1.0)

    def test_parse_stats_requires_arguments(self):
        with self.assertRaises(KeyError):
            parse_server_stats({"result": "success"})


if __name__ == "__main__":
    unittest.main()
