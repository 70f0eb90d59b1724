"""cleanup handlers and interrupt handling"""

import signal
import unittest

import pytest

from veriman.utils.shutdown import ShutdownManager


class TestShutdownManager(unittest.TestCase):

    def setUp(self):
        self.manager = ShutdownManager(install_signal_handlers=False)

    def test_cleanup_runs_in_reverse_order(self):
        calls = []
        self.manager.register_cleanup(lambda: calls.append("first"), name="first")
        self.manager.register_cleanup(lambda: calls.append("second"), name="second")
        self.manager.run_cleanup()
        self.assertEqual(calls, ["second", "first"])

    def test_cleanup_runs_once(self):
        calls = []
        self.manager.register_cleanup(lambda: calls.append(1))
        self.manager.run_cleanup()
        self.manager.run_cleanup()
        self.assertEqual(calls, [1])

    def test_unregister(self):
        calls = []

        def handler():
            calls.append("removed")

        self.manager.register_cleanup(handler)
        self.manager.unregister_cleanup(handler)
        self.manager.run_cleanup()
        self.assertEqual(calls, [])

    def test_failing_handler_does_not_stop_others(self):
        calls = []

        def broken():
            raise RuntimeError("disk gone")

        self.manager.register_cleanup(lambda: calls.append("survivor"))
        self.manager.register_cleanup(broken, name="broken")
        with self.assertLogs("veriman.utils.shutdown", level="WARNING") as logs:
            self.manager.run_cleanup()
        self.assertEqual(calls, ["survivor"])
        self.assertTrue(any("broken" in line for line in logs.output))

    def test_request_shutdown(self):
        self.assertFalse(self.manager.is_shutdown_requested())
        self.manager.request_shutdown("test")
        self.assertTrue(self.manager.is_shutdown_requested())
        self.assertEqual(self.manager.shutdown_reason, "test")


def test_signal_exits_with_128_plus_signum():
    manager = ShutdownManager(install_signal_handlers=False)
    with pytest.raises(SystemExit) as exc:
        manager._signal_handler(signal.SIGINT, None)
    assert exc.value.code == 128 + signal.SIGINT
    assert manager.shutdown_reason == "SIGINT"
    assert manager.is_shutdown_requested()
