"""
Tests for core/engine.py — verifies the EnforcementEngine works
independently of any UI or foreground detection mechanism.
"""

import sys
import tempfile
import threading
import unittest
from datetime import date
from pathlib import Path
from unittest.mock import MagicMock, patch

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

import config
from core.engine import EnforcementEngine
from core.enforcer import Decision
from screen.block_dispatcher import BlockDispatcher
from screen.blocklist import BlockedItem, BlockType
from storage.config_store import ConfigStore
from tracking.session import SessionClosed, SessionOpened

CHROME = "com.android.chrome"
TODAY = date(2024, 6, 2)
YESTERDAY = date(2024, 6, 1)

APP_A = BlockedItem("appA", BlockType.APP, "App A", "G")
APP_B = BlockedItem("appB", BlockType.APP, "App B", "G")
SITE = BlockedItem("site.com", BlockType.WEBSITE, "Site", "G")
OTHER = BlockedItem("appH", BlockType.APP, "Other group app", "H")


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, now: int = 0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, millis: int) -> None:
        self.now += millis


class EngineTestCase(unittest.TestCase):
    """Base class: temp store, fake clock, mocked dispatcher."""

    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.path = Path(self._tmpdir.name) / "store.json"
        self.store = ConfigStore(self.path)
        self.store.save_blocked_items([APP_A, SITE, APP_B, OTHER])
        self.store.save_last_reset_date(TODAY)
        self.clock = FakeClock()
        self.today = TODAY
        self.dispatcher = MagicMock(spec=BlockDispatcher)

    def tearDown(self):
        self._tmpdir.cleanup()

    def make_engine(self, limit_g: int = 60, usage_g: int = 0) -> EnforcementEngine:
        self.store.save_group_limit("G", limit_g)
        self.store.save_group_usage("G", usage_g)
        return EnforcementEngine(
            store=self.store,
            dispatcher=self.dispatcher,
            clock=self.clock,
            today=lambda: self.today,
        )


class TestEngineInit(EngineTestCase):
    """Engine initialisation and default state."""

    def test_init_defaults(self):
        engine = self.make_engine()
        self.assertEqual(engine.current_status, config.STATUS_IDLE)
        self.assertFalse(engine.is_running)
        self.assertIsNone(engine.tracker.active_item)
        self.assertIsNone(engine.on_status_change)
        self.assertIsNone(engine.on_block)
        self.assertEqual(set(engine.blocklist.groups), {"G", "H"})

    def test_loads_defaults_into_empty_store(self):
        """An empty saved list falls back to built-in items and saves them."""
        self.store.save_blocked_items([])
        engine = self.make_engine()
        self.assertGreater(len(engine.blocklist.items), 0)
        self.assertEqual(ConfigStore(self.path).load_blocked_items(), engine.blocklist.items)

    def test_get_status_idle(self):
        engine = self.make_engine(limit_g=10, usage_g=60000)
        status = engine.get_status()
        self.assertEqual(status["status"], config.STATUS_IDLE)
        self.assertIsNone(status["active_item"])
        self.assertEqual(status["groups"]["G"]["used_ms"], 60000)
        self.assertEqual(status["groups"]["G"]["remaining_ms"], 9 * 60000)


class TestReactiveEnforcement(EngineTestCase):
    """Blocks decided when a session closes."""

    def test_scenario_single_block_after_70_seconds(self):
        """appA for 70s then neutral with a 1 minute limit blocks exactly once."""
        engine = self.make_engine(limit_g=1)

        events = engine.handle_signal("appA")
        self.assertEqual(events, [SessionOpened(APP_A)])
        self.dispatcher.request_block.assert_not_called()

        self.clock.advance(70000)
        events = engine.handle_signal("com.android.launcher")
        self.assertEqual(events, [SessionClosed(APP_A, 70000)])

        self.assertEqual(engine.ledger.current_group_usage("G"), 70000)
        self.dispatcher.request_block.assert_called_once_with(APP_A)

        # The redirect lands on a neutral screen: nothing else fires
        engine.handle_signal("com.android.launcher")
        engine.handle_signal(None)
        self.assertEqual(self.dispatcher.request_block.call_count, 1)
        self.assertEqual(engine.current_status, config.STATUS_BLOCKED)

    def test_under_limit_no_block(self):
        engine = self.make_engine(limit_g=60)
        engine.handle_signal(CHROME, "https://site.com/a")
        self.clock.advance(30000)
        engine.handle_signal(None)
        self.dispatcher.request_block.assert_not_called()
        self.assertEqual(engine.ledger.current_item_usage("site.com"), 30000)

    def test_duplicate_signals_are_no_ops(self):
        engine = self.make_engine()
        engine.handle_signal("appA")
        self.clock.advance(1000)
        engine.handle_signal("appA")
        engine.handle_signal("appA")
        self.assertEqual(engine.tracker.in_progress_ms(), 1000)
        self.assertEqual(engine.ledger.current_group_usage("G"), 0)

    def test_switch_commits_first_item_before_opening_second(self):
        engine = self.make_engine()
        engine.handle_signal("appA")
        self.clock.advance(25000)

        events = engine.handle_signal("appB")

        self.assertEqual(events, [SessionClosed(APP_A, 25000), SessionOpened(APP_B)])
        self.assertEqual(engine.ledger.current_item_usage("appA"), 25000)
        self.assertEqual(engine.ledger.current_item_usage("appB"), 0)
        self.assertEqual(engine.tracker.active_item, APP_B)
        self.assertEqual(engine.tracker.in_progress_ms(), 0)

    def test_switch_within_exhausted_group_blocks_once(self):
        """Closing X exhausts the group; Y in the same group is not tracked and not blocked again."""
        engine = self.make_engine(limit_g=1)
        engine.handle_signal("appA")
        self.clock.advance(61000)

        engine.handle_signal("appB")

        self.dispatcher.request_block.assert_called_once_with(APP_A)
        self.assertFalse(engine.tracker.is_tracking)
        self.assertEqual(engine.ledger.current_group_usage("G"), 61000)

    def test_open_in_exhausted_group_blocks_immediately(self):
        engine = self.make_engine(limit_g=1, usage_g=60000)
        engine.handle_signal(CHROME, "site.com")
        self.dispatcher.request_block.assert_called_once_with(SITE)
        self.assertFalse(engine.tracker.is_tracking)
        self.assertEqual(engine.ledger.current_group_usage("G"), 60000)

    def test_other_group_unaffected(self):
        engine = self.make_engine(limit_g=1, usage_g=60000)
        engine.handle_signal("appH")
        self.dispatcher.request_block.assert_not_called()
        self.assertEqual(engine.tracker.active_item, OTHER)


class TestZeroLimit(EngineTestCase):
    """A zero allowance means always blocked once touched."""

    def test_fresh_group_does_not_block_on_open(self):
        engine = self.make_engine(limit_g=0, usage_g=0)
        engine.handle_signal("appA")
        self.dispatcher.request_block.assert_not_called()
        self.assertEqual(engine.run_periodic_check(), Decision.NO_BLOCK)

    def test_blocks_once_usage_accrues(self):
        engine = self.make_engine(limit_g=0, usage_g=0)
        engine.handle_signal("appA")
        self.clock.advance(1)
        self.assertEqual(engine.run_periodic_check(), Decision.BLOCK)
        self.dispatcher.request_block.assert_called_once_with(APP_A)
        self.assertEqual(engine.ledger.current_group_usage("G"), 1)

    def test_blocks_on_close_with_usage(self):
        engine = self.make_engine(limit_g=0, usage_g=0)
        engine.handle_signal("appA")
        self.clock.advance(2000)
        engine.handle_signal(None)
        self.dispatcher.request_block.assert_called_once_with(APP_A)

    def test_prior_usage_blocks_on_open(self):
        engine = self.make_engine(limit_g=0, usage_g=500)
        engine.handle_signal("appA")
        self.dispatcher.request_block.assert_called_once_with(APP_A)


class TestPeriodicEnforcement(EngineTestCase):
    """Blocks decided mid-session by the periodic check."""

    def test_blocks_mid_session(self):
        """4:50 committed + 15s open session >= 5 minute limit."""
        engine = self.make_engine(limit_g=5, usage_g=4 * 60000 + 50000)
        engine.handle_signal("appA")

        self.clock.advance(5000)
        self.assertEqual(engine.run_periodic_check(), Decision.NO_BLOCK)
        self.assertTrue(engine.tracker.is_tracking)

        self.clock.advance(10000)
        self.assertEqual(engine.run_periodic_check(), Decision.BLOCK)

        self.dispatcher.request_block.assert_called_once_with(APP_A)
        self.assertFalse(engine.tracker.is_tracking)
        self.assertEqual(engine.ledger.current_group_usage("G"), 5 * 60000 + 5000)

    def test_block_commits_partial_duration_once(self):
        """After a periodic block, the next signal doesn't re-count the interval."""
        engine = self.make_engine(limit_g=1)
        engine.handle_signal("appA")
        self.clock.advance(60000)
        engine.run_periodic_check()
        self.clock.advance(5000)
        engine.handle_signal("com.android.launcher")
        self.assertEqual(engine.ledger.current_group_usage("G"), 60000)
        self.assertEqual(self.dispatcher.request_block.call_count, 1)

    def test_idle_check_is_no_block(self):
        engine = self.make_engine(limit_g=0, usage_g=1000)
        self.assertEqual(engine.run_periodic_check(), Decision.NO_BLOCK)
        self.dispatcher.request_block.assert_not_called()


class TestDailyReset(EngineTestCase):
    """Daily rollover at start and at day boundaries."""

    def test_reset_at_start(self):
        self.store.save_usage({"appA": 9000}, {"G": 9000})
        self.store.save_last_reset_date(YESTERDAY)
        engine = self.make_engine(usage_g=9000)

        self.assertEqual(engine.ledger.current_group_usage("G"), 0)
        self.assertEqual(engine.ledger.current_item_usage("appA"), 0)
        reloaded = ConfigStore(self.path)
        self.assertEqual(reloaded.load_last_reset_date(), TODAY)
        self.assertEqual(reloaded.load_group_usage("G"), 0)
        self.assertEqual(reloaded.load_item_usage(), {})

    def test_same_day_keeps_usage(self):
        engine = self.make_engine(usage_g=9000)
        self.assertEqual(engine.ledger.current_group_usage("G"), 9000)

    def test_day_boundary_during_session(self):
        """Time before midnight isn't charged to the new day."""
        engine = self.make_engine(limit_g=60, usage_g=30000)
        engine.handle_signal("appA")
        self.clock.advance(20000)

        self.today = date(2024, 6, 3)
        engine.run_periodic_check()
        self.assertEqual(engine.ledger.current_group_usage("G"), 0)
        self.assertTrue(engine.tracker.is_tracking)

        self.clock.advance(4000)
        engine.handle_signal(None)
        self.assertEqual(engine.ledger.current_group_usage("G"), 4000)
        self.assertEqual(ConfigStore(self.path).load_last_reset_date(), date(2024, 6, 3))

    def test_failed_reset_write_still_enforces(self):
        """A reset that can't be saved happens once; usage then accrues and blocks."""
        self.store.save_last_reset_date(YESTERDAY)
        with patch.object(self.store, "save_daily_reset", return_value=False) as reset_write:
            engine = self.make_engine(limit_g=1, usage_g=30000)
            self.assertEqual(engine.ledger.current_group_usage("G"), 0)

            engine.handle_signal("appA")
            self.clock.advance(50000)
            self.assertEqual(engine.run_periodic_check(), Decision.NO_BLOCK)
            self.clock.advance(20000)
            self.assertEqual(engine.run_periodic_check(), Decision.BLOCK)
            engine.handle_signal("com.android.launcher")

        self.assertEqual(reset_write.call_count, 1)
        self.dispatcher.request_block.assert_called_once_with(APP_A)
        self.assertEqual(engine.ledger.current_group_usage("G"), 70000)
        # The commit carried the new date, so a restart doesn't reset again
        reloaded = ConfigStore(self.path)
        self.assertEqual(reloaded.load_last_reset_date(), TODAY)
        self.assertEqual(reloaded.load_group_usage("G"), 70000)

    def test_signals_do_not_read_reset_date(self):
        engine = self.make_engine()
        with patch.object(self.store, "load_last_reset_date") as load_date:
            engine.handle_signal("appA")
            self.clock.advance(1000)
            engine.run_periodic_check()
            engine.handle_signal(None)
        load_date.assert_not_called()


class TestShutdown(EngineTestCase):
    """Teardown commits the open session and flushes the ledgers."""

    def test_shutdown_commits_open_session(self):
        engine = self.make_engine(limit_g=1)
        engine.handle_signal("appA")
        self.clock.advance(90000)

        engine.shutdown()

        self.assertTrue(engine.is_shut_down)
        self.assertEqual(engine.current_status, config.STATUS_STOPPED)
        self.dispatcher.request_block.assert_not_called()
        reloaded = ConfigStore(self.path)
        self.assertEqual(reloaded.load_group_usage("G"), 90000)
        self.assertEqual(reloaded.load_item_usage(), {"appA": 90000})

    def test_shutdown_is_idempotent_and_final(self):
        engine = self.make_engine()
        engine.shutdown()
        engine.shutdown()
        self.assertEqual(engine.handle_signal("appA"), [])
        self.assertFalse(engine.tracker.is_tracking)


class TestCallbacks(EngineTestCase):
    """Callback behaviour."""

    def test_status_changes_reported(self):
        engine = self.make_engine(limit_g=1)
        statuses = []
        engine.on_status_change = lambda s, t: statuses.append(s)
        blocked = []
        engine.on_block = blocked.append

        engine.handle_signal("appA")
        self.clock.advance(61000)
        engine.handle_signal(None)

        self.assertEqual(statuses, [config.STATUS_TRACKING, config.STATUS_BLOCKED])
        self.assertEqual(blocked, [APP_A])

    def test_callback_errors_do_not_propagate(self):
        engine = self.make_engine(limit_g=1)
        engine.on_status_change = MagicMock(side_effect=RuntimeError("ui gone"))
        engine.on_block = MagicMock(side_effect=RuntimeError("ui gone"))

        engine.handle_signal("appA")
        self.clock.advance(61000)
        engine.handle_signal(None)

        self.dispatcher.request_block.assert_called_once_with(APP_A)

    def test_reload_blocklist_picks_up_new_limit(self):
        engine = self.make_engine(limit_g=60)
        engine.handle_signal("appA")
        self.clock.advance(90000)
        self.store.save_group_limit("G", 1)

        engine.reload_blocklist()
        self.assertEqual(engine.run_periodic_check(), Decision.BLOCK)


class TestThreadedEngine(EngineTestCase):
    """start()/submit_signal()/stop() on the worker thread."""

    def test_signals_processed_in_order_then_flushed(self):
        engine = self.make_engine(limit_g=0, usage_g=1000)
        self.assertTrue(engine.start())
        self.assertFalse(engine.start())

        engine.submit_signal("appA")
        engine.stop()

        self.dispatcher.request_block.assert_called_once_with(APP_A)
        self.assertTrue(engine.is_shut_down)
        self.assertFalse(engine.is_running)

    def test_periodic_check_fires_without_new_signal(self):
        blocked = threading.Event()
        dispatcher = BlockDispatcher(
            show_block_screen=lambda label, identifier: blocked.set(),
            redirect=lambda: True,
        )
        self.store.save_group_limit("G", 0)
        self.store.save_group_usage("G", 0)
        engine = EnforcementEngine(
            store=self.store,
            dispatcher=dispatcher,
            today=lambda: TODAY,
            check_interval_seconds=0.05,
        )
        engine.start()
        try:
            engine.submit_signal("appA")
            self.assertTrue(blocked.wait(timeout=5.0))
        finally:
            engine.stop()
        self.assertEqual(dispatcher.blocks_requested, 1)
        self.assertGreater(ConfigStore(self.path).load_group_usage("G"), 0)

    def test_stop_timeout_keeps_worker_ownership(self):
        """A worker that outlives stop() is never raced by a caller-side shutdown."""
        engine = self.make_engine()
        stuck = MagicMock()
        stuck.is_alive.return_value = True
        engine._worker = stuck
        engine.is_running = True

        engine.stop(timeout=0.01)
        self.assertTrue(engine.is_running)
        self.assertIs(engine._worker, stuck)

        engine.stop(timeout=0.01)
        self.assertFalse(engine.is_shut_down)
        self.assertEqual(stuck.join.call_count, 2)

        stuck.is_alive.return_value = False
        engine.stop(timeout=0.01)
        self.assertFalse(engine.is_running)
        self.assertIsNone(engine._worker)


if __name__ == "__main__":
    unittest.main()
