"""
Tests for the periodic refresh poller
"""
import asyncio

import pytest

from termail.core.sync.poller import RefreshPoller, RefreshRequested, _validate_interval
from termail.utils.config import SyncConfig
from termail.utils.errors import InvalidConfigError


class StubEngine:
    """Records the calls the poller makes."""

    def __init__(self):
        self.config = SyncConfig()
        self.refresh_requests = 0
        self.synced = 0
        self.retried = 0
        self.cleaned = 0

    async def handle_refresh_requested(self):
        self.refresh_requests += 1

    async def sync_all(self):
        self.synced += 1

    def retry_pending(self):
        self.retried += 1
        return 0

    async def cleanup(self):
        self.cleaned += 1
        return 0


class TestIntervals:
    """Tests for interval validation"""

    def test_valid_interval(self):
        """Test a valid interval"""
        _validate_interval("job", (15, "seconds"))

    @pytest.mark.parametrize("interval", [(0, "seconds"), (-1, "minutes"), (1.5, "hours")])
    def test_invalid_value(self, interval):
        """Test invalid interval values"""
        with pytest.raises(InvalidConfigError):
            _validate_interval("job", interval)

    def test_invalid_unit(self):
        """Test an unknown interval unit"""
        with pytest.raises(InvalidConfigError):
            _validate_interval("job", (1, "fortnights"))


class TestRefreshPoller:
    """Tests for scheduling and signal dispatch"""

    async def test_start_registers_jobs(self):
        """Test starting registers the scheduled jobs"""
        engine = StubEngine()
        poller = RefreshPoller(engine)

        poller.start()
        try:
            job_ids = {job.id for job in poller.scheduler.get_jobs()}
            assert job_ids == {"refresh_requested", "sync_all", "retry_pending", "cleanup"}
            assert poller.scheduler.running
        finally:
            poller.stop()

        await asyncio.sleep(0)
        assert not poller.scheduler.running

    async def test_signals_are_coalesced(self):
        """Test repeated signals collapse into one"""
        poller = RefreshPoller(StubEngine())

        assert poller.emit_refresh_requested() is True
        assert poller.emit_refresh_requested() is False
        assert poller.signals.qsize() == 1

    async def test_dispatch_calls_engine(self):
        """Test dispatching runs the engine refresh"""
        engine = StubEngine()
        poller = RefreshPoller(engine)
        poller.emit_refresh_requested()

        signal = await poller.dispatch_once()

        assert isinstance(signal, RefreshRequested)
        assert engine.refresh_requests == 1
        assert poller.emit_refresh_requested() is True

    async def test_dispatcher_forwards_signals(self):
        """Test the dispatcher task handles signals"""
        engine = StubEngine()
        poller = RefreshPoller(engine, config=SyncConfig(poll_interval_seconds=3600))
        poller.start()
        try:
            poller.emit_refresh_requested()
            await asyncio.wait_for(poller.signals.join(), timeout=1.0)
        finally:
            poller.stop()

        assert engine.refresh_requests == 1

    async def test_invalid_config_prevents_start(self):
        """Test an invalid interval stops the poller starting"""
        poller = RefreshPoller(StubEngine(), config=SyncConfig(poll_interval_seconds=0))

        with pytest.raises(InvalidConfigError):
            poller.start()

        assert not poller.scheduler.running
