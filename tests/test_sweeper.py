"""Tests for the background rule sweeper."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from drive.config import Config
from drive.domain import SweepResult
from drive.sweeper import RuleSweeper


@pytest.fixture
def engine():
    mock = AsyncMock()
    mock.sweep_once.return_value = SweepResult(evaluated=["r1"], fired=["r1"])
    return mock


class TestRuleSweeper:
    """Test start/stop and the sweep loop."""

    @pytest.mark.asyncio
    async def test_sweeps_on_interval(self, engine):
        sweeper = RuleSweeper(engine, interval_seconds=0.01)
        await sweeper.start()
        await asyncio.sleep(0.1)
        await sweeper.stop()

        assert engine.sweep_once.await_count >= 2
        assert sweeper.sweep_count == engine.sweep_once.await_count
        assert sweeper.last_result.fired == ["r1"]
        assert not sweeper.running

    @pytest.mark.asyncio
    async def test_stop_before_first_sweep(self, engine):
        sweeper = RuleSweeper(engine, interval_seconds=60)
        await sweeper.start()
        await sweeper.stop()
        engine.sweep_once.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, engine):
        sweeper = RuleSweeper(engine, interval_seconds=60)
        await sweeper.start()
        task = sweeper._task
        await sweeper.start()
        assert sweeper._task is task
        await sweeper.stop()

    @pytest.mark.asyncio
    async def test_errors_do_not_stop_loop(self, engine):
        engine.sweep_once.side_effect = [RuntimeError("boom"), SweepResult()]
        sweeper = RuleSweeper(engine, interval_seconds=0.01)
        await sweeper.start()
        await asyncio.sleep(0.1)
        await sweeper.stop()

        assert engine.sweep_once.await_count >= 2
        assert sweeper.sweep_count >= 1

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, engine):
        await RuleSweeper(engine).stop()

    def test_invalid_interval(self, engine):
        with pytest.raises(ValueError):
            RuleSweeper(engine, interval_seconds=0)

    def test_interval_defaults_to_config(self, engine):
        assert RuleSweeper(engine, config=Config(sweep_interval_seconds=42)).interval_seconds == 42
        assert RuleSweeper(engine).interval_seconds == Config().get_sweep_interval()

    def test_invalid_configured_interval(self, engine):
        with pytest.raises(ValueError):
            RuleSweeper(engine, config=Config(sweep_interval_seconds=0))

    @pytest.mark.asyncio
    async def test_drives_catalog_rules(self, catalog):
        entry = await catalog.upload(b"x", "x.txt", "text/plain", retention_days=5)
        await catalog.create_rule(
            entry.id, "auto-renewal",
            [{"kind": "time-based", "parameters": {"targetTime": "2000-01-01T00:00:00Z"}}],
            {"renewalDays": 1},
        )
        sweeper = RuleSweeper(catalog, interval_seconds=0.01)
        await sweeper.start()
        await asyncio.sleep(0.05)
        await sweeper.stop()

        assert catalog.get(entry.id).retention_days >= 6
