"""Tests for the background session sweeper."""

import asyncio

import pytest

from main import app
from services.session_sweeper import SessionSweeper


async def _seed_sessions(session_store, make_user, clock, expired=2, live=1):
    user = await make_user()
    for _ in range(expired):
        await session_store.create(user.id, "old")
    clock.advance(hours=24)
    live_tokens = [(await session_store.create(user.id, "new")).token for _ in range(live)]
    return live_tokens


class TestSessionSweeper:

    @pytest.mark.asyncio
    async def test_run_once_returns_count(self, session_store, make_user, clock):
        live = await _seed_sessions(session_store, make_user, clock, expired=3, live=1)
        sweeper = SessionSweeper(session_store, interval_seconds=3600)

        assert await sweeper.run_once() == 3
        assert await sweeper.run_once() == 0
        assert await session_store.lookup(live[0]) is not None

    @pytest.mark.asyncio
    async def test_run_once_failure_returns_zero(self, broken_store):
        sweeper = SessionSweeper(broken_store, interval_seconds=3600)
        assert await sweeper.run_once() == 0

    @pytest.mark.asyncio
    async def test_start_sweeps_immediately_then_stops(self, session_store, make_user, clock):
        await _seed_sessions(session_store, make_user, clock, expired=2, live=0)
        sweeper = SessionSweeper(session_store, interval_seconds=3600)

        sweeper.start()
        assert sweeper.running
        await asyncio.sleep(0.1)

        assert await session_store.sweep() == 0

        await sweeper.stop()
        assert not sweeper.running

    @pytest.mark.asyncio
    async def test_keeps_running_after_failed_sweep(self, broken_store, broken_factory):
        sweeper = SessionSweeper(broken_store, interval_seconds=0.01)

        sweeper.start()
        await asyncio.sleep(0.1)

        assert sweeper.running
        assert broken_factory.calls >= 2
        await sweeper.stop()

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_task(self, session_store):
        sweeper = SessionSweeper(session_store, interval_seconds=3600)

        sweeper.start()
        first_task = sweeper._task
        sweeper.start()

        assert sweeper._task is first_task
        await sweeper.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, session_store):
        await SessionSweeper(session_store).stop()

    def test_default_interval_is_hourly(self, session_store):
        assert SessionSweeper(session_store).interval_seconds == 3600

    def test_app_exposes_sweeper(self):
        assert isinstance(app.state.session_sweeper, SessionSweeper)
        assert not app.state.session_sweeper.running
