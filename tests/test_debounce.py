import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from callscript.debounce import DebounceTimer

from conftest import never_sleep


class TestDebounceTimer:
    @pytest.mark.asyncio
    async def test_fires_once_after_quiet_period(self):
        callback = MagicMock()
        timer = DebounceTimer(0.01, callback)
        for _ in range(5):
            timer.reset()
        await asyncio.sleep(0.05)
        callback.assert_called_once()
        assert not timer.pending

    @pytest.mark.asyncio
    async def test_cancel(self):
        callback = MagicMock()
        timer = DebounceTimer(0.01, callback)
        timer.reset()
        timer.cancel()
        await asyncio.sleep(0.03)
        callback.assert_not_called()

    @pytest.mark.asyncio
    async def test_flush(self):
        callback = AsyncMock()
        timer = DebounceTimer(60, callback, sleep=never_sleep)
        assert not await timer.flush()
        timer.reset()
        assert timer.pending
        assert await timer.flush()
        callback.assert_awaited_once()
        assert not timer.pending

    @pytest.mark.asyncio
    async def test_callback_error_is_logged_not_raised(self, caplog):
        timer = DebounceTimer(60, MagicMock(side_effect=ValueError("bad")), sleep=never_sleep, label="test timer")
        timer.reset()
        assert await timer.flush()
        assert "test timer callback failed" in caplog.text

    def test_reset_needs_running_loop(self):
        timer = DebounceTimer(0.01, MagicMock())
        with pytest.raises(RuntimeError):
            timer.reset()
