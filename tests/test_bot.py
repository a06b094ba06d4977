from unittest.mock import AsyncMock, MagicMock

import pytest

from bot import shutdown


def component(calls, name):
    part = MagicMock()
    part.stop = AsyncMock(side_effect=lambda: calls.append(name))
    return part


class TestShutdown:
    @pytest.mark.asyncio
    async def test_watcher_stops_before_bot(self):
        calls = []

        await shutdown(
            bot=component(calls, "bot"),
            watcher=component(calls, "watcher"),
            resource_monitor=component(calls, "monitor")
        )

        assert calls == ["watcher", "bot", "monitor"]

    @pytest.mark.asyncio
    async def test_partially_started(self):
        calls = []

        await shutdown(watcher=component(calls, "watcher"))

        assert calls == ["watcher"]
