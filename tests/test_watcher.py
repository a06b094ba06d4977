import asyncio
from collections import deque
from unittest.mock import AsyncMock, MagicMock

import pytest

from platforms import PlatformClassifier
from watcher import WalletSubscription, WalletWatcher

from tests.factories import (
    SIGNATURE,
    TRANSFER_LOGS,
    WALLET,
    log_event,
    transaction,
    usdc_to_toka_balances,
)

OTHER_WALLET = "DRpbCBMxVnDK7maPM5tGv6MvB3v1sRMC86PZ8okm21hy"


async def settle(watcher):
    await asyncio.sleep(0.05)
    await watcher.wait_idle()


@pytest.fixture
def fetched():
    pre, post = usdc_to_toka_balances()
    return transaction(pre, post)


@pytest.fixture
def fetch(fetched):
    return AsyncMock(return_value=fetched)


@pytest.fixture
def on_trade():
    return AsyncMock()


@pytest.fixture
def watcher(log_source, fetch, normalizer, on_trade):
    return WalletWatcher(
        subscribe=log_source.subscribe,
        fetch_transaction=fetch,
        normalizer=normalizer,
        on_trade=on_trade,
        resubscribe_delay=0.01
    )


class TestTracking:
    @pytest.mark.asyncio
    async def test_track_twice_keeps_one_subscription(self, watcher, log_source, on_trade):
        assert await watcher.track([WALLET]) == [WALLET]
        assert await watcher.track([WALLET]) == []

        log_source.push(WALLET, log_event())
        await settle(watcher)

        assert watcher.tracked == frozenset({WALLET})
        assert log_source.calls == [WALLET]
        assert on_trade.await_count == 1
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_duplicates_within_one_call(self, watcher):
        assert await watcher.track([WALLET, OTHER_WALLET, WALLET]) == [WALLET, OTHER_WALLET]
        assert watcher.stats()["tracked_wallets"] == 2
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_untrack(self, watcher, log_source, on_trade):
        await watcher.track([WALLET])

        assert await watcher.untrack(WALLET) is True
        assert await watcher.untrack(WALLET) is False
        assert not watcher.is_tracking(WALLET)

        log_source.push(WALLET, log_event())
        await asyncio.sleep(0.05)
        on_trade.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stop_untracks_everything(self, watcher):
        await watcher.track([WALLET, OTHER_WALLET])

        await watcher.stop()

        assert watcher.tracked == frozenset()

    @pytest.mark.asyncio
    async def test_ended_stream_is_resubscribed(self, fetch, normalizer, on_trade):
        calls = []

        async def subscribe(address):
            calls.append(address)
            if len(calls) == 1:
                return
            yield log_event()
            await asyncio.Event().wait()

        watcher = WalletWatcher(subscribe, fetch, normalizer, on_trade, resubscribe_delay=0.01)
        await watcher.track([WALLET])
        await settle(watcher)

        assert len(calls) == 2
        assert on_trade.await_count == 1
        await watcher.stop()


class TestEventHandling:
    @pytest.mark.asyncio
    async def test_swap_is_dispatched(self, watcher, log_source, fetch, on_trade):
        await watcher.track([WALLET])

        log_source.push(WALLET, log_event())
        await settle(watcher)

        fetch.assert_awaited_once_with(SIGNATURE)
        record = on_trade.await_args.args[0]
        assert record.targeted_wallet == WALLET
        assert record.transaction_signature == SIGNATURE
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_repeated_signature_dispatched_once(self, watcher, log_source, fetch, on_trade):
        await watcher.track([WALLET])

        log_source.push(WALLET, log_event())
        log_source.push(WALLET, log_event())
        await settle(watcher)

        assert fetch.await_count == 1
        assert on_trade.await_count == 1
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_transaction_not_found_is_skipped(self, watcher, log_source, fetch, on_trade):
        fetch.return_value = None
        await watcher.track([WALLET])

        log_source.push(WALLET, log_event())
        await settle(watcher)

        on_trade.assert_not_awaited()
        assert watcher.tracked == frozenset({WALLET})
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_fetch_error_does_not_stop_the_wallet(self, watcher, log_source, fetch, fetched, on_trade):
        fetch.side_effect = [RuntimeError("503 Service Unavailable"), fetched]
        await watcher.track([WALLET])

        log_source.push(WALLET, log_event(signature="first"))
        log_source.push(WALLET, log_event(signature="second"))
        await settle(watcher)

        assert fetch.await_count == 2
        assert on_trade.await_count == 1
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_failed_transaction_is_not_fetched(self, watcher, log_source, fetch, on_trade):
        await watcher.track([WALLET])

        log_source.push(WALLET, log_event(err={"InstructionError": [0, "Custom"]}))
        await settle(watcher)

        fetch.assert_not_awaited()
        on_trade.assert_not_awaited()
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_non_swap_logs_are_filtered_before_fetch(self, log_source, fetch, normalizer, on_trade):
        watcher = WalletWatcher(
            log_source.subscribe, fetch, normalizer, on_trade,
            classifier=PlatformClassifier()
        )
        await watcher.track([WALLET])

        log_source.push(WALLET, log_event(logs=TRANSFER_LOGS))
        await settle(watcher)

        fetch.assert_not_awaited()
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_non_trade_is_not_dispatched(self, log_source, fetch, on_trade):
        normalizer = MagicMock()
        normalizer.normalize = AsyncMock(return_value=None)
        watcher = WalletWatcher(log_source.subscribe, fetch, normalizer, on_trade)
        await watcher.track([WALLET])

        log_source.push(WALLET, log_event())
        await settle(watcher)

        normalizer.normalize.assert_awaited_once()
        on_trade.assert_not_awaited()
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_handler_error_keeps_worker_alive(self, watcher, log_source, on_trade):
        on_trade.side_effect = [RuntimeError("chat not found"), None]
        await watcher.track([WALLET])

        log_source.push(WALLET, log_event(signature="first"))
        log_source.push(WALLET, log_event(signature="second"))
        await settle(watcher)

        assert on_trade.await_count == 2
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_single_worker_keeps_arrival_order(self, log_source, on_trade):
        seen = []

        async def fetch(signature):
            seen.append(signature)
            await asyncio.sleep(0)
            return None

        watcher = WalletWatcher(log_source.subscribe, fetch, MagicMock(), on_trade)
        await watcher.track([WALLET])

        for signature in ("a", "b", "c"):
            log_source.push(WALLET, log_event(signature=signature))
        await settle(watcher)

        assert seen == ["a", "b", "c"]
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_wallets_are_independent(self, watcher, log_source, on_trade):
        await watcher.track([WALLET, OTHER_WALLET])

        log_source.push(WALLET, log_event())
        await settle(watcher)

        assert on_trade.await_count == 1
        assert on_trade.await_args.args[0].targeted_wallet == WALLET
        assert watcher.stats() == {"tracked_wallets": 2, "queued_events": 0}
        await watcher.stop()


class TestRedelivery:
    @pytest.mark.asyncio
    async def test_fetch_error_allows_retry_of_same_signature(self, watcher, log_source, fetch, fetched, on_trade):
        fetch.side_effect = [RuntimeError("503 Service Unavailable"), fetched]
        await watcher.track([WALLET])

        log_source.push(WALLET, log_event())
        log_source.push(WALLET, log_event())
        await settle(watcher)

        assert fetch.await_count == 2
        assert on_trade.await_count == 1
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_unavailable_transaction_allows_retry(self, watcher, log_source, fetch, fetched, on_trade):
        fetch.side_effect = [None, fetched]
        await watcher.track([WALLET])

        log_source.push(WALLET, log_event())
        log_source.push(WALLET, log_event())
        await settle(watcher)

        assert fetch.await_count == 2
        assert on_trade.await_count == 1
        await watcher.stop()


class TestUntrackInFlight:
    @pytest.mark.asyncio
    async def test_pending_fetch_is_abandoned(self, log_source, fetched, normalizer, on_trade):
        started, release = asyncio.Event(), asyncio.Event()

        async def fetch(signature):
            started.set()
            await release.wait()
            return fetched

        watcher = WalletWatcher(log_source.subscribe, fetch, normalizer, on_trade)
        await watcher.track([WALLET])
        log_source.push(WALLET, log_event())
        await asyncio.wait_for(started.wait(), timeout=1)

        await watcher.untrack(WALLET)
        release.set()
        await asyncio.sleep(0.05)

        on_trade.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_trade_for_untracked_wallet_is_discarded(self, watcher, on_trade):
        sub = WalletSubscription(address=WALLET, queue=asyncio.Queue(), seen=deque(maxlen=10), active=False)

        await watcher._handle_event(sub, log_event())

        on_trade.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_started_notification_completes(self, log_source, fetch, normalizer):
        started, release = asyncio.Event(), asyncio.Event()
        delivered = []

        async def on_trade(record):
            started.set()
            await release.wait()
            delivered.append(record.transaction_signature)

        watcher = WalletWatcher(log_source.subscribe, fetch, normalizer, on_trade)
        await watcher.track([WALLET])
        log_source.push(WALLET, log_event())
        await asyncio.wait_for(started.wait(), timeout=1)

        await watcher.untrack(WALLET)
        release.set()
        await asyncio.sleep(0.05)

        assert delivered == [SIGNATURE]
