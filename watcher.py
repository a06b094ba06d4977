import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Deque, Dict, FrozenSet, Iterable, List, Optional

from models import LogEvent, TradeRecord, Transaction
from platforms import PlatformClassifier
from trade_normalizer import TradeNormalizer

logger = logging.getLogger(__name__)

SubscribeFn = Callable[[str], AsyncIterator[LogEvent]]
FetchFn = Callable[[str], Awaitable[Optional[Transaction]]]
TradeHandler = Callable[[TradeRecord], Awaitable[None]]


@dataclass
class WalletSubscription:
    address: str
    queue: "asyncio.Queue[LogEvent]"
    seen: Deque[str]
    reader: Optional[asyncio.Task] = None
    workers: List[asyncio.Task] = field(default_factory=list)
    active: bool = True


class WalletWatcher:
    """
    Owns the set of watched wallets and their log subscriptions.

    Each tracked wallet gets exactly one subscription task feeding a bounded
    queue, drained by `max_concurrency` workers that fetch, normalize and hand
    trades to `on_trade`. With the default single worker, trades for a wallet
    are dispatched in the order their log events arrived.
    """

    def __init__(
        self,
        subscribe: SubscribeFn,
        fetch_transaction: FetchFn,
        normalizer: TradeNormalizer,
        on_trade: TradeHandler,
        classifier: Optional[PlatformClassifier] = None,
        max_concurrency: int = 1,
        queue_size: int = 100,
        seen_size: int = 500,
        resubscribe_delay: float = 5.0
    ):
        self._subscribe = subscribe
        self._fetch_transaction = fetch_transaction
        self._normalizer = normalizer
        self._on_trade = on_trade
        self._classifier = classifier
        self.max_concurrency = max(1, max_concurrency)
        self.queue_size = queue_size
        self.seen_size = seen_size
        self.resubscribe_delay = resubscribe_delay
        self._subscriptions: Dict[str, WalletSubscription] = {}

    @property
    def tracked(self) -> FrozenSet[str]:
        return frozenset(self._subscriptions)

    def is_tracking(self, address: str) -> bool:
        return address in self._subscriptions

    def stats(self) -> Dict[str, int]:
        return {
            "tracked_wallets": len(self._subscriptions),
            "queued_events": sum(s.queue.qsize() for s in self._subscriptions.values()),
        }

    async def track(self, wallets: Iterable[str]) -> List[str]:
        """Start watching wallets; already tracked addresses are skipped.

        Returns the addresses that were newly tracked.
        """
        added = []
        for address in wallets:
            if address in self._subscriptions:
                logger.debug(f"Wallet {address} already tracked")
                continue

            sub = WalletSubscription(
                address=address,
                queue=asyncio.Queue(maxsize=self.queue_size),
                seen=deque(maxlen=self.seen_size)
            )
            self._subscriptions[address] = sub
            sub.reader = asyncio.create_task(self._read_events(sub), name=f"logs:{address}")
            sub.workers = [
                asyncio.create_task(self._run_worker(sub), name=f"worker:{address}:{i}")
                for i in range(self.max_concurrency)
            ]
            added.append(address)
            logger.info(f"Tracking wallet {address}")
        return added

    async def untrack(self, address: str) -> bool:
        """Stop watching a wallet. In-flight events for it are abandoned."""
        sub = self._subscriptions.pop(address, None)
        if sub is None:
            return False

        sub.active = False
        tasks = [t for t in [sub.reader, *sub.workers] if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Stopped tracking wallet {address}")
        return True

    async def wait_idle(self):
        """Wait until every queued event has been processed"""
        await asyncio.gather(*(s.queue.join() for s in list(self._subscriptions.values())))

    async def stop(self):
        for address in list(self._subscriptions):
            await self.untrack(address)

    async def _read_events(self, sub: WalletSubscription):
        while sub.active:
            try:
                async for event in self._subscribe(sub.address):
                    await sub.queue.put(event)
                logger.warning(f"Log stream for {sub.address} ended, resubscribing")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Log stream for {sub.address} failed: {str(e)}", exc_info=True)
            await asyncio.sleep(self.resubscribe_delay)

    async def _run_worker(self, sub: WalletSubscription):
        while True:
            event = await sub.queue.get()
            try:
                await self._handle_event(sub, event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[Tx {event.signature}] Processing error: {str(e)}", exc_info=True)
            finally:
                sub.queue.task_done()

    @staticmethod
    def _forget(sub: WalletSubscription, signature: str):
        # A redelivery of an unfetched transaction gets another attempt
        try:
            sub.seen.remove(signature)
        except ValueError:
            pass

    async def _handle_event(self, sub: WalletSubscription, event: LogEvent):
        if event.err is not None:
            logger.debug(f"[Tx {event.signature}] Failed transaction, skipping")
            return
        if event.signature in sub.seen:
            logger.debug(f"[Tx {event.signature}] Already handled for {sub.address}")
            return
        sub.seen.append(event.signature)

        if self._classifier and not self._classifier.classify(event.logs).is_swap:
            return

        try:
            transaction = await self._fetch_transaction(event.signature)
        except Exception as e:
            logger.error(f"[Tx {event.signature}] Fetch failed for {sub.address}: {str(e)}")
            self._forget(sub, event.signature)
            return

        if transaction is None:
            logger.warning(f"[Tx {event.signature}] Transaction not available, skipping")
            self._forget(sub, event.signature)
            return

        record = await self._normalizer.normalize(transaction, sub.address)
        if record is None:
            return
        if not sub.active:
            logger.info(f"[Tx {event.signature}] Wallet {sub.address} untracked, discarding trade")
            return

        logger.info(
            f"[Tx {event.signature}] {record.side.value} by {sub.address}: "
            f"{record.leg_a.amount} {record.leg_a.token.display_symbol} -> "
            f"{record.leg_b.amount} {record.leg_b.token.display_symbol}"
        )
        # A started notification fan-out is never cut short by untrack()
        await asyncio.shield(self._on_trade(record))
