import asyncio

import pytest
import pytest_asyncio

from config import USDC_MINT, USDT_MINT, WSOL_MINT
from database import Database
from platforms import PlatformClassifier
from token_metadata import MetadataCache, TokenMetadataResolver
from token_registry import TokenRegistry
from trade_normalizer import TradeNormalizer

from tests.factories import default_accounts


class FakeLogSource:
    """Stands in for LogSubscriber: events are pushed per address"""

    def __init__(self):
        self.queues = {}
        self.calls = []

    def _queue(self, address):
        return self.queues.setdefault(address, asyncio.Queue())

    def push(self, address, event):
        self._queue(address).put_nowait(event)

    async def subscribe(self, address):
        self.calls.append(address)
        queue = self._queue(address)
        while True:
            yield await queue.get()


@pytest.fixture
def accounts():
    return default_accounts()


@pytest.fixture
def registry():
    return TokenRegistry.load()


@pytest.fixture
def resolver(accounts, registry):
    return TokenMetadataResolver(accounts, registry, cache=MetadataCache(16))


@pytest.fixture
def normalizer(resolver):
    return TradeNormalizer(resolver, quote_mints=[WSOL_MINT, USDC_MINT, USDT_MINT], classifier=PlatformClassifier())


@pytest.fixture
def log_source():
    return FakeLogSource()


@pytest_asyncio.fixture
async def db():
    database = Database(":memory:")
    await database.connect()
    yield database
    await database.close()
