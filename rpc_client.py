import aiohttp
import asyncio
import logging
from typing import Any, List, Optional

from aiohttp_retry import RetryClient, ExponentialRetry
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solders.pubkey import Pubkey

from connection_pool import HTTPSessionManager
from errors import RpcError
from models import Transaction
from token_metadata import metadata_address

logger = logging.getLogger(__name__)


class RpcClient:
    """Point lookups against a Solana JSON-RPC node.

    Transactions are fetched with raw JSON-RPC through the shared aiohttp pool
    (with retries); account and balance lookups go through solana-py.
    """

    def __init__(self, rpc_url: str, session_manager: HTTPSessionManager,
                 commitment: str = "confirmed", retry_attempts: int = 3):
        if not rpc_url:
            raise ValueError("SOLANA_RPC_URL must be provided")
        self.rpc_url = rpc_url
        self.session_manager = session_manager
        self.commitment = commitment
        self.client: Optional[RetryClient] = None
        self.solana: Optional[AsyncClient] = None

        self.retry_options = ExponentialRetry(
            attempts=retry_attempts,
            statuses={429, 500, 502, 503, 504},
            exceptions={aiohttp.ClientError, asyncio.TimeoutError},
            factor=2
        )

    async def __aenter__(self):
        """Async context manager entry"""
        await self.session_manager.start()
        self.client = RetryClient(
            client_session=self.session_manager.session,
            retry_options=self.retry_options
        )
        self.solana = AsyncClient(self.rpc_url, commitment=Commitment(self.commitment))
        return self

    async def __aexit__(self, exc_type, exc, tb):
        """Async context manager exit with proper cleanup"""
        await self.close()

        if exc_type and not isinstance(exc, asyncio.CancelledError):
            logger.error(f"RpcClient error: {exc}", exc_info=True)

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        if not self.client:
            raise RuntimeError("Client not initialized")

        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": method,
            "params": params
        }

        async with self.client.post(self.rpc_url, json=payload) as response:
            response.raise_for_status()
            data = await response.json()

        if 'error' in data:
            raise RpcError(method, data['error'])
        return data.get('result')

    async def fetch_transaction(self, signature: str) -> Optional[Transaction]:
        """Fetch a transaction with its metadata; None if not (yet) available"""
        result = await self._rpc("getTransaction", [
            signature,
            {
                "encoding": "json",
                "commitment": self.commitment,
                "maxSupportedTransactionVersion": 0
            }
        ])
        if result is None:
            return None
        return Transaction.from_rpc(result)

    async def get_account_data(self, address: Pubkey) -> Optional[bytes]:
        if not self.solana:
            raise RuntimeError("Client not initialized")
        response = await self.solana.get_account_info(address)
        if response.value is None:
            return None
        return bytes(response.value.data)

    async def resolve_mint_account(self, mint: str) -> Optional[bytes]:
        return await self.get_account_data(Pubkey.from_string(mint))

    async def resolve_metadata_account(self, mint: str) -> Optional[bytes]:
        return await self.get_account_data(metadata_address(mint))

    async def get_balance(self, wallet_address: str) -> float:
        """Native SOL balance"""
        if not self.solana:
            raise RuntimeError("Client not initialized")
        response = await self.solana.get_balance(Pubkey.from_string(wallet_address))
        return response.value / 10 ** 9

    async def close(self):
        """Cleanup client resources"""
        try:
            if self.solana:
                await self.solana.close()
            if self.client:
                await self.client.close()
            await self.session_manager.stop()
        except Exception as e:
            logger.warning(f"Error closing client: {str(e)}")
        finally:
            self.client = None
            self.solana = None
