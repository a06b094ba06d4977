from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class Direction(str, Enum):
    IN = "IN"
    OUT = "OUT"


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class TokenMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: str
    decimals: int
    total_supply: Decimal
    is_initialized: bool
    mint_authority: Optional[str] = None
    freeze_authority: Optional[str] = None
    name: Optional[str] = None
    symbol: Optional[str] = None
    icon_uri: Optional[str] = None

    @property
    def display_symbol(self) -> str:
        return self.symbol or self.name or f"{self.identifier[:4]}...{self.identifier[-4:]}"


class BalanceSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_index: int
    owner: Optional[str] = None
    token_identifier: str
    raw_amount: int
    decimals: int

    @classmethod
    def from_rpc(cls, entry: Dict[str, Any]) -> "BalanceSnapshot":
        """Build from a `preTokenBalances`/`postTokenBalances` entry"""
        ui_amount = entry.get('uiTokenAmount', {})
        return cls(
            account_index=entry['accountIndex'],
            owner=entry.get('owner'),
            token_identifier=entry['mint'],
            raw_amount=int(ui_amount.get('amount', 0)),
            decimals=int(ui_amount.get('decimals', 0))
        )


class BalanceDelta(BaseModel):
    model_config = ConfigDict(frozen=True)

    token_identifier: str
    owner: Optional[str]
    raw_amount_delta: int
    decimals: int
    account_index: int

    @property
    def direction(self) -> Direction:
        return Direction.IN if self.raw_amount_delta > 0 else Direction.OUT

    @property
    def amount(self) -> Decimal:
        return Decimal(abs(self.raw_amount_delta)) / (Decimal(10) ** self.decimals)


class TradeLeg(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: TokenMetadata
    direction: Direction
    amount: Decimal


class TradeRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    targeted_wallet: str
    leg_a: TradeLeg
    leg_b: TradeLeg
    side: Side
    timestamp: datetime
    transaction_signature: str
    platform: Optional[str] = None
    price: Optional[Decimal] = None

    @property
    def tx_url(self) -> str:
        return f"https://solscan.io/tx/{self.transaction_signature}"


class LogEvent(BaseModel):
    signature: str
    logs: List[str] = []
    err: Optional[Any] = None
    slot: Optional[int] = None


class TransactionMeta(BaseModel):
    err: Optional[Any] = None
    log_messages: Optional[List[str]] = None
    pre_token_balances: List[BalanceSnapshot] = []
    post_token_balances: List[BalanceSnapshot] = []
    fee: int = 0

    @classmethod
    def from_rpc(cls, meta: Dict[str, Any]) -> "TransactionMeta":
        return cls(
            err=meta.get('err'),
            log_messages=meta.get('logMessages'),
            pre_token_balances=[BalanceSnapshot.from_rpc(b) for b in meta.get('preTokenBalances') or []],
            post_token_balances=[BalanceSnapshot.from_rpc(b) for b in meta.get('postTokenBalances') or []],
            fee=meta.get('fee') or 0
        )


class Transaction(BaseModel):
    signatures: List[str] = []
    account_keys: List[str] = []
    meta: Optional[TransactionMeta] = None
    block_time: Optional[int] = None
    slot: Optional[int] = None

    @classmethod
    def from_rpc(cls, result: Dict[str, Any]) -> "Transaction":
        """Build from a `getTransaction` result (json encoding)"""
        tx = result.get('transaction') or {}
        message = tx.get('message') or {}
        raw_meta = result.get('meta')

        account_keys = [
            key['pubkey'] if isinstance(key, dict) else key
            for key in message.get('accountKeys') or []
        ]
        # Versioned transactions append lookup-table addresses after the static keys
        loaded = (raw_meta or {}).get('loadedAddresses') or {}
        account_keys += loaded.get('writable', []) + loaded.get('readonly', [])

        block_time = result.get('blockTime')
        if block_time is None and raw_meta:
            block_time = raw_meta.get('blockTime')

        return cls(
            signatures=tx.get('signatures') or [],
            account_keys=account_keys,
            meta=TransactionMeta.from_rpc(raw_meta) if raw_meta else None,
            block_time=block_time,
            slot=result.get('slot')
        )


class Wallet(BaseModel):
    address: str
    alias: Optional[str] = None
    added_by: Optional[str] = None
    created_at: int = 0
    last_activity_at: int = 0
    trade_count: int = 0
