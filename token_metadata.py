import logging
import struct
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, Optional, Protocol

from solders.pubkey import Pubkey

from errors import MetadataUnavailable, MintNotFound
from models import TokenMetadata
from token_registry import TokenRegistry

logger = logging.getLogger(__name__)

METADATA_PROGRAM_ID = Pubkey.from_string("metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s")

# SPL token mint: COption<Pubkey> mint authority, u64 supply, u8 decimals,
# bool initialized, COption<Pubkey> freeze authority. Token-2022 mints share
# the same 82-byte prefix.
MINT_LAYOUT = struct.Struct("<I32sQBBI32s")


class AccountSource(Protocol):
    async def resolve_mint_account(self, mint: str) -> Optional[bytes]: ...

    async def resolve_metadata_account(self, mint: str) -> Optional[bytes]: ...


def metadata_address(mint: str) -> Pubkey:
    """Metaplex metadata PDA for a mint"""
    return Pubkey.find_program_address(
        [b"metadata", bytes(METADATA_PROGRAM_ID), bytes(Pubkey.from_string(mint))],
        METADATA_PROGRAM_ID
    )[0]


def _option_pubkey(tag: int, raw: bytes) -> Optional[str]:
    return str(Pubkey.from_bytes(raw)) if tag == 1 else None


def decode_mint_account(mint: str, data: bytes) -> TokenMetadata:
    """Numeric half of TokenMetadata, straight from the mint account bytes.

    Name, symbol and icon stay unset; they only come from a metadata account
    or the token registry.
    """
    if len(data) < MINT_LAYOUT.size:
        raise MintNotFound(mint, f"account is {len(data)} bytes, not a mint")

    (mint_auth_tag, mint_auth, supply, decimals,
     initialized, freeze_auth_tag, freeze_auth) = MINT_LAYOUT.unpack_from(data)

    return TokenMetadata(
        identifier=mint,
        decimals=decimals,
        total_supply=Decimal(supply) / (Decimal(10) ** decimals),
        is_initialized=bool(initialized),
        mint_authority=_option_pubkey(mint_auth_tag, mint_auth),
        freeze_authority=_option_pubkey(freeze_auth_tag, freeze_auth)
    )


def _read_string(data: bytes, offset: int):
    (length,) = struct.unpack_from("<I", data, offset)
    offset += 4
    raw = data[offset:offset + length]
    if len(raw) != length:
        raise ValueError("truncated string")
    value = raw.decode("utf-8", "ignore").replace("\x00", "").strip()
    return value or None, offset + length


def decode_metadata_account(data: bytes) -> Dict[str, Optional[str]]:
    """Descriptive half of TokenMetadata from a Metaplex metadata account.

    Layout: key (u8), update authority (32), mint (32), then borsh strings
    name, symbol, uri. Padding NULs are stripped; empty values become None.
    """
    offset = 1 + 32 + 32
    name, offset = _read_string(data, offset)
    symbol, offset = _read_string(data, offset)
    uri, offset = _read_string(data, offset)
    return {"name": name, "symbol": symbol, "icon_uri": uri}


class MetadataCache:
    """Bounded LRU cache of resolved token metadata.

    Lookups and inserts never await, so they are atomic with respect to other
    pipelines on the event loop.
    """

    def __init__(self, capacity: int = 1024):
        self.capacity = capacity
        self._items: "OrderedDict[str, TokenMetadata]" = OrderedDict()

    def get(self, mint: str) -> Optional[TokenMetadata]:
        token = self._items.get(mint)
        if token is not None:
            self._items.move_to_end(mint)
        return token

    def put(self, token: TokenMetadata) -> None:
        if self.capacity <= 0:
            return
        self._items[token.identifier] = token
        self._items.move_to_end(token.identifier)
        while len(self._items) > self.capacity:
            evicted, _ = self._items.popitem(last=False)
            logger.debug(f"Evicted {evicted} from metadata cache")

    def __len__(self) -> int:
        return len(self._items)


class TokenMetadataResolver:
    def __init__(self, accounts: AccountSource, registry: TokenRegistry, cache: Optional[MetadataCache] = None):
        self.accounts = accounts
        self.registry = registry
        self.cache = cache

    async def resolve(self, mint: str) -> TokenMetadata:
        """Resolve a mint into TokenMetadata.

        Raises:
            MintNotFound: the mint account does not exist.
            MetadataUnavailable: neither a metadata account nor a registry entry exists.
        """
        if self.cache is not None:
            cached = self.cache.get(mint)
            if cached is not None:
                return cached

        mint_data = await self.accounts.resolve_mint_account(mint)
        if mint_data is None:
            raise MintNotFound(mint)
        token = decode_mint_account(mint, mint_data)

        descriptive = await self._descriptive_fields(mint)
        token = token.model_copy(update=descriptive)

        if self.cache is not None:
            self.cache.put(token)
        return token

    async def _descriptive_fields(self, mint: str) -> Dict[str, Optional[str]]:
        metadata_data = await self.accounts.resolve_metadata_account(mint)
        if metadata_data is not None:
            try:
                return decode_metadata_account(metadata_data)
            except (struct.error, ValueError) as e:
                logger.warning(f"Malformed metadata account for {mint}: {str(e)}")

        entry = self.registry.get(mint)
        if entry is None:
            raise MetadataUnavailable(mint)
        return {"name": entry.name, "symbol": entry.symbol, "icon_uri": entry.logo_uri}
