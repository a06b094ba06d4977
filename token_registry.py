import json
import logging
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

MAINNET_BETA = 101

_LOGO_BASE = "https://raw.githubusercontent.com/solana-labs/token-list/main/assets/mainnet"


class TokenListEntry(BaseModel):
    """One token in the solana-labs token-list JSON format"""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    chain_id: int = Field(alias="chainId")
    address: str
    symbol: str
    name: str
    decimals: int
    logo_uri: Optional[str] = Field(default=None, alias="logoURI")


def _entry(address: str, symbol: str, name: str, decimals: int) -> TokenListEntry:
    return TokenListEntry(
        chain_id=MAINNET_BETA,
        address=address,
        symbol=symbol,
        name=name,
        decimals=decimals,
        logo_uri=f"{_LOGO_BASE}/{address}/logo.png"
    )


BUNDLED_TOKENS: List[TokenListEntry] = [
    _entry("So11111111111111111111111111111111111111112", "SOL", "Wrapped SOL", 9),
    _entry("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", "USDC", "USD Coin", 6),
    _entry("Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB", "USDT", "USDT", 6),
    _entry("4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R", "RAY", "Raydium", 6),
    _entry("JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN", "JUP", "Jupiter", 6),
    _entry("DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263", "Bonk", "Bonk", 5),
    _entry("mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So", "mSOL", "Marinade staked SOL", 9),
    _entry("orcaEKTdK7LKz57vaAYr9QeNsVEPfiu6QeMU1kektZE", "ORCA", "Orca", 6),
]


class TokenRegistry:
    """Static, chain-scoped token list used when a mint has no metadata account"""

    def __init__(self, entries: Iterable[TokenListEntry], chain_id: int = MAINNET_BETA):
        self.chain_id = chain_id
        self._tokens: Dict[str, TokenListEntry] = {
            e.address: e for e in entries if e.chain_id == chain_id
        }

    @classmethod
    def load(cls, path: Optional[str] = None, chain_id: int = MAINNET_BETA) -> "TokenRegistry":
        """Bundled list, extended (and overridden) by a token-list JSON file if given"""
        entries = list(BUNDLED_TOKENS)
        if path:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            raw = data.get("tokens", []) if isinstance(data, dict) else data
            entries.extend(TokenListEntry.model_validate(item) for item in raw)
            logger.info(f"Loaded {len(raw)} token list entries from {path}")
        return cls(entries, chain_id=chain_id)

    def get(self, mint: str) -> Optional[TokenListEntry]:
        return self._tokens.get(mint)

    def __contains__(self, mint: str) -> bool:
        return mint in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)
