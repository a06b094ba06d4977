# config.py
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

WSOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"


class Settings(BaseSettings):
    telegram_bot_token: str = ""
    admin_user_name: str = ""
    solana_rpc_url: str = "https://api.mainnet-beta.solana.com"
    solana_ws_url: Optional[str] = None
    commitment: str = "confirmed"
    database_url: str = "wallets.db"

    # Swap detection
    chain_id: int = 101
    token_list_path: Optional[str] = None
    metadata_cache_size: int = 1024
    quote_mints: List[str] = [WSOL_MINT, USDC_MINT, USDT_MINT]
    enabled_platforms: Optional[List[str]] = None
    include_new_token_accounts: bool = False

    # Watcher
    wallet_queue_size: int = 100
    max_concurrency_per_wallet: int = 1
    max_wallets_per_request: int = 25
    reconnect_max_backoff: int = 30

    # HTTP
    http_pool_size: int = 10
    rpc_timeout: int = 10
    rpc_retry_attempts: int = 3

    health_log_interval: int = 300
    log_level: str = "INFO"
    log_file: str = "bot.log"

    @property
    def ws_endpoint(self) -> str:
        if self.solana_ws_url:
            return self.solana_ws_url
        if self.solana_rpc_url.startswith("https://"):
            return "wss://" + self.solana_rpc_url[len("https://"):]
        if self.solana_rpc_url.startswith("http://"):
            return "ws://" + self.solana_rpc_url[len("http://"):]
        return self.solana_rpc_url

    def missing_required(self) -> List[str]:
        """Names of required settings that are empty."""
        required = {
            "telegram_bot_token": self.telegram_bot_token,
            "solana_rpc_url": self.solana_rpc_url,
        }
        return [key for key, value in required.items() if not value]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False
    )

settings = Settings()
