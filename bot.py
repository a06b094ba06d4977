import asyncio
import logging
from contextlib import asynccontextmanager
from config import settings
from database import Database
from telegram_bot import SwapWatchBot
from logger import configure_logging
from rpc_client import RpcClient
from log_stream import LogSubscriber
from platforms import PlatformClassifier
from resource_monitor import ResourceMonitor
from connection_pool import HTTPSessionManager
from token_metadata import MetadataCache, TokenMetadataResolver
from token_registry import TokenRegistry
from trade_normalizer import TradeNormalizer
from watcher import WalletWatcher

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan():
    """Manage database and RPC client lifecycle"""
    db = Database(settings.database_url)
    session_manager = HTTPSessionManager(pool_size=settings.http_pool_size, timeout=settings.rpc_timeout)
    try:
        await db.connect()
        logger.info("Database connection established")
        async with RpcClient(
            settings.solana_rpc_url,
            session_manager,
            commitment=settings.commitment,
            retry_attempts=settings.rpc_retry_attempts
        ) as rpc:
            yield db, rpc
    finally:
        await db.close()
        logger.info("Database connection closed")


async def shutdown(bot=None, watcher=None, resource_monitor=None):
    """Stop intake before the bot so in-flight trades can still be delivered"""
    logger.info("Starting application shutdown")
    if watcher:
        await watcher.stop()
    if bot:
        await bot.stop()
    if resource_monitor:
        await resource_monitor.stop()
    logger.info("Application shutdown complete")


async def main():
    missing = settings.missing_required()
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(k.upper() for k in missing)}")

    async with lifespan() as (db, rpc):
        bot = None
        watcher = None
        resource_monitor = None

        try:
            logger.info("Initializing application components")
            classifier = PlatformClassifier.for_platforms(settings.enabled_platforms)
            cache = MetadataCache(settings.metadata_cache_size)
            resolver = TokenMetadataResolver(
                rpc,
                TokenRegistry.load(settings.token_list_path, chain_id=settings.chain_id),
                cache=cache
            )
            normalizer = TradeNormalizer(
                resolver,
                quote_mints=settings.quote_mints,
                classifier=classifier,
                include_new_accounts=settings.include_new_token_accounts
            )
            log_subscriber = LogSubscriber(
                settings.ws_endpoint,
                commitment=settings.commitment,
                max_backoff=settings.reconnect_max_backoff
            )

            bot = await SwapWatchBot.create(
                settings.telegram_bot_token,
                db,
                rpc,
                admin_user_name=settings.admin_user_name,
                max_wallets_per_request=settings.max_wallets_per_request
            )
            watcher = WalletWatcher(
                subscribe=log_subscriber.subscribe,
                fetch_transaction=rpc.fetch_transaction,
                normalizer=normalizer,
                on_trade=bot.notify_subscribers,
                classifier=classifier,
                max_concurrency=settings.max_concurrency_per_wallet,
                queue_size=settings.wallet_queue_size
            )
            bot.watcher = watcher

            resource_monitor = ResourceMonitor(watcher, cache, interval=settings.health_log_interval)
            await resource_monitor.start()

            wallets = await db.list_tracked_wallets()
            await watcher.track(wallets)
            logger.info(f"Resumed tracking {len(wallets)} wallet(s)")

            logger.info("Starting Telegram bot")
            await bot.start()

            logger.info("Application startup complete")
            while True:
                await asyncio.sleep(3600)

        except asyncio.CancelledError:
            logger.info("Received shutdown signal")
        finally:
            await shutdown(bot, watcher, resource_monitor)


def run():
    configure_logging(settings.log_level, settings.log_file)
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Application terminated by user")
    except Exception as e:
        logger.critical(f"Fatal error: {str(e)}", exc_info=True)
        raise


if __name__ == "__main__":
    run()
