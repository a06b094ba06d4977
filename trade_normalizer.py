import asyncio
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from balances import deltas_for_owner, reconcile, select_trade_legs
from errors import DataUnavailable
from models import Direction, Side, TradeLeg, TradeRecord, Transaction
from platforms import PlatformClassifier
from token_metadata import TokenMetadataResolver

logger = logging.getLogger(__name__)


class TradeNormalizer:
    def __init__(
        self,
        resolver: TokenMetadataResolver,
        quote_mints: Iterable[str],
        classifier: Optional[PlatformClassifier] = None,
        include_new_accounts: bool = False
    ):
        self.resolver = resolver
        self.quote_mints = frozenset(quote_mints)
        self.classifier = classifier or PlatformClassifier()
        self.include_new_accounts = include_new_accounts

    async def normalize(self, transaction: Transaction, targeted_wallet: str) -> Optional[TradeRecord]:
        """
        Turn a fetched transaction into a TradeRecord for the targeted wallet.

        Returns None whenever the transaction cannot be explained as a simple
        swap by that wallet: missing metadata, failed execution, no swap
        fingerprint, fewer than two usable balance deltas, or unresolvable
        token metadata. Never raises for data-shape reasons.
        """
        meta = transaction.meta
        if meta is None or meta.log_messages is None:
            logger.debug(f"Transaction {self._sig(transaction)} has no metadata")
            return None
        if meta.err is not None:
            logger.debug(f"Transaction {self._sig(transaction)} failed on-chain: {meta.err}")
            return None
        if not transaction.signatures:
            logger.debug("Transaction without signatures, skipping")
            return None

        classification = self.classifier.classify(meta.log_messages)
        if not classification.is_swap:
            return None

        deltas = reconcile(
            meta.pre_token_balances,
            meta.post_token_balances,
            include_new_accounts=self.include_new_accounts
        )
        owned = deltas_for_owner(deltas, targeted_wallet)
        legs = select_trade_legs(owned)
        if legs is None:
            logger.info(
                f"Swap {self._sig(transaction)} for {targeted_wallet} has "
                f"{len(owned)} usable balance change(s), skipping"
            )
            return None
        out_delta, in_delta = legs

        try:
            out_token, in_token = await asyncio.gather(
                self.resolver.resolve(out_delta.token_identifier),
                self.resolver.resolve(in_delta.token_identifier)
            )
        except DataUnavailable as e:
            logger.warning(f"Dropping swap {self._sig(transaction)}: {str(e)}")
            return None
        except Exception as e:
            logger.error(f"Metadata lookup failed for swap {self._sig(transaction)}: {str(e)}", exc_info=True)
            return None

        leg_a = TradeLeg(token=out_token, direction=Direction.OUT, amount=out_delta.amount)
        leg_b = TradeLeg(token=in_token, direction=Direction.IN, amount=in_delta.amount)
        side = Side.BUY if out_delta.token_identifier in self.quote_mints else Side.SELL

        if transaction.block_time is not None:
            timestamp = datetime.fromtimestamp(transaction.block_time, tz=timezone.utc)
        else:
            timestamp = datetime.now(timezone.utc)

        return TradeRecord(
            targeted_wallet=targeted_wallet,
            leg_a=leg_a,
            leg_b=leg_b,
            side=side,
            timestamp=timestamp,
            transaction_signature=transaction.signatures[0],
            platform=classification.platform.value if classification.platform else None,
            price=(leg_a.amount / leg_b.amount) if leg_b.amount else None
        )

    @staticmethod
    def _sig(transaction: Transaction) -> str:
        return transaction.signatures[0] if transaction.signatures else "<unsigned>"
