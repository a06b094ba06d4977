"""
Balance-delta reconciliation.

Swap amounts are reconstructed from the pre/post token balance snapshots the
node attaches to every transaction, never from program logs. A snapshot pair
is matched on (account index, mint); a pair whose amounts are equal carries no
trade information and is dropped.
"""
import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from models import BalanceDelta, BalanceSnapshot, Direction

logger = logging.getLogger(__name__)


def reconcile(
    pre_balances: Sequence[BalanceSnapshot],
    post_balances: Sequence[BalanceSnapshot],
    include_new_accounts: bool = False
) -> List[BalanceDelta]:
    """Compute signed per-account deltas, preserving input order.

    Args:
        pre_balances: snapshots taken before execution.
        post_balances: snapshots taken after execution.
        include_new_accounts: when True, a post snapshot without a pre snapshot
            (token account opened by the transaction) is treated as growing
            from zero. Off by default: such accounts are ignored.

    Returns:
        One BalanceDelta per matched pair with a non-zero change.
    """
    post_by_key = {(s.account_index, s.token_identifier): s for s in post_balances}
    matched = set()
    deltas: List[BalanceDelta] = []

    for pre in pre_balances:
        key = (pre.account_index, pre.token_identifier)
        post = post_by_key.get(key)
        if post is None:
            # Closed, or reassigned to another mint
            continue
        matched.add(key)
        delta = post.raw_amount - pre.raw_amount
        if delta == 0:
            continue
        deltas.append(BalanceDelta(
            token_identifier=pre.token_identifier,
            owner=post.owner or pre.owner,
            raw_amount_delta=delta,
            decimals=post.decimals,
            account_index=pre.account_index
        ))

    unmatched = [s for s in post_balances if (s.account_index, s.token_identifier) not in matched]
    if unmatched and not include_new_accounts:
        logger.debug(f"Ignoring {len(unmatched)} token account(s) with no pre-balance snapshot")
    elif include_new_accounts:
        for post in unmatched:
            if post.raw_amount == 0:
                continue
            deltas.append(BalanceDelta(
                token_identifier=post.token_identifier,
                owner=post.owner,
                raw_amount_delta=post.raw_amount,
                decimals=post.decimals,
                account_index=post.account_index
            ))

    return deltas


def deltas_for_owner(deltas: Iterable[BalanceDelta], owner: str) -> List[BalanceDelta]:
    return [d for d in deltas if d.owner == owner]


def select_trade_legs(deltas: Sequence[BalanceDelta]) -> Optional[Tuple[BalanceDelta, BalanceDelta]]:
    """Pick the (OUT, IN) pair describing a swap from one owner's deltas.

    With more than two deltas the two largest by absolute raw amount are kept,
    ties going to the earlier snapshot. Returns None when fewer than two deltas
    exist or the pair is not one OUT plus one IN.
    """
    if len(deltas) < 2:
        return None

    if len(deltas) > 2:
        ranked = sorted(enumerate(deltas), key=lambda item: (-abs(item[1].raw_amount_delta), item[0]))
        deltas = [d for _, d in sorted(ranked[:2], key=lambda item: item[0])]

    outbound = [d for d in deltas if d.direction == Direction.OUT]
    inbound = [d for d in deltas if d.direction == Direction.IN]
    if len(outbound) != 1 or len(inbound) != 1:
        return None
    return outbound[0], inbound[0]
