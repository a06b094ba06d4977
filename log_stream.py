import asyncio
import json
import logging
from itertools import count
from typing import AsyncIterator, Optional, Union

import websockets

from errors import SubscriptionTransportError
from models import LogEvent

logger = logging.getLogger(__name__)

_request_ids = count(1)


def parse_logs_notification(raw: Union[str, bytes]) -> Optional[LogEvent]:
    """Decode one `logsNotification` frame; None for anything else"""
    try:
        msg = json.loads(raw)
    except (TypeError, ValueError):
        logger.debug("Ignoring non-JSON websocket frame")
        return None

    if not isinstance(msg, dict) or msg.get("method") != "logsNotification":
        return None

    result = (msg.get("params") or {}).get("result") or {}
    value = result.get("value") or {}
    signature = value.get("signature")
    if not signature:
        return None

    return LogEvent(
        signature=signature,
        logs=value.get("logs") or [],
        err=value.get("err"),
        slot=(result.get("context") or {}).get("slot")
    )


class LogSubscriber:
    """`logsSubscribe` over a JSON-RPC websocket, one connection per address.

    `subscribe()` yields LogEvents forever: transport failures are logged and
    the subscription is re-established with exponential backoff.
    """

    def __init__(self, ws_url: str, commitment: str = "confirmed", max_backoff: int = 30):
        self.ws_url = ws_url
        self.commitment = commitment
        self.max_backoff = max_backoff

    async def subscribe(self, address: str) -> AsyncIterator[LogEvent]:
        backoff = 1
        while True:
            try:
                async with websockets.connect(self.ws_url, ping_interval=20, ping_timeout=20) as ws:
                    sub_id = await self._subscribe(ws, address)
                    logger.info(f"Subscribed to logs for {address} (sub id: {sub_id})")
                    backoff = 1

                    async for raw in ws:
                        event = parse_logs_notification(raw)
                        if event is not None:
                            yield event

                    raise SubscriptionTransportError("websocket closed by node")
            except (websockets.WebSocketException, OSError, asyncio.TimeoutError,
                    SubscriptionTransportError) as e:
                logger.warning(f"Log subscription for {address} dropped: {e}. Reconnecting in {backoff}s")
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, self.max_backoff)

    async def _subscribe(self, ws, address: str) -> int:
        request_id = next(_request_ids)
        await ws.send(json.dumps({
            "jsonrpc": "2.0",
            "id": request_id,
            "method": "logsSubscribe",
            "params": [
                {"mentions": [address]},
                {"commitment": self.commitment}
            ]
        }))

        while True:
            raw = await asyncio.wait_for(ws.recv(), timeout=10)
            try:
                msg = json.loads(raw)
            except ValueError:
                continue
            if msg.get("id") != request_id:
                continue
            if "error" in msg:
                raise SubscriptionTransportError(f"logsSubscribe rejected: {msg['error']}")
            return msg.get("result")
