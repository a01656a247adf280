"""
Chain Client - Finalized Head Stream.

============================================================
PURPOSE
============================================================
JSON-RPC websocket subscription to the ledger's finalized heads.

FEATURES:
- chain_subscribeFinalizedHeads over aiohttp
- Automatic reconnection with capped exponential backoff
- Yields plain heights; header decoding is not needed

============================================================
USAGE
============================================================
```python
stream = FinalizedHeadStream("wss://kusama.api.encointer.org")
async for height in stream.heads():
    ...
```

============================================================
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp


logger = logging.getLogger(__name__)

SUBSCRIBE_METHOD = "chain_subscribeFinalizedHeads"
NOTIFICATION_METHOD = "chain_finalizedHead"


# ============================================================
# CONNECTION STATE
# ============================================================

class ConnectionState(Enum):
    """Websocket connection states."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    RECONNECTING = "RECONNECTING"


@dataclass
class HeadStreamConfig:
    """Head stream connection configuration."""

    reconnect_interval_ms: int = 1000
    max_reconnect_interval_ms: int = 30000
    heartbeat_interval_ms: int = 20000


def parse_head_notification(message: Dict[str, Any]) -> Optional[int]:
    """
    Extract the head height from a subscription notification.

    Returns:
        Height, or None when the message is not a head notification
    """
    if message.get("method") != NOTIFICATION_METHOD:
        return None

    header = (message.get("params") or {}).get("result") or {}
    number = header.get("number")
    if number is None:
        return None
    if isinstance(number, str):
        return int(number, 16) if number.startswith("0x") else int(number)
    return int(number)


# ============================================================
# FINALIZED HEAD STREAM
# ============================================================

class FinalizedHeadStream:
    """Reconnecting websocket stream of finalized head heights."""

    def __init__(
        self,
        url: str,
        config: Optional[HeadStreamConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._url = url
        self._config = config or HeadStreamConfig()
        self._session = session
        self._owns_session = session is None
        self._state = ConnectionState.DISCONNECTED
        self._reconnect_count = 0
        self._request_ids = itertools.count(1)

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _reconnect_delay(self) -> float:
        delay_ms = min(
            self._config.reconnect_interval_ms * (2 ** max(self._reconnect_count - 1, 0)),
            self._config.max_reconnect_interval_ms,
        )
        return delay_ms / 1000

    async def heads(self) -> AsyncIterator[int]:
        """Yield finalized head heights forever, reconnecting as needed."""
        if self._session is None:
            self._session = aiohttp.ClientSession()

        try:
            while True:
                try:
                    async for height in self._subscribe_once():
                        yield height
                except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                    logger.warning(f"Finalized head subscription failed: {e}")

                self._state = ConnectionState.RECONNECTING
                self._reconnect_count += 1
                delay = self._reconnect_delay()
                logger.info(
                    f"Reconnecting head subscription in {delay:.1f}s "
                    f"(attempt {self._reconnect_count})"
                )
                await asyncio.sleep(delay)
        finally:
            self._state = ConnectionState.DISCONNECTED
            if self._owns_session and self._session is not None:
                await self._session.close()
                self._session = None

    async def _subscribe_once(self) -> AsyncIterator[int]:
        """One connection lifetime: subscribe and relay notifications until it drops."""
        self._state = ConnectionState.CONNECTING
        async with self._session.ws_connect(
            self._url,
            heartbeat=self._config.heartbeat_interval_ms / 1000,
        ) as ws:
            await ws.send_json({
                "jsonrpc": "2.0",
                "id": next(self._request_ids),
                "method": SUBSCRIBE_METHOD,
                "params": [],
            })
            self._state = ConnectionState.CONNECTED
            logger.info(f"Subscribed to finalized heads at {self._url}")

            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    payload = msg.json()
                    if "error" in payload:
                        raise ValueError(f"Subscription rejected: {payload['error']}")
                    height = parse_head_notification(payload)
                    if height is not None:
                        self._reconnect_count = 0
                        yield height
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"Head stream websocket error: {ws.exception()}")
                    break
                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED):
                    logger.warning("Head stream websocket closed by node")
                    break

        self._state = ConnectionState.DISCONNECTED
