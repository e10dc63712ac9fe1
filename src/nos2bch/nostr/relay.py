"""Best-effort event publishing to Nostr relays over websockets.

Each relay gets ``["EVENT", event]`` and is given ``timeout`` seconds to
answer with ``["OK", <id>, <accepted>, <message>]``. Relays are contacted
concurrently; a failing relay never affects the others.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import websockets
from websockets.exceptions import WebSocketException

logger = logging.getLogger(__name__)


async def _publish_one(url: str, event: dict[str, Any], timeout: float, connect: Any) -> bool:
    async with connect(url, open_timeout=timeout, close_timeout=1) as ws:
        await ws.send(json.dumps(["EVENT", event]))
        async with asyncio.timeout(timeout):
            while True:
                raw = await ws.recv()
                try:
                    message = json.loads(raw)
                except ValueError:
                    continue
                if isinstance(message, list) and len(message) >= 3 and message[0] == "OK" and message[1] == event["id"]:
                    if not message[2]:
                        logger.warning("Relay %s rejected event: %s", url, message[3] if len(message) > 3 else "")
                    return bool(message[2])


async def publish_event(
    relays: list[str],
    event: dict[str, Any],
    *,
    timeout: float = 5.0,
    connect: Any = None,
) -> dict[str, bool]:
    """Publish *event* to every relay in *relays*.

    Args:
        relays: Relay websocket URLs.
        event: A signed NIP-01 event.
        timeout: Seconds allowed for connect and for the OK acknowledgement.
        connect: Connection factory, ``websockets.connect`` by default.

    Returns:
        Mapping of relay URL to whether it acknowledged the event.
    """
    connect = connect or websockets.connect

    async def _attempt(url: str) -> bool:
        try:
            return await _publish_one(url, event, timeout, connect)
        except TimeoutError:
            logger.warning("Relay %s did not acknowledge event %s within %.1fs", url, event["id"], timeout)
        except (WebSocketException, OSError) as exc:
            logger.warning("Relay %s publish failed: %s", url, exc)
        return False

    results = await asyncio.gather(*(_attempt(url) for url in relays))
    outcome = dict(zip(relays, results, strict=True))
    logger.info("Published event %s to %d/%d relays", event["id"], sum(results), len(relays))
    return outcome
