"""Live reload: poll the storage directory and tell browsers to reload.

Change detection compares mtime snapshots of the storage root, so adds,
edits and deletions all count. Connected websocket clients receive the text
message ``reload``.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import WebSocket

from .storage import DocumentStorage

logger = logging.getLogger(__name__)

RELOAD_MESSAGE = "reload"


def diff_snapshots(before: dict[str, float], after: dict[str, float]) -> list[tuple[str, str]]:
    """Return (event, name) pairs: ``add``, ``change`` or ``unlink``."""
    events: list[tuple[str, str]] = []
    for name, mtime in after.items():
        if name not in before:
            events.append(("add", name))
        elif before[name] != mtime:
            events.append(("change", name))
    for name in before:
        if name not in after:
            events.append(("unlink", name))
    return sorted(events, key=lambda e: e[1])


class ReloadHub:
    def __init__(self) -> None:
        self._clients: set[WebSocket] = set()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._clients.add(websocket)
        logger.info("Client connected for live reload.")

    def disconnect(self, websocket: WebSocket) -> None:
        self._clients.discard(websocket)

    async def broadcast_reload(self) -> int:
        sent = 0
        for websocket in list(self._clients):
            try:
                await websocket.send_text(RELOAD_MESSAGE)
                sent += 1
            except Exception:
                # Closed sockets are dropped; the browser reconnects on its own.
                self._clients.discard(websocket)
        return sent


async def watch_storage(
    storage: DocumentStorage,
    hub: ReloadHub,
    interval: float,
    previous: Optional[dict[str, float]] = None,
) -> None:
    """Broadcast a reload whenever the storage snapshot differs from the last one.

    ``previous`` is the baseline snapshot; it is taken on the first run when omitted.
    """
    if previous is None:
        previous = storage.snapshot()
    while True:
        await asyncio.sleep(max(0.1, interval))
        try:
            current = storage.snapshot()
        except OSError:
            logger.warning("Storage snapshot failed", exc_info=True)
            continue
        events = diff_snapshots(previous, current)
        previous = current
        if not events:
            continue
        for event, name in events:
            logger.info("%s has been %s", name, event)
        await hub.broadcast_reload()
