# agroscan/poller.py
"""
Client side status polling.

Re-requests an image record at a fixed interval until its analysis reaches
"completed" or "failed". Reads have no side effects, so polling is safe to
repeat or abandon at any point.
"""

import asyncio
import time
from typing import Any, Dict, Optional

import httpx

from .logger import console

TERMINAL_STATUSES = ("completed", "failed")
DEFAULT_INTERVAL = 3.0


class PollTimeout(Exception):
    def __init__(self, image_id: str, last_status: Optional[str]):
        super().__init__(f"image {image_id} still {last_status or 'unknown'} after timeout")
        self.image_id = image_id
        self.last_status = last_status


async def fetch_image(client: httpx.AsyncClient, image_id: str, owner_id: str) -> Dict[str, Any]:
    response = await client.get(f"/api/images/{image_id}", headers={"X-User-Id": owner_id})
    response.raise_for_status()
    return response.json()


async def wait_for_analysis(
    client: httpx.AsyncClient,
    image_id: str,
    owner_id: str,
    interval: float = DEFAULT_INTERVAL,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Poll until the record is terminal and return it.

    Transport errors and 5xx replies are logged and retried on the next tick.
    A 404 (record deleted or never ours) is raised immediately.
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    last_status = None

    while True:
        try:
            record = await fetch_image(client, image_id, owner_id)
            last_status = record.get("status")
            if last_status in TERMINAL_STATUSES:
                return record
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code < 500:
                raise
            console.log(f"[yellow]Polling {image_id}: server error {exc.response.status_code}[/yellow]")
        except httpx.TransportError as exc:
            console.log(f"[yellow]Polling {image_id}: {exc!r}[/yellow]")

        if deadline is not None and time.monotonic() + interval > deadline:
            raise PollTimeout(image_id, last_status)
        await asyncio.sleep(interval)
