# agroscan/job_manager.py
"""
Background analysis of uploaded images.

Each uploaded image gets its own asyncio task. The task owns exactly one
record id and reports its outcome only through the store:

    pending -> processing -> completed | failed

The terminal write happens once and carries status, raw model text and the
analysis together. The worker never raises; any failure ends as a "failed"
record.
"""

import asyncio
import time
from typing import Optional, Set

from .logger import console
from .metrics import (
    ANALYSES_FINISHED,
    ANALYSES_IN_FLIGHT,
    ANALYSIS_SECONDS,
    MODEL_OUTPUT_FALLBACKS,
)
from .models import ImageStatus
from .normalizer import build_analysis, extract_json_object
from .storage import read_bytes
from .store import ImageStore, StoreError
from .vision import VisionClient

# Strong references so the loop does not garbage collect running tasks
_RUNNING: Set[asyncio.Task] = set()


async def process_image(
    record_id: str,
    store: ImageStore,
    vision_client: VisionClient,
    timeout_seconds: float,
) -> Optional[ImageStatus]:
    """
    Run one analysis to a terminal state.

    Returns the terminal status written, or None when the record could not be
    claimed (deleted before the task started, or already handled).
    """
    console.log(f"[yellow]Starting analysis for image {record_id}[/yellow]")

    try:
        await asyncio.to_thread(store.mark_processing, record_id)
        record = await asyncio.to_thread(store.get, record_id)
    except StoreError as exc:
        console.log(f"[yellow]Skipping image {record_id}: {exc}[/yellow]")
        return None
    except Exception as e:
        console.log(f"[red]Image {record_id} could not be loaded: {e!r}[/red]")
        return await _mark_failed(store, record_id)

    started = time.perf_counter()
    try:
        image_bytes = await read_bytes(record.storage_path)
        raw_text = await asyncio.wait_for(
            vision_client.analyze(image_bytes, record.mime_type),
            timeout=timeout_seconds,
        )

        payload = extract_json_object(raw_text)
        if payload is None:
            MODEL_OUTPUT_FALLBACKS.inc()
            console.log(f"[yellow]Image {record_id}: no JSON in model reply, using placeholder[/yellow]")
        analysis = build_analysis(payload)

        await asyncio.to_thread(
            store.update_result, record_id, raw_text, analysis, ImageStatus.COMPLETED
        )
        ANALYSES_FINISHED.labels(status="completed").inc()
        console.log(
            f"[green]Image {record_id} done: weed {analysis.weed_coverage_percent}%, "
            f"crop {analysis.healthy_crop_coverage_percent}%, "
            f"{len(analysis.detected_items)} items[/green]"
        )
        return ImageStatus.COMPLETED

    except asyncio.TimeoutError:
        console.log(f"[red]Image {record_id} failed: model call exceeded {timeout_seconds}s[/red]")
        return await _mark_failed(store, record_id)

    except Exception as e:
        console.log(f"[red]Image {record_id} failed: {e!r}[/red]")
        return await _mark_failed(store, record_id)

    finally:
        ANALYSIS_SECONDS.observe(time.perf_counter() - started)


async def _mark_failed(store: ImageStore, record_id: str) -> Optional[ImageStatus]:
    try:
        await asyncio.to_thread(store.update_result, record_id, None, None, ImageStatus.FAILED)
    except Exception as exc:
        console.log(f"[red]Could not mark image {record_id} as failed: {exc!r}[/red]")
        return None
    ANALYSES_FINISHED.labels(status="failed").inc()
    return ImageStatus.FAILED


def _task_done(task: asyncio.Task) -> None:
    # Runs for cancelled tasks too, even ones cancelled before their first step
    _RUNNING.discard(task)
    ANALYSES_IN_FLIGHT.dec()


def dispatch_analysis(
    record_id: str,
    store: ImageStore,
    vision_client: VisionClient,
    timeout_seconds: float,
) -> asyncio.Task:
    """
    Schedule the analysis of a freshly created record and return immediately.

    Must be called from inside the running event loop (e.g. a request handler).
    """
    ANALYSES_IN_FLIGHT.inc()

    loop = asyncio.get_running_loop()
    task = loop.create_task(
        process_image(record_id, store, vision_client, timeout_seconds),
        name=f"analysis-{record_id}",
    )
    _RUNNING.add(task)
    task.add_done_callback(_task_done)
    return task


def running_count() -> int:
    return len(_RUNNING)


async def drain(timeout: float) -> None:
    """Give in-flight analyses a chance to finish before the store closes."""
    loop = asyncio.get_running_loop()
    pending = [t for t in _RUNNING if not t.done() and t.get_loop() is loop]
    if not pending:
        return
    console.log(f"[yellow]Waiting for {len(pending)} analyses to finish[/yellow]")
    _, still_running = await asyncio.wait(pending, timeout=timeout)
    for task in still_running:
        task.cancel()
    if still_running:
        console.log(f"[red]Cancelled {len(still_running)} unfinished analyses[/red]")
