# agroscan/storage.py
"""
Local disk storage for uploaded photos.
"""

import os
import uuid

import aiofiles
import aiofiles.os

from .logger import console

EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


def new_storage_path(upload_dir: str, mime_type: str) -> str:
    """Unique on-disk name; the user's filename is never used as a path."""
    ext = EXTENSIONS.get(mime_type, "")
    return os.path.join(upload_dir, f"image-{uuid.uuid4().hex}{ext}")


async def save_upload(upload_dir: str, mime_type: str, data: bytes) -> str:
    path = new_storage_path(upload_dir, mime_type)
    async with aiofiles.open(path, "wb") as f:
        await f.write(data)
    return path


async def read_bytes(path: str) -> bytes:
    async with aiofiles.open(path, "rb") as f:
        return await f.read()


async def delete_file(path: str) -> bool:
    """
    Best-effort removal. Returns False when nothing was deleted; never raises
    so record deletion can go ahead regardless.
    """
    try:
        await aiofiles.os.remove(path)
        return True
    except FileNotFoundError:
        console.log(f"[yellow]Upload {path} already gone[/yellow]")
        return False
    except OSError as exc:
        console.log(f"[yellow]Could not delete upload {path}: {exc}[/yellow]")
        return False
