# agroscan/main.py
import asyncio
import os
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles

from .config import ALLOWED_MIME_TYPES, Settings
from .job_manager import dispatch_analysis, drain, running_count
from .logger import console
from .metrics import IMAGES_UPLOADED, router as metrics_router
from .models import ImageList, ImageOut, ImageRecord, ImageStatus, UploadedImage, UploadResponse
from .overlay import boxes_to_svg, bytes_to_data_uri, image_size
from .storage import delete_file, read_bytes, save_upload
from .store import ImageStore, RecordNotFound, build_store
from .vision import GeminiVisionClient, VisionClient

SHUTDOWN_DRAIN_SECONDS = 10.0


def public_path(record: ImageRecord) -> str:
    return f"/uploads/{os.path.basename(record.storage_path)}"


def to_image_out(record: ImageRecord) -> ImageOut:
    return ImageOut(
        id=record.id,
        filename=record.filename,
        status=record.status,
        path=public_path(record),
        created_at=record.created_at,
        raw_model_output=record.raw_model_output,
        analysis=record.analysis,
    )


def get_store(request: Request) -> ImageStore:
    return request.app.state.store


def get_owner_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity is resolved upstream and forwarded as X-User-Id."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="missing X-User-Id header")
    return x_user_id


async def _owned_record(store: ImageStore, record_id: str, owner_id: str) -> ImageRecord:
    try:
        record = await asyncio.to_thread(store.get, record_id)
    except RecordNotFound:
        raise HTTPException(status_code=404, detail="image not found")
    # Other users' records look exactly like missing ones
    if record.owner_id != owner_id:
        raise HTTPException(status_code=404, detail="image not found")
    return record


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[ImageStore] = None,
    vision_client: Optional[VisionClient] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    os.makedirs(settings.upload_dir, exist_ok=True)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.settings = settings
        app.state.store = store or build_store(settings)
        app.state.vision_client = vision_client or GeminiVisionClient.from_settings(settings)
        app.state.store.open()
        console.log(f"[green]agroscan ready (store={type(app.state.store).__name__})[/green]")
        try:
            yield
        finally:
            await drain(SHUTDOWN_DRAIN_SECONDS)
            app.state.store.close()

    app = FastAPI(title="Agroscan Field Analysis API", version="1.0.0", lifespan=lifespan)
    app.include_router(metrics_router)
    app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")

    @app.get("/health")
    def health() -> Dict[str, object]:
        return {"status": "ok", "analysesRunning": running_count()}

    @app.post("/api/images/upload", status_code=202, response_model=UploadResponse)
    async def upload_images(
        request: Request,
        images: Optional[List[UploadFile]] = File(None),
        owner_id: str = Depends(get_owner_id),
        store: ImageStore = Depends(get_store),
    ):
        """
        Store each photo, create a pending record and start its analysis.

        Responds right away; clients poll GET /api/images/{id} for the result.
        """
        if not images:
            raise HTTPException(status_code=400, detail="no files uploaded")
        if len(images) > settings.max_files_per_upload:
            raise HTTPException(
                status_code=400,
                detail=f"at most {settings.max_files_per_upload} files per upload",
            )
        for upload in images:
            if upload.content_type not in ALLOWED_MIME_TYPES:
                raise HTTPException(
                    status_code=415, detail="only JPEG, PNG and WebP images are allowed"
                )

        vision = request.app.state.vision_client
        uploaded = []
        payloads = []
        for upload in images:
            data = await upload.read()
            try:
                image_size(data)
            except OSError:
                raise HTTPException(
                    status_code=422, detail=f"{upload.filename or 'upload'} is not a readable image"
                )
            payloads.append(data)

        for upload, data in zip(images, payloads):
            path = await save_upload(settings.upload_dir, upload.content_type, data)
            record_id = await asyncio.to_thread(
                store.create, owner_id, path, upload.filename or os.path.basename(path), upload.content_type
            )
            IMAGES_UPLOADED.inc()

            dispatch_analysis(record_id, store, vision, settings.analysis_timeout_seconds)
            console.log(f"[blue]Received image {record_id} from {owner_id}[/blue]")

            uploaded.append(
                UploadedImage(
                    id=record_id,
                    filename=upload.filename or "",
                    status=ImageStatus.PENDING,
                    path=f"/uploads/{os.path.basename(path)}",
                )
            )

        return UploadResponse(images=uploaded)

    @app.get("/api/images", response_model=ImageList, response_model_by_alias=True)
    async def list_images(
        owner_id: str = Depends(get_owner_id),
        store: ImageStore = Depends(get_store),
    ):
        records = await asyncio.to_thread(store.list_by_owner, owner_id)
        return ImageList(images=[to_image_out(r) for r in records])

    @app.get("/api/images/{record_id}", response_model=ImageOut, response_model_by_alias=True)
    async def get_image(
        record_id: str,
        owner_id: str = Depends(get_owner_id),
        store: ImageStore = Depends(get_store),
    ):
        record = await _owned_record(store, record_id, owner_id)
        return to_image_out(record)

    @app.get("/api/images/{record_id}/overlay")
    async def get_overlay(
        record_id: str,
        owner_id: str = Depends(get_owner_id),
        store: ImageStore = Depends(get_store),
    ):
        """SVG of the photo with the detected boxes drawn on top."""
        record = await _owned_record(store, record_id, owner_id)
        if record.status is not ImageStatus.COMPLETED:
            raise HTTPException(status_code=409, detail=f"analysis is {record.status.value}")

        try:
            image_bytes = await read_bytes(record.storage_path)
        except FileNotFoundError:
            raise HTTPException(status_code=404, detail="image file missing")

        try:
            width, height = image_size(image_bytes)
        except OSError:
            raise HTTPException(status_code=422, detail="stored file is not a readable image")
        svg = boxes_to_svg(
            record.analysis.detected_items,
            width=width,
            height=height,
            image_data_uri=bytes_to_data_uri(image_bytes, record.mime_type),
        )
        return Response(content=svg, media_type="image/svg+xml")

    @app.delete("/api/images/{record_id}")
    async def delete_image(
        record_id: str,
        owner_id: str = Depends(get_owner_id),
        store: ImageStore = Depends(get_store),
    ):
        record = await _owned_record(store, record_id, owner_id)
        try:
            await asyncio.to_thread(store.delete, record_id)
        except RecordNotFound:
            raise HTTPException(status_code=404, detail="image not found")
        await delete_file(record.storage_path)
        console.log(f"[blue]Deleted image {record_id}[/blue]")
        return JSONResponse(status_code=200, content={"message": "image deleted"})

    return app
