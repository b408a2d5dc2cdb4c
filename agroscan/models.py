# agroscan/models.py
import enum
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ImageStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ImageStatus.COMPLETED, ImageStatus.FAILED)


class CamelModel(BaseModel):
    """Snake case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DetectedItem(CamelModel):
    label: str = ""
    confidence_percent: float = 0.0
    # [yMin, xMin, yMax, xMax] on a 0-1000 grid; kept verbatim even when malformed
    bounding_box: Any = None


class AnalysisResult(CamelModel):
    total_area_percent: float = 100.0
    weed_coverage_percent: float
    healthy_crop_coverage_percent: float
    detected_items: List[DetectedItem] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class ImageRecord(CamelModel):
    id: str
    owner_id: str
    filename: str
    storage_path: str
    mime_type: str
    status: ImageStatus = ImageStatus.PENDING
    raw_model_output: Optional[str] = None
    analysis: Optional[AnalysisResult] = None
    created_at: datetime


class ImageOut(CamelModel):
    """Record as returned to API clients."""

    id: str
    filename: str
    status: ImageStatus
    path: str
    created_at: datetime
    raw_model_output: Optional[str] = None
    analysis: Optional[AnalysisResult] = None


class UploadedImage(CamelModel):
    id: str
    filename: str
    status: ImageStatus
    path: str


class UploadResponse(BaseModel):
    images: List[UploadedImage]


class ImageList(BaseModel):
    images: List[ImageOut]
