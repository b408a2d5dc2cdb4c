# agroscan/vision.py
"""
Vision model client for weed/crop analysis.

The model gets the photo plus a fixed instruction asking for JSON only. Its
reply is returned untouched: callers must not assume it is valid JSON.
"""

from typing import Optional

from google import genai
from google.genai import types

from .config import Settings
from .logger import console

ANALYSIS_PROMPT = """You are an agricultural expert analyzing field images for weed detection and crop segmentation.

Analyze this agricultural field image and:
1) Identify areas affected by weeds
2) Identify healthy crop areas
3) Provide detection bounding boxes for prominent items

Return ONLY valid JSON with no markdown fencing, using this schema:
{
  "totalArea": number,
  "weedCoverage": number,
  "healthyCropCoverage": number,
  "items": [
    {
      "label": string,
      "confidence": number,
      "box_2d": [y0, x0, y1, x1]
    }
  ],
  "recommendations": string[]
}

totalArea, weedCoverage and healthyCropCoverage are percentages from 0 to 100.
label is a short category such as "weed", "crop" or "bare_soil".
confidence is a percentage from 0 to 100.
box_2d is [ymin, xmin, ymax, xmax] normalized to 0-1000 of the image height and width."""


class VisionNotConfigured(RuntimeError):
    pass


class VisionClient:
    """Base class for vision model backends."""

    async def analyze(self, image_bytes: bytes, mime_type: str) -> str:
        """Return the model's raw text reply for one photo."""
        raise NotImplementedError


class GeminiVisionClient(VisionClient):
    def __init__(self, api_key: Optional[str], model: str = "gemini-2.5-pro"):
        self.model = model
        if not api_key:
            console.log("[yellow]GEMINI_API_KEY not set - image analysis will fail[/yellow]")
            self._client = None
        else:
            self._client = genai.Client(api_key=api_key)

    @classmethod
    def from_settings(cls, settings: Settings) -> "GeminiVisionClient":
        return cls(api_key=settings.gemini_api_key, model=settings.gemini_model)

    @property
    def configured(self) -> bool:
        return self._client is not None

    async def analyze(self, image_bytes: bytes, mime_type: str) -> str:
        if self._client is None:
            raise VisionNotConfigured("Gemini client not configured - set GEMINI_API_KEY")

        response = await self._client.aio.models.generate_content(
            model=self.model,
            contents=[
                types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
                ANALYSIS_PROMPT,
            ],
        )
        return response.text or ""
