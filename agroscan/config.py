# agroscan/config.py
"""
Environment driven settings.

Values are read once at startup. A local .env file is honoured so the
service can be run without exporting every variable by hand.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

ALLOWED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp")


@dataclass(frozen=True)
class Settings:
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-pro"
    analysis_timeout_seconds: float = 120.0
    upload_dir: str = "uploads"
    max_files_per_upload: int = 5
    store_backend: str = "postgres"
    db_host: str = "postgres"
    db_port: int = 5432
    db_name: str = "agroscan"
    db_user: str = "postgres"
    db_password: str = "postgres"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-pro"),
            analysis_timeout_seconds=float(os.getenv("ANALYSIS_TIMEOUT_SECONDS", "120")),
            upload_dir=os.getenv("UPLOAD_DIR", "uploads"),
            max_files_per_upload=int(os.getenv("MAX_FILES_PER_UPLOAD", "5")),
            store_backend=os.getenv("STORE_BACKEND", "postgres").lower(),
            db_host=os.getenv("DB_HOST", "postgres"),
            db_port=int(os.getenv("DB_PORT", "5432")),
            db_name=os.getenv("DB_NAME", "agroscan"),
            db_user=os.getenv("DB_USER", "postgres"),
            db_password=os.getenv("DB_PASSWORD", "postgres"),
        )
