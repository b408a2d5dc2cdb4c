from agroscan.config import Settings


def test_defaults(monkeypatch):
    for name in ("GEMINI_API_KEY", "GEMINI_MODEL", "ANALYSIS_TIMEOUT_SECONDS", "STORE_BACKEND", "DB_PORT", "MAX_FILES_PER_UPLOAD"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("agroscan.config.load_dotenv", lambda: None)

    settings = Settings.from_env()
    assert settings.gemini_api_key is None
    assert settings.gemini_model == "gemini-2.5-pro"
    assert settings.analysis_timeout_seconds == 120.0
    assert settings.max_files_per_upload == 5
    assert settings.store_backend == "postgres"
    assert settings.db_port == 5432


def test_from_env(monkeypatch):
    monkeypatch.setattr("agroscan.config.load_dotenv", lambda: None)
    monkeypatch.setenv("GEMINI_API_KEY", "secret")
    monkeypatch.setenv("ANALYSIS_TIMEOUT_SECONDS", "7.5")
    monkeypatch.setenv("STORE_BACKEND", "MEMORY")
    monkeypatch.setenv("MAX_FILES_PER_UPLOAD", "2")
    monkeypatch.setenv("UPLOAD_DIR", "/data/uploads")

    settings = Settings.from_env()
    assert settings.gemini_api_key == "secret"
    assert settings.analysis_timeout_seconds == 7.5
    assert settings.store_backend == "memory"
    assert settings.max_files_per_upload == 2
    assert settings.upload_dir == "/data/uploads"
