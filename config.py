"""
config.py — Flask configuration classes for the ShadowGuard screen auditor.
"""
import os
import secrets


class BaseConfig:
    """Base configuration shared by all environments."""
    SECRET_KEY = os.environ.get("SECRET_KEY") or secrets.token_hex(32)
    MAX_UPLOAD_MB = int(os.environ.get("MAX_UPLOAD_MB", 25))
    MAX_CONTENT_LENGTH = MAX_UPLOAD_MB * 1024 * 1024  # bytes

    if os.environ.get("VERCEL") == "1":
        DATABASE_URL = os.environ.get("DATABASE_URL", f"sqlite:///{os.path.join('/tmp', 'app.db')}")
    else:
        DATABASE_URL = os.environ.get("DATABASE_URL", f"sqlite:///{os.path.join(os.path.dirname(__file__), 'data', 'app.db')}")

    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    RATE_LIMIT = os.environ.get("RATE_LIMIT", "10 per minute")
    RATELIMIT_STORAGE_URI = os.environ.get("RATELIMIT_STORAGE_URI", "memory://")

    # Analysis backend
    GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "")
    GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-3-pro-preview")
    GEMINI_API_URL = os.environ.get(
        "GEMINI_API_URL",
        "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
    )
    BACKEND_TIMEOUT = float(os.environ.get("BACKEND_TIMEOUT", 180))

    # Tiling / pacing
    TILE_MAX_HEIGHT = int(os.environ.get("TILE_MAX_HEIGHT", 1536))
    TILE_OVERLAP = int(os.environ.get("TILE_OVERLAP", 150))
    TILE_COOLDOWN_SECONDS = float(os.environ.get("TILE_COOLDOWN_SECONDS", 5))
    RETRY_BACKOFF_SECONDS = float(os.environ.get("RETRY_BACKOFF_SECONDS", 5))
    MAX_RETRIES = int(os.environ.get("MAX_RETRIES", 2))
    MAX_IMAGE_WIDTH = int(os.environ.get("MAX_IMAGE_WIDTH", 2048))
    JPEG_QUALITY = int(os.environ.get("JPEG_QUALITY", 90))

    # Audit history entries kept per session
    HISTORY_LIMIT = 100

    # Seconds a new audit waits for the session's previous run to store its results
    RUN_HANDOFF_TIMEOUT = float(os.environ.get("RUN_HANDOFF_TIMEOUT", 30))

    VERSION = "1.0.0"


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    TESTING = False
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{os.path.join(os.path.dirname(__file__), 'data', 'dev.db')}"
    )


class ProductionConfig(BaseConfig):
    DEBUG = False
    TESTING = False


class TestingConfig(BaseConfig):
    DEBUG = True
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    RATELIMIT_ENABLED = False
    GEMINI_API_KEY = "test-key"
    TILE_COOLDOWN_SECONDS = 0
    RETRY_BACKOFF_SECONDS = 0


config_map = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": DevelopmentConfig,
}
