"""Configuration management for the conversion service."""

import os
from pathlib import Path


class Settings:
    """Application settings loaded from environment variables."""

    # Paths
    STORAGE_DIR: str = os.getenv("STORAGE_DIR", "/app/storage")
    DATABASE_PATH: str = os.getenv("DATABASE_PATH", "/app/data/app.db")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Server
    HOST: str = os.getenv("HOST", "127.0.0.1")
    PORT: int = int(os.getenv("PORT", "8000"))

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", f"sqlite+aiosqlite:///{DATABASE_PATH}")

    # Object storage
    UPLOAD_BUCKET: str = "video-uploads"
    OUTPUT_BUCKET: str = "video-outputs"
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")
    MAX_UPLOAD_MB: int = int(os.getenv("MAX_UPLOAD_MB", "500"))

    # External processing engine
    ENGINE_API_URL: str = os.getenv("ENGINE_API_URL", "https://api2.transloadit.com/assemblies")
    ENGINE_AUTH_KEY: str = os.getenv("ENGINE_AUTH_KEY", "")
    ENGINE_AUTH_SECRET: str = os.getenv("ENGINE_AUTH_SECRET", "")
    ENGINE_FFMPEG_STACK: str = os.getenv("ENGINE_FFMPEG_STACK", "v6.0.0")
    ENGINE_TIMEOUT: float = float(os.getenv("ENGINE_TIMEOUT", "60"))

    # Reconciliation (server-side polling)
    POLL_DENSE_INTERVAL: float = float(os.getenv("POLL_DENSE_INTERVAL", "3"))
    POLL_SPARSE_INTERVAL: float = float(os.getenv("POLL_SPARSE_INTERVAL", "5"))
    POLL_DENSE_WINDOW: float = float(os.getenv("POLL_DENSE_WINDOW", "30"))
    POLL_MAX_WAIT: float = float(os.getenv("POLL_MAX_WAIT", "300"))

    # Progress policy
    PROGRESS_LOW_WATERMARK: float = 40.0
    PROGRESS_CEILING: float = float(os.getenv("PROGRESS_CEILING", "85"))
    PROGRESS_POLL_STEP: float = 5.0
    PROGRESS_NUDGE_INTERVAL: float = float(os.getenv("PROGRESS_NUDGE_INTERVAL", "8"))
    PROGRESS_NUDGE_STEP: float = 10.0

    # Client poller
    CLIENT_POLL_INTERVAL: float = float(os.getenv("CLIENT_POLL_INTERVAL", "3"))

    # CORS
    CORS_ORIGINS: list = ["*"]

    @property
    def engine_configured(self) -> bool:
        return bool(self.ENGINE_AUTH_KEY and self.ENGINE_AUTH_SECRET)

    @classmethod
    def ensure_directories(cls):
        """Ensure storage buckets and the database directory exist."""
        import logging

        logger = logging.getLogger(__name__)

        storage_path = Path(cls.STORAGE_DIR)
        for bucket in (cls.UPLOAD_BUCKET, cls.OUTPUT_BUCKET):
            bucket_path = storage_path / bucket
            if not bucket_path.exists():
                bucket_path.mkdir(parents=True, exist_ok=True)
                logger.info(f"Created storage bucket: {bucket_path}")

        Path(cls.DATABASE_PATH).parent.mkdir(parents=True, exist_ok=True)


settings = Settings()
