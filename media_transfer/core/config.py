import os
from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "Media Transfer API"

    # Listening socket
    HOST: str = "0.0.0.0"
    PREFERRED_PORT: int = 8080
    FALLBACK_PORTS: List[int] = [8081, 8082, 8083, 8084, 8085, 8088, 8089, 8090]

    # Storage settings
    DATA_DIR: Path = Path("data")
    MEDIA_DIR: Path = Path("data/media")
    DATABASE_URL: Optional[str] = None  # defaults to sqlite under DATA_DIR
    STATIC_DIR: Optional[Path] = None

    # PIN gate
    PIN_ENABLED: bool = False
    UPLOAD_PIN: Optional[str] = os.getenv("UPLOAD_PIN")
    PIN_HEADER: str = "X-Upload-Pin"

    # Validation
    ALLOWED_EXTENSIONS: List[str] = ["mp4", "mkv"]
    ALLOWED_MIME_TYPES: List[str] = [
        "video/mp4",
        "video/x-matroska",
        "video/webm",
        "application/octet-stream",
    ]
    MAX_UPLOAD_SIZE: int = 0  # 0 means no limit beyond free space
    MIN_FREE_SPACE_BYTES: int = 500 * 1024 * 1024
    VERIFY_CONTENT_SIGNATURE: bool = True

    # Sessions and cleanup
    SESSION_TTL_SECONDS: int = 86400  # 24 hours
    CLEANUP_INTERVAL_SECONDS: int = 6 * 3600
    CLEANUP_ENABLED: bool = True
    ACTIVE_UPLOAD_IDLE_SECONDS: int = 300
    READ_TIMEOUT_SECONDS: float = 60.0

    LOG_LEVEL: str = "INFO"

    # Create directories if they don't exist
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.DATA_DIR.mkdir(parents=True, exist_ok=True)
        self.MEDIA_DIR.mkdir(parents=True, exist_ok=True)

    @property
    def database_url(self) -> str:
        return self.DATABASE_URL or f"sqlite:///{self.DATA_DIR / 'uploads.db'}"

    @property
    def candidate_ports(self) -> List[int]:
        ports = [self.PREFERRED_PORT]
        ports.extend(p for p in self.FALLBACK_PORTS if p != self.PREFERRED_PORT)
        return ports

# Global settings instance
settings = Settings()
