"""
Configuration management for the converter service
"""

import os
import tempfile
from typing import Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


RESOLVER_BACKENDS = ("api", "ytdlp")
AUDIO_QUALITIES = ("64", "96", "128", "192", "256", "320")  # kbps


class Settings:
    """Application settings"""

    # Application
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    # Hosting platforms inject PORT; API_PORT wins when both are set
    API_PORT: int = int(os.getenv("API_PORT", os.getenv("PORT", "8000")))
    MAX_REQUEST_BODY_BYTES: int = int(os.getenv("MAX_REQUEST_BODY_BYTES", "1024"))

    # CORS
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "http://localhost:3000")

    # Access gate
    APP_PASSWORD: str = os.getenv("APP_PASSWORD", "")
    AUTH_ENABLED: bool = os.getenv("AUTH_ENABLED", "true").lower() == "true"
    AUTH_PROTECT_INFO: bool = os.getenv("AUTH_PROTECT_INFO", "true").lower() == "true"
    SESSION_TTL_SECONDS: int = int(os.getenv("SESSION_TTL_SECONDS", "86400"))  # 24 hours

    # Request throttle
    CONVERT_RATE_LIMIT: int = int(os.getenv("CONVERT_RATE_LIMIT", "20"))
    CONVERT_RATE_WINDOW_SECONDS: int = int(os.getenv("CONVERT_RATE_WINDOW_SECONDS", "3600"))
    API_RATE_LIMIT: int = int(os.getenv("API_RATE_LIMIT", "100"))
    API_RATE_WINDOW_SECONDS: int = int(os.getenv("API_RATE_WINDOW_SECONDS", "900"))

    # Resolver Configuration
    # "api" calls a hosted resolution service, "ytdlp" resolves locally with yt-dlp
    RESOLVER_BACKEND: str = os.getenv("RESOLVER_BACKEND", "api").lower()
    RESOLVER_API_URL: str = os.getenv("RESOLVER_API_URL", "https://youtube-mp36.p.rapidapi.com")
    RESOLVER_API_KEY: str = os.getenv("RESOLVER_API_KEY", "")
    RESOLVER_API_HOST: str = os.getenv("RESOLVER_API_HOST", "youtube-mp36.p.rapidapi.com")
    RESOLVER_LOOKUP_PATH: str = os.getenv("RESOLVER_LOOKUP_PATH", "/dl")
    RESOLVER_TIMEOUT_SECONDS: float = float(os.getenv("RESOLVER_TIMEOUT_SECONDS", "60"))

    # Media download
    DOWNLOAD_TIMEOUT_SECONDS: float = float(os.getenv("DOWNLOAD_TIMEOUT_SECONDS", "300"))
    MAX_REDIRECTS: int = int(os.getenv("MAX_REDIRECTS", "5"))
    DEFAULT_AUDIO_QUALITY: str = os.getenv("DEFAULT_AUDIO_QUALITY", "192")

    # Scratch directory lifecycle
    TEMP_DIR: str = os.getenv("TEMP_DIR", os.path.join(tempfile.gettempdir(), "mp3relay"))
    TEMP_FILE_MAX_AGE_SECONDS: int = int(os.getenv("TEMP_FILE_MAX_AGE_SECONDS", "1800"))  # 30 minutes
    SWEEP_INTERVAL_SECONDS: int = int(os.getenv("SWEEP_INTERVAL_SECONDS", "900"))  # 15 minutes

    # FFmpeg Configuration (only needed when the resolver returns non-MP3 audio)
    FFMPEG_PATH: Optional[str] = os.getenv("FFMPEG_PATH", None)

    @property
    def auth_required(self) -> bool:
        """The gate is only active when enabled and a password is configured."""
        return self.AUTH_ENABLED and bool(self.APP_PASSWORD)

    @property
    def cors_origins_list(self) -> list:
        """Parse CORS origins into a list"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    def validate(self) -> None:
        """
        Validate configuration at startup.
        Raises ValueError on values the service cannot run with.
        """
        if self.RESOLVER_BACKEND not in RESOLVER_BACKENDS:
            raise ValueError(
                f"RESOLVER_BACKEND must be one of {', '.join(RESOLVER_BACKENDS)}, "
                f"got '{self.RESOLVER_BACKEND}'"
            )
        if self.RESOLVER_BACKEND == "api" and not self.RESOLVER_API_URL:
            raise ValueError("RESOLVER_API_URL is required when RESOLVER_BACKEND=api")

        positive = {
            "CONVERT_RATE_LIMIT": self.CONVERT_RATE_LIMIT,
            "CONVERT_RATE_WINDOW_SECONDS": self.CONVERT_RATE_WINDOW_SECONDS,
            "API_RATE_LIMIT": self.API_RATE_LIMIT,
            "API_RATE_WINDOW_SECONDS": self.API_RATE_WINDOW_SECONDS,
            "SESSION_TTL_SECONDS": self.SESSION_TTL_SECONDS,
            "TEMP_FILE_MAX_AGE_SECONDS": self.TEMP_FILE_MAX_AGE_SECONDS,
            "SWEEP_INTERVAL_SECONDS": self.SWEEP_INTERVAL_SECONDS,
            "RESOLVER_TIMEOUT_SECONDS": self.RESOLVER_TIMEOUT_SECONDS,
            "DOWNLOAD_TIMEOUT_SECONDS": self.DOWNLOAD_TIMEOUT_SECONDS,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")

        if self.MAX_REDIRECTS < 0:
            raise ValueError(f"MAX_REDIRECTS cannot be negative, got {self.MAX_REDIRECTS}")

        if self.DEFAULT_AUDIO_QUALITY not in AUDIO_QUALITIES:
            raise ValueError(
                f"DEFAULT_AUDIO_QUALITY must be one of {', '.join(AUDIO_QUALITIES)}, "
                f"got '{self.DEFAULT_AUDIO_QUALITY}'"
            )


# Global settings instance
settings = Settings()
