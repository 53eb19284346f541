"""
Configuration settings for the application
"""

import os
from typing import List, Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """Application settings"""

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./guestlist.db")

    # Application
    BASE_URL: str = os.getenv("BASE_URL", "http://localhost:8000")

    # CORS
    ALLOW_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5000",
        "http://localhost:8000",
    ]

    # Real-time collaboration
    HEARTBEAT_INTERVAL_SECONDS: float = 30.0
    CONNECTION_TIMEOUT_SECONDS: float = 60.0
    SWEEP_INTERVAL_SECONDS: float = 30.0
    STREAM_QUEUE_SIZE: int = 100
    # Reject broadcast triggers from users who are not members of the organization
    BROADCAST_REQUIRE_MEMBERSHIP: bool = os.getenv("BROADCAST_REQUIRE_MEMBERSHIP", "true").lower() in ("1", "true", "yes")

    # AI assistant
    OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    ASSISTANT_MAX_TOOL_ROUNDS: int = 5

    # File limits
    MAX_UPLOAD_SIZE: int = 10 * 1024 * 1024  # 10MB

    # Rate limiting
    RATE_LIMIT_PER_MINUTE: int = 30

    class Config:
        env_file = ".env"

settings = Settings()
