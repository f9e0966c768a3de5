"""Configuration settings for the forest analytics gateway."""

import os
from typing import Final
from dotenv import load_dotenv

load_dotenv()

# Upstream API configuration
GFW_API_BASE_URL: str = os.getenv("GFW_API_BASE_URL", "https://api.globalforestwatch.org")
GFW_DATA_API_BASE_URL: str = os.getenv("GFW_DATA_API_BASE_URL", "https://data-api.globalforestwatch.org")
GFW_API_KEY: str = os.getenv("GFW_API_KEY", "")
API_VERSION: Final[str] = "v3"

# Transport policy
REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30"))
TLS_CIPHERS: str = os.getenv("TLS_CIPHERS", "HIGH:!aNULL:!MD5")

# Region query bounds
DEFAULT_RADIUS_METERS: Final[float] = 10000.0
MIN_RADIUS_METERS: Final[float] = 100.0
MAX_RADIUS_METERS: Final[float] = 100000.0
COORDINATE_PRECISION: int = int(os.getenv("COORDINATE_PRECISION", "6"))  # decimals kept on lat/lng
RADIUS_PRECISION: Final[int] = 1

# Dataset defaults
DEFAULT_FOREST_LOSS_PERIOD: str = os.getenv("DEFAULT_FOREST_LOSS_PERIOD", "2001-2022")
TREE_COVER_THRESHOLD: int = int(os.getenv("TREE_COVER_THRESHOLD", "30"))

# Server configuration
HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "5000"))
DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO")

# Response cache configuration
CACHE_BACKEND: str = os.getenv("CACHE_BACKEND", "memory")  # memory | redis
REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")
CACHE_PREFIX: str = os.getenv("CACHE_PREFIX", "gfw-gateway")
CACHE_TTL_SHORT_SECONDS: int = int(os.getenv("CACHE_TTL_SHORT_SECONDS", "300"))  # alerts
CACHE_TTL_MEDIUM_SECONDS: int = int(os.getenv("CACHE_TTL_MEDIUM_SECONDS", "3600"))  # composite analysis
CACHE_TTL_LONG_SECONDS: int = int(os.getenv("CACHE_TTL_LONG_SECONDS", "86400"))  # loss statistics

# Retry policy for idempotent pass-through reads
RETRY_MAX_ATTEMPTS: int = int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
RETRY_BASE_DELAY_SECONDS: float = float(os.getenv("RETRY_BASE_DELAY_SECONDS", "0.5"))
RETRY_MAX_DELAY_SECONDS: float = float(os.getenv("RETRY_MAX_DELAY_SECONDS", "5.0"))
