"""
Configuration for the points ledger

Loads configuration from environment variables using python-dotenv
"""

import os
from decimal import Decimal
from pathlib import Path
from typing import List

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR: str = os.getenv("LOG_DIR", "")

# Database
DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./points_ledger.db")
DATABASE_ECHO: bool = _flag("DATABASE_ECHO", "false")

# Analysis pricing, in points
INDIVIDUAL_ANALYSIS_COST: Decimal = Decimal(os.getenv("INDIVIDUAL_ANALYSIS_COST", "25.00"))
GROUP_ANALYSIS_COST: Decimal = Decimal(os.getenv("GROUP_ANALYSIS_COST", "500.00"))

# Purchases may drive a balance below zero unless disabled
ALLOW_OVERDRAFT: bool = _flag("ALLOW_OVERDRAFT", "true")

# Admin API tokens
ADMIN_JWT_SECRET: str = os.getenv("ADMIN_JWT_SECRET", "change-me")
ADMIN_JWT_ALGORITHM: str = os.getenv("ADMIN_JWT_ALGORITHM", "HS256")
ADMIN_TOKEN_TTL_SECONDS: int = int(os.getenv("ADMIN_TOKEN_TTL_SECONDS", "3600"))

CORS_ORIGINS: List[str] = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "*").split(",")
    if origin.strip()
]
