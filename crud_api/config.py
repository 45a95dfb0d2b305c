"""Configuration helpers for the CRUD API template backend."""

from __future__ import annotations

import os
from typing import List
from urllib.parse import urlparse

from dotenv import load_dotenv

# Load environment variables from a .env file if present.
load_dotenv()


def _split_origins(value: str) -> List[str]:
    """Convert a comma-separated origin string into a clean list.

    Args:
        value (str): One or many origins separated by commas.
    Returns:
        List[str]: Normalized origin values with whitespace removed.
    """
    return [origin.strip() for origin in value.split(",") if origin.strip()]


def _build_sqlite_url() -> str:
    """Construct the default SQLite connection string."""
    sqlite_path_env = os.getenv("SQLITE_PATH", "data/crud_api.db")
    if sqlite_path_env == ":memory:":
        return "sqlite:///:memory:"

    project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    sqlite_path = os.path.expanduser(sqlite_path_env)
    if not os.path.isabs(sqlite_path):
        sqlite_path = os.path.normpath(os.path.join(project_root, sqlite_path))
    return f"sqlite:///{sqlite_path}"


def _normalize_base_url(value: str, fallback: str) -> str:
    candidate = (value or "").strip()
    if not candidate:
        return fallback
    parsed = urlparse(candidate if "://" in candidate else f"https://{candidate}")
    if not parsed.scheme or not parsed.netloc:
        return fallback
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path.rstrip('/')}"


APP_ENV = os.getenv("APP_ENV", "development").strip().lower()
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("PORT", "8000"))
# "*" keeps the API open to any origin; deployments narrow it with CORS_ORIGIN.
API_ALLOWED_ORIGINS = _split_origins(os.getenv("CORS_ORIGIN", "*"))
FRONTEND_URL = _normalize_base_url(os.getenv("FRONTEND_URL", ""), "http://localhost:3000")

DATABASE_URL = os.getenv("DATABASE_URL", "").strip() or _build_sqlite_url()