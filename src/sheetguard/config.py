"""Configuration management for SheetGuard."""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def _parse_cors_origins() -> list[str]:
    """Parse CORS origins from environment variable."""
    cors_env = os.getenv("CORS_ALLOW_ORIGINS")
    if cors_env:
        return cors_env.split(",")
    return ["*"]


class Settings(BaseModel):
    """Application settings."""

    # Google Sheets / Drive API credentials
    google_credentials_path: Path = Path(os.getenv("GOOGLE_CREDENTIALS_PATH", "credentials.json"))
    google_token_path: Path = Path(os.getenv("GOOGLE_TOKEN_PATH", "token.json"))

    # Server settings
    host: str = os.getenv("HOST", "127.0.0.1")
    port: int = int(os.getenv("PORT", "8000"))
    debug: bool = os.getenv("DEBUG", "false").lower() == "true"

    # CORS settings (comma-separated list of allowed origins, or * for all)
    cors_allow_origins: list[str] = _parse_cors_origins()

    # Effect scope - used when a caller's scope omits maxCellsAffected
    default_max_cells_affected: int = int(os.getenv("DEFAULT_MAX_CELLS_AFFECTED", "50000"))

    # Diff tiers
    diff_cost_budget: int = int(os.getenv("DIFF_COST_BUDGET", "5000"))
    diff_sample_size: int = int(os.getenv("DIFF_SAMPLE_SIZE", "10"))
    diff_sample_cost_ratio: float = float(os.getenv("DIFF_SAMPLE_COST_RATIO", "0.25"))

    # Transactions
    transaction_ttl_seconds: int = int(os.getenv("TRANSACTION_TTL_SECONDS", "300"))  # 5 minutes

    # Snapshots
    max_snapshots_per_document: int = int(os.getenv("MAX_SNAPSHOTS_PER_DOCUMENT", "10"))
    snapshot_folder_id: Optional[str] = os.getenv("SNAPSHOT_FOLDER_ID") or None
    snapshot_failure_policy: str = os.getenv("SNAPSHOT_FAILURE_POLICY", "fail_open")  # or "fail_closed"

    # Registry durability ('memory' or 'sqlite')
    registry_backend: str = os.getenv("REGISTRY_BACKEND", "memory")
    registry_database_path: Path = Path(os.getenv("REGISTRY_DATABASE_PATH", "data/sheetguard.db"))


settings = Settings()
