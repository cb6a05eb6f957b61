from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("CRO_DB_PATH", "cro.db")
    aws_region: str | None = os.getenv("AWS_REGION")
    http_timeout_s: int = _env_int("CRO_HTTP_TIMEOUT_S", 10)

    # Stack cache
    stack_cache_ttl_s: int = _env_int("CRO_STACK_CACHE_TTL_S", 5)
    # Every describe goes upstream; the test region implies it.
    always_fresh: bool = _env_bool("CRO_ALWAYS_FRESH", os.getenv("AWS_REGION") == "test")

    # Rack
    rack: str = os.getenv("RACK", "")
    releases_table: str = os.getenv("CRO_RELEASES_TABLE", f"{os.getenv('RACK', '')}-releases")
    system_tag: str = os.getenv("CRO_SYSTEM_TAG", "rack")
    template_url: str = os.getenv(
        "CRO_TEMPLATE_URL", "https://rack-releases.s3.amazonaws.com/release/{version}/formation.json"
    )


settings = Settings()
