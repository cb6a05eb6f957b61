from __future__ import annotations

import httpx

from .errors import DependencyFetchError
from .settings import settings


def parse_environment(data: str) -> dict[str, str]:
    """Decode a newline-delimited ``KEY=VALUE`` payload.

    Blank lines, comments and lines without ``=`` are skipped. Only the key
    is trimmed; the value is everything after the first ``=``, verbatim.
    """
    env: dict[str, str] = {}
    for line in data.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if key:
            env[key] = value
    return env


def fetch_environment(url: str | None, timeout_s: float | None = None) -> dict[str, str]:
    """GET an environment bundle. No URL means no environment."""
    if not url:
        return {}
    timeout = settings.http_timeout_s if timeout_s is None else timeout_s
    try:
        with httpx.Client(timeout=timeout, follow_redirects=True) as client:
            resp = client.get(url)
    except httpx.HTTPError as e:
        raise DependencyFetchError(f"environment fetch failed: {type(e).__name__}: {e}") from e
    if resp.status_code != 200:
        raise DependencyFetchError(f"environment fetch failed: HTTP {resp.status_code}")
    return parse_environment(resp.text)
