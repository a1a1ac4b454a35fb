"""Build metadata detection from deployment environment variables."""
from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional

SHA_KEYS = (
    "BUILD_SHA",
    "VERCEL_GIT_COMMIT_SHA",
    "NEXT_PUBLIC_VERCEL_GIT_COMMIT_SHA",
    "NEXT_PUBLIC_GIT_SHA",
)
TIMESTAMP_KEYS = (
    "BUILD_TIMESTAMP",
    "VERCEL_GIT_COMMIT_TIMESTAMP",
    "DEPLOYMENT_TIMESTAMP",
    "NOW_GITHUB_COMMIT_DATETIME",
    "SOURCE_DATE_EPOCH",
)


@dataclass(frozen=True)
class BuildInfo:
    sha: str
    ts: str

    def as_dict(self) -> Dict[str, str]:
        return asdict(self)


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def normalize_timestamp(value: Optional[str]) -> str:
    """Render epoch seconds/milliseconds or ISO strings as ISO-8601 UTC."""

    trimmed = (value or "").strip()
    if not trimmed:
        return "unknown"

    if trimmed.isdigit():
        seconds = int(trimmed) if len(trimmed) <= 10 else int(trimmed) / 1000
        try:
            return _iso(datetime.fromtimestamp(seconds, tz=timezone.utc))
        except (OverflowError, OSError, ValueError):
            return trimmed

    try:
        parsed = datetime.fromisoformat(trimmed)
    except ValueError:
        return trimmed
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return _iso(parsed)


def _first(environ: Mapping[str, str], keys) -> Optional[str]:
    for key in keys:
        value = environ.get(key)
        if value is not None:
            return value
    return None


def detect_build_info(environ: Optional[Mapping[str, str]] = None) -> BuildInfo:
    env = os.environ if environ is None else environ
    return BuildInfo(
        sha=_first(env, SHA_KEYS) or "unknown",
        ts=normalize_timestamp(_first(env, TIMESTAMP_KEYS)),
    )


class BuildInfoProvider:
    """Caches detected build info until reset."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        self._environ = environ
        self._cached: Optional[BuildInfo] = None

    def get(self) -> BuildInfo:
        if self._cached is None:
            self._cached = detect_build_info(self._environ)
        return self._cached

    def reset(self) -> None:
        self._cached = None
