"""Validate the process environment before deploying."""
from __future__ import annotations

import logging
from typing import List, Mapping, Optional

from .config import AppConfig, EnvValidationError, load_config
from .logging_config import configure_logging

logger = logging.getLogger(__name__)


def present_keys(config: AppConfig) -> List[str]:
    """Environment keys that were actually supplied, not filled by defaults."""

    return sorted(config.model_dump(by_alias=True, exclude_unset=True).keys())


def check_env(environ: Optional[Mapping[str, str]] = None) -> int:
    try:
        config = load_config(environ)
    except EnvValidationError as exc:
        logger.error(
            "missing or invalid environment keys",
            extra={"missing": exc.missing_keys},
        )
        return 1

    logger.info("validated environment keys", extra={"keys": present_keys(config)})
    return 0


def main() -> int:
    configure_logging("INFO")
    return check_env()


if __name__ == "__main__":
    raise SystemExit(main())
