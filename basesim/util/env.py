from __future__ import annotations

import logging
import os
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def fix_ssl_env() -> None:
    """Normalize SSL certificate env vars before HTTP clients start.

    - If SSL_CERT_FILE points to a missing file, switch to the certifi bundle.
    - If SSL_CERT_DIR points to a missing directory, unset it.
    """
    file = os.environ.get("SSL_CERT_FILE")
    dir_ = os.environ.get("SSL_CERT_DIR")
    if file and not os.path.exists(file):
        import certifi
        logger.debug(f"SSL_CERT_FILE {file} missing, using certifi bundle")
        os.environ["SSL_CERT_FILE"] = certifi.where()
    if dir_ and not os.path.isdir(dir_):
        os.environ.pop("SSL_CERT_DIR", None)


def env_str(name: str, default: str = "") -> str:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


def env_decimal(name: str, default: Decimal) -> Decimal:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return Decimal(raw.strip())
    except InvalidOperation:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


def env_path(name: str, default: Path) -> Path:
    raw: Optional[str] = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return Path(raw.strip()).expanduser()
