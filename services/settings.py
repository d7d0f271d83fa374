# services/settings.py
import os
from decimal import Decimal, InvalidOperation

from flask import current_app, has_app_context


def cfg(key: str, default=None):
    v = os.environ.get(key)
    if v is not None:
        return v
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def cfg_bool(key: str, default: bool = False) -> bool:
    v = cfg(key)
    if v is None:
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "on")


def cfg_int(key: str, default: int) -> int:
    v = cfg(key)
    try:
        return int(v) if v is not None else default
    except (TypeError, ValueError):
        return default


def cfg_decimal(key: str, default: str) -> Decimal:
    v = cfg(key)
    try:
        return Decimal(str(v)) if v is not None else Decimal(default)
    except InvalidOperation:
        return Decimal(default)


def base_currency() -> str:
    return str(cfg("LEDGER_BASE_CURRENCY", "USD")).upper()
