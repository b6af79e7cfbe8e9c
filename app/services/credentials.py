"""Generation and display of the secrets the platform hands out."""

from __future__ import annotations

import secrets
import string

API_KEY_PREFIX = "tk_"
WEBHOOK_SECRET_PREFIX = "whsec_"
MASK = "••••••"
COMPANY_CODE_ALPHABET = string.ascii_uppercase + string.digits
COMPANY_CODE_LENGTH = 6


def generate_api_key() -> str:
    return f"{API_KEY_PREFIX}{secrets.token_hex(32)}"


def generate_webhook_secret(nbytes: int = 32) -> str:
    return f"{WEBHOOK_SECRET_PREFIX}{secrets.token_hex(nbytes)}"


def generate_session_token() -> str:
    # 256 bits, 64 hex chars
    return secrets.token_hex(32)


def generate_company_code() -> str:
    return "".join(secrets.choice(COMPANY_CODE_ALPHABET) for _ in range(COMPANY_CODE_LENGTH))


def mask_secret(value: str | None, *, visible: int = 4) -> str | None:
    if not value:
        return None
    if visible <= 0:
        return MASK
    return MASK + value[-visible:]
