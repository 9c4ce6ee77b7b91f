"""Signed trigger tokens for the scheduled entry points."""

from __future__ import annotations

import os

from itsdangerous import BadSignature, URLSafeTimedSerializer

CRON_PURPOSE = "check-stock"
DEFAULT_MAX_AGE = int(os.environ.get("CRON_TOKEN_MAX_AGE", 60 * 10))


def cron_secret() -> str | None:
    return os.environ.get("CRON_SECRET") or None


def _serializer(secret: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key=secret)


def generate_trigger_token(secret: str, purpose: str = CRON_PURPOSE) -> str:
    return _serializer(secret).dumps({"purpose": purpose}, salt=purpose)


def verify_trigger_token(
    token: str, secret: str, purpose: str = CRON_PURPOSE, max_age: int = DEFAULT_MAX_AGE
) -> bool:
    try:
        data = _serializer(secret).loads(token, max_age=max_age, salt=purpose)
    except BadSignature:
        return False
    return isinstance(data, dict) and data.get("purpose") == purpose
