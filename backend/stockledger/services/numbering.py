# Overview: Human-readable sale number generation.

from __future__ import annotations

import secrets
import string
import time

from flask import current_app

_ALPHABET = string.ascii_uppercase + string.digits


def generate_sale_number(prefix: str | None = None) -> str:
    """
    Display id like "SALE-1760871234567-K3F9QZ".

    Uniqueness is probabilistic (millisecond clock + 6 random characters);
    the sales.sale_number unique constraint is the backstop.
    """
    if prefix is None:
        prefix = current_app.config.get("SALE_NUMBER_PREFIX", "SALE")
    timestamp = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(6))
    return f"{prefix}-{timestamp}-{suffix}"
