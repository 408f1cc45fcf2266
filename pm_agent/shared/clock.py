"""Epoch-millisecond timestamps used across persisted records."""

from __future__ import annotations

import time
import uuid


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id(prefix: str) -> str:
    """Build ``<prefix>-<epoch ms>-<6 hex chars>`` identifiers."""

    return f"{prefix}-{now_ms()}-{uuid.uuid4().hex[:6]}"
