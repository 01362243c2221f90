from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


def to_int(value: Any, default: int) -> int:
    try:
        if value is None or value == "":
            return default
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def _sanitize_key_part(value: str, default: str) -> str:
    normalized = (value.strip() or default).replace(" ", "-")
    return normalized or default


@dataclass(slots=True)
class StorageSettings:
    redis_url: str
    key_prefix: str
    instance_id: str
    heartbeat_key: str
    claim_guard_prefix: str
    claim_record_prefix: str
    heartbeat_ttl_seconds: int
    claim_record_ttl_seconds: int

    @property
    def enabled(self) -> bool:
        return bool(self.redis_url)

    @classmethod
    def from_env(cls) -> "StorageSettings":
        prefix = _sanitize_key_part(os.getenv("REDIS_KEY_PREFIX", "degen_executor"), "degen_executor")
        return cls(
            redis_url=os.getenv("REDIS_URL", "").strip(),
            key_prefix=prefix,
            instance_id=_sanitize_key_part(
                os.getenv("DEGEN_EXECUTOR_INSTANCE_ID", ""),
                datetime.now(timezone.utc).strftime("run-%Y%m%dT%H%M%SZ"),
            ),
            heartbeat_key=os.getenv("REDIS_HEARTBEAT_KEY", f"{prefix}:heartbeat"),
            claim_guard_prefix=os.getenv("REDIS_CLAIM_GUARD_PREFIX", f"{prefix}:claims:guard"),
            claim_record_prefix=os.getenv("REDIS_CLAIM_RECORD_PREFIX", f"{prefix}:claims:record"),
            heartbeat_ttl_seconds=max(10, to_int(os.getenv("REDIS_HEARTBEAT_TTL_SECONDS"), 300)),
            claim_record_ttl_seconds=max(
                60,
                to_int(os.getenv("REDIS_CLAIM_RECORD_TTL_SECONDS"), 7 * 86400),
            ),
        )
