"""Environment driven settings."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass
class TwineSettings:
    # Identity reported to instrumentors; None = must come from a ServerContext
    app_name: Optional[str] = None
    instance_id: Optional[str] = None
    log_level: str = "INFO"
    # Socket connect timeout for the httpx transport
    connect_timeout_ms: int = 200
    # How long a faulted node stays out of a StaticCluster / RedisCluster rotation
    node_down_seconds: float = 30.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "TwineSettings":
        env = os.environ if environ is None else environ
        settings = cls(
            app_name=env.get("TWINE_INSTRUMENTATION_APP_NAME") or None,
            instance_id=env.get("TWINE_INSTRUMENTATION_INSTANCE_ID") or None,
            log_level=env.get("TWINE_LOG_LEVEL", "INFO"),
        )
        try:
            settings.connect_timeout_ms = int(env.get("TWINE_CONNECT_TIMEOUT_MS", "200"))
        except ValueError:
            pass
        try:
            settings.node_down_seconds = float(env.get("TWINE_NODE_DOWN_SECONDS", "30"))
        except ValueError:
            pass
        return settings
