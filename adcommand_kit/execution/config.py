import os
from dataclasses import dataclass, field
from typing import List, Optional

DEFAULT_MODEL = "gpt-4.1-nano-2025-04-14"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass
class ExecutorConfig:
    model: str = DEFAULT_MODEL
    max_iterations: int = 15
    max_tool_failures: int = 3
    model_timeout: float = 60.0
    tool_timeout: float = 60.0
    rate_limit_backoff: float = 1.0
    session_ttl: float = 3600.0
    media_base_urls: List[str] = field(default_factory=lambda: ["localhost:3000"])
    fallback_daily_budget: int = 1500
    recent_material_seconds: float = 600.0
    max_command_materials: int = 5
    gateway_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "ExecutorConfig":
        media = os.getenv("ADCOMMAND_MEDIA_BASE_URLS", "")
        media_base_urls = [m.strip() for m in media.split(",") if m.strip()] or ["localhost:3000"]
        return cls(
            model=os.getenv("ADCOMMAND_MODEL", DEFAULT_MODEL),
            max_iterations=_env_int("ADCOMMAND_MAX_ITERATIONS", 15),
            max_tool_failures=_env_int("ADCOMMAND_MAX_TOOL_FAILURES", 3),
            model_timeout=_env_float("ADCOMMAND_MODEL_TIMEOUT", 60.0),
            tool_timeout=_env_float("ADCOMMAND_TOOL_TIMEOUT", 60.0),
            rate_limit_backoff=_env_float("ADCOMMAND_RATE_LIMIT_BACKOFF", 1.0),
            session_ttl=_env_float("ADCOMMAND_SESSION_TTL", 3600.0),
            media_base_urls=media_base_urls,
            fallback_daily_budget=_env_int("ADCOMMAND_FALLBACK_DAILY_BUDGET", 1500),
            recent_material_seconds=_env_float("ADCOMMAND_RECENT_MATERIAL_SECONDS", 600.0),
            max_command_materials=_env_int("ADCOMMAND_MAX_COMMAND_MATERIALS", 5),
            gateway_url=os.getenv("ADCOMMAND_GATEWAY_URL") or None,
        )
