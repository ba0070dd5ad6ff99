import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        groq_api_key: str,
        groq_model: str,
        ai_timeout_secs: float,
        ai_max_tokens: int,
        rate_limit_ai: tuple[int, int],
        rate_limit_heavy: tuple[int, int],
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.groq_api_key = groq_api_key
        self.groq_model = groq_model
        self.ai_timeout_secs = ai_timeout_secs
        self.ai_max_tokens = ai_max_tokens
        self.rate_limit_ai = rate_limit_ai
        self.rate_limit_heavy = rate_limit_heavy


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _parse_limit(value: str) -> tuple[int, int]:
    """Parse a ``"<max_requests>/<window_seconds>"`` pair."""
    max_requests, _, window = value.partition("/")
    return int(max_requests), int(window or "60")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "UTC")
    groq_api_key = os.getenv("GROQ_API_KEY", "")
    groq_model = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")
    ai_timeout_secs = float(os.getenv("FINANCE_AI_TIMEOUT_SECS", "15"))
    ai_max_tokens = int(os.getenv("FINANCE_AI_MAX_TOKENS", "1024"))
    rate_limit_ai = _parse_limit(os.getenv("FINANCE_RATE_LIMIT_AI", "10/60"))
    rate_limit_heavy = _parse_limit(os.getenv("FINANCE_RATE_LIMIT_HEAVY", "30/60"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        groq_api_key=groq_api_key,
        groq_model=groq_model,
        ai_timeout_secs=ai_timeout_secs,
        ai_max_tokens=ai_max_tokens,
        rate_limit_ai=rate_limit_ai,
        rate_limit_heavy=rate_limit_heavy,
    )
