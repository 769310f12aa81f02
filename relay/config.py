from typing import Optional
from urllib.parse import urlparse

from pydantic_settings import BaseSettings

PLACEHOLDER_MARKERS = ("your-", "seu-", "seu_", "placeholder", "example.com", "changeme", "<", ">")


def is_valid_backend_url(url: Optional[str]) -> bool:
    """True for a real http(s) URL that is not a template placeholder."""
    if not url:
        return False
    cleaned = url.strip()
    lowered = cleaned.lower()
    if any(marker in lowered for marker in PLACEHOLDER_MARKERS):
        return False
    parsed = urlparse(cleaned)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


class Settings(BaseSettings):
    ai_backend_url: str = ""
    ai_backend_token: Optional[str] = None
    ai_timeout_seconds: float = 25.0

    delivery_base_url: str = "https://www.wasenderapi.com/api"
    delivery_api_key: Optional[str] = None
    delivery_timeout_seconds: float = 10.0

    webhook_secret: Optional[str] = None
    simulation_mode: bool = False
    history_window: int = 5

    debug_token: Optional[str] = None
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def ai_backend_configured(self) -> bool:
        return is_valid_backend_url(self.ai_backend_url)

    @property
    def delivery_configured(self) -> bool:
        return bool(self.delivery_api_key) and is_valid_backend_url(self.delivery_base_url)


settings = Settings()
