from pydantic_settings import BaseSettings
from functools import lru_cache
import os


MIB = 1024 * 1024


class Settings(BaseSettings):
    # Admission
    max_concurrent_analyses: int = 3
    max_queue_depth: int = 10
    rate_limit_requests: int = 10
    rate_limit_window_s: float = 60.0
    rate_limit_sweep_s: float = 60.0

    # Extraction bounds
    max_dom_elements: int = 500
    max_resource_bytes: int = 10 * MIB
    max_snapshot_bytes: int = 5 * MIB

    # Cache
    cache_max_bytes: int = 1024 * MIB
    cache_ttl_s: float = 24 * 60 * 60
    cache_maintenance_s: float = 300.0

    # Timeouts
    request_timeout_s: float = 30.0
    navigation_timeout_ms: int = 30000  # milliseconds
    extraction_step_timeout_s: float = 10.0
    inference_timeout_s: float = 120.0

    # Inference backend
    ollama_host: str = "http://localhost:11434"
    vision_model: str = "llava:7b"
    code_model: str = "codellama:13b"

    # Browser
    headless: bool = True
    viewport_width: int = 1920
    viewport_height: int = 1080
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    )

    log_level: str = "INFO"
    log_json: bool = False

    class Config:
        # .env in the repo root (two levels up from backend/uisnap/) is optional
        _env_path = os.path.join(os.path.dirname(__file__), "..", "..", ".env")
        env_file = _env_path if os.path.exists(_env_path) else None
        env_file_encoding = "utf-8"
        env_prefix = "UISNAP_"
        extra = "ignore"


@lru_cache()
def get_settings():
    return Settings()
