from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # --- Image Limits ---
    max_image_size_mb: int = 5
    max_image_size_bytes: int = 0  # Computed in model_post_init
    cache_max_age_seconds: int = 86400

    # --- URL Fetching ---
    fetch_timeout_seconds: float = 10.0
    max_redirects: int = 3
    max_url_length: int = 2048
    user_agent: str = "Mozilla/5.0 (compatible; PicketBot/1.0)"

    # --- Concurrency ---
    max_concurrent_fetches: int = 20

    # --- Rate Limiting ---
    redis_url: str = ""
    rate_limit_rpm: int = 60
    rate_limit_window_seconds: int = 60
    rate_limit_max_clients: int = 10000

    # --- Security ---
    allowed_origins: str = "*"

    # --- Logging ---
    log_level: str = "ERROR"

    model_config = {"env_prefix": "", "case_sensitive": False}

    def model_post_init(self, __context) -> None:
        if self.max_image_size_bytes == 0:
            self.max_image_size_bytes = self.max_image_size_mb * 1024 * 1024


settings = Settings()
