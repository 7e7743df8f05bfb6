from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # Gemini: every generation call goes through the shared permit gate
    gemini_api_key: str = ""
    generation_model: str = "gemini-2.5-flash"
    image_model: str = "gemini-2.0-flash-preview-image-generation"
    generation_timeout_s: float = 60.0
    lore_writer_timeout_s: float = 120.0
    lore_writer_max_tokens: int = 800
    notification_timeout_s: float = 25.0
    round_result_timeout_s: float = 15.0
    round_result_max_tokens: int = 80
    round_result_temperature: float = 0.9
    image_timeout_s: float = 60.0

    # Pipeline sizes
    rounds_capacity: int = 100
    batch_size: int = 20
    pending_capacity: int = 10
    dedupe_capacity: int = 100
    chronicle_capacity: int = 10

    # Publishing toggles (all off by default; the worker still generates)
    publish_long_form: bool = False
    publish_short_form: bool = False
    short_form_images: bool = False

    # Long-form channel (Firestore)
    google_cloud_project: str = ""
    firestore_emulator_host: Optional[str] = None
    chronicles_collection: str = "chronicles"
    publish_timeout_s: float = 20.0

    # Short-form channel: signing bridge in front of X
    short_form_bridge_url: str = ""
    short_form_bridge_token: str = ""
    short_form_timeout_s: float = 25.0
    short_form_publish_attempts: int = 3

    # Round-result comments are pushed back to the game backend
    game_backend_url: str = ""
    game_backend_token: str = ""

    # Daily marketing post. 60 min window => T-30..T+30; jitter 15 => T-15..T+15
    marketing_enabled: bool = False
    marketing_time: str = "20:00"
    marketing_timezone: str = "Europe/Warsaw"
    marketing_window_minutes: int = 60
    marketing_jitter_minutes: int = 15
    marketing_max_attempts: int = 2
    marketing_hashtag: str = "#NEARCON26"

    # Short-form notification acceptance
    notification_max_attempts: int = 4
    notification_max_chars: int = 260

    log_level: str = "INFO"
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]
    debug: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )


settings = Settings()
