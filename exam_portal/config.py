# exam_portal/config.py


from dotenv import load_dotenv
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()  # read .env first so plain os.getenv callers see the same values

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    # environment
    app_env: str = "local"
    log_level: str = "INFO"

    # Supabase & DB (required)
    database_url: str                        # DATABASE_URL
    supabase_url: str | None = None          # SUPABASE_URL
    supabase_jwt_secret: str | None = None   # SUPABASE_JWT_SECRET
    supabase_issuer: str | None = None       # SUPABASE_ISSUER
    supabase_jwt_audience: str = "authenticated"

    # module policy
    sequencing_enabled: bool = True
    required_modules: list[str] = ["listening", "reading", "writing", "speaking"]
    listening_duration_seconds: int = 30 * 60
    reading_duration_seconds: int = 60 * 60
    writing_duration_seconds: int = 60 * 60
    speaking_duration_seconds: int = 15 * 60
    submit_grace_seconds: int = 30

    # UI advisory thresholds
    time_warning_threshold_seconds: int = 300
    safety_threshold_seconds: int = 60
    heartbeat_interval_seconds: int = 30

    # attempt store
    store_timeout_seconds: float = 5.0
    store_retry_attempts: int = 3
    store_retry_base_delay: float = 0.2
    store_retry_max_delay: float = 2.0
    cas_max_rounds: int = 3

    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
