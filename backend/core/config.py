from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "Schedule Engine"
    env: str = "dev"
    api_prefix: str = "/api"

    database_url: str = "sqlite:///./schedules.db"
    seed_demo_data: bool = True

    jwt_secret: str = "CHANGE_ME"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 30

    frontend_origin: str = "http://localhost:3000"

    log_level: str = "INFO"
    log_json: bool = False

    # Weeks are computed in this timezone (Monday to Sunday).
    timezone: str = "America/Sao_Paulo"

    # Weekly rollover. Cron fields: minute hour day-of-month month day-of-week (0 = Sunday).
    reset_cron: str = "1 0 * * 1"
    reset_scheduler_enabled: bool = True
    reset_batch_size: int = 25
    reset_max_workers: int = 4
    reset_instance_timeout_seconds: float = 30.0
    reset_retry_attempts: int = 3
    reset_retry_backoff_seconds: float = 0.5
    # An instance rolled over more recently than this is left alone, however far behind it is.
    reset_min_interval_days: float = 6.0

    # A week counts towards the streak when its completion rate reaches this percentage.
    streak_threshold: int = 50


settings = Settings()
