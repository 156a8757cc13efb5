from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    supabase_url: str
    supabase_service_role_key: str
    recurly_api_key: str | None = None
    recurly_api_base: str = "https://v3.recurly.com"
    recurly_api_accept: str = "application/vnd.recurly.v2021-02-25"
    recurly_auth_schemes: str = "basic,bearer"  # first entry is the primary scheme
    recurly_timeout_seconds: float = 10.0
    attribution_window_hours: int = 6
    payment_event_types: str = "succeeded,paid"
    internal_replay_secret: str | None = None
    cors_allow_origins: str = "*"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )


def csv_setting(value: str | None) -> tuple[str, ...]:
    return tuple(item.strip().lower() for item in str(value or "").split(",") if item.strip())


settings = Settings()
