from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'School Attendance Engine'
    app_env: str = 'local'
    app_timezone: str = 'Asia/Jakarta'
    database_url: str = 'sqlite:///./attendance.db'
    lookahead_default_hours: int = 24
    lookahead_max_hours: int = 168
    auto_close_grace_minutes: int = 15
    check_in_lead_minutes: int = 10
    event_queue_size: int = 256
    sqlite_busy_timeout_seconds: float = 15.0
    db_slow_query_ms: int = 100
    metrics_slow_ms: int = 200


settings = Settings()
