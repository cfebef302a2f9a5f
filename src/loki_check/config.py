from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Grafana / Loki
    loki_url: str = "http://localhost:3100"

    # Range-query window. Lines older than this are not searched.
    lookback_minutes: int = 10

    # Retry budget for a single verify() call. Ingestion is asynchronous, so a line
    # written a moment ago may only become queryable after a few attempts.
    max_attempts: int = 5
    retry_delay_seconds: float = 2.0
    request_timeout_seconds: float = 10.0

    # wait_until_present() re-runs verify() at this interval until the line shows up.
    poll_interval_seconds: float = 1.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    log_level: str = "info"


settings = Settings()
