from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite+aiosqlite:///./data/notify.db"

    # Application
    log_level: str = "INFO"
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    cors_origin: str = "*"

    # Logging
    json_logging: bool = False

    # VAPID signing identity (generate with `python main.py generate-vapid`)
    vapid_public_key: str = ""
    vapid_private_key: str = ""
    vapid_contact: str = ""  # mailto: or https: URI

    # Admin bearer token
    admin_key: str = ""

    # Delivery
    push_concurrency: int = 10
    push_ttl_seconds: int = 86400
    push_timeout_seconds: float = 30.0

    # Welcome notification sent to newly created subscribers (empty = off)
    welcome_message: str = ""
    welcome_delay_seconds: float = 1.0

    # Delivery log retention sweep (empty = no automatic purge)
    delivery_log_retention: str = ""
    delivery_log_purge_interval_hours: int = 24

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


settings = Settings()
