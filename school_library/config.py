from decimal import Decimal
from pydantic_settings import BaseSettings
from typing import Optional
from pathlib import Path

# Get the project directory (parent of school_library directory)
PROJECT_DIR = Path(__file__).parent.parent
ENV_FILE = PROJECT_DIR / ".env"

class Settings(BaseSettings):
    # Server settings (non-confidential, can have defaults)
    host: str = "0.0.0.0"
    port: int = 3000

    # HTTPS/SSL settings for uvicorn
    ssl_enabled: bool = False
    ssl_certfile: Optional[str] = None
    ssl_keyfile: Optional[str] = None

    # Database settings - a full URL takes precedence over the individual parts
    database_url: Optional[str] = None
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "school"
    db_user: str = "postgres"
    db_password: str  # Required from .env (confidential - no default)

    # Database SSL settings
    db_ssl_mode: str = "prefer"  # Options: disable, allow, prefer, require, verify-ca, verify-full
    db_ssl_cert: Optional[str] = None
    db_ssl_key: Optional[str] = None
    db_ssl_root_cert: Optional[str] = None

    # JWT settings - tokens are issued by the school auth service, we only verify them
    jwt_secret_key: str  # Required from .env (confidential - no default)
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 1440

    # MQTT notification sink
    mqtt_enabled: bool = True
    mqtt_broker: str = "localhost"
    mqtt_port: int = 1883
    mqtt_username: Optional[str] = None
    mqtt_password: Optional[str] = None  # Optional, from .env if provided (confidential)
    mqtt_notification_topic_format: str = "school/library/notifications/{user_id}"
    mqtt_qos: int = 1

    # MQTT TLS/SSL settings
    mqtt_use_tls: bool = False
    mqtt_tls_insecure: bool = False  # Allow insecure TLS (for self-signed certs, not recommended for production)
    mqtt_ca_cert: Optional[str] = None
    mqtt_client_cert: Optional[str] = None
    mqtt_client_key: Optional[str] = None

    # Time source
    timezone: str = "Asia/Kathmandu"

    # Periodic overdue / reservation-expiry sweeps, 0 disables the background thread
    sweep_interval_minutes: int = 60

    # Library policy
    borrowing_period_days: int = 14
    max_renewals: int = 2
    borrowing_limit: int = 3
    daily_fine_rate: Decimal = Decimal("5.00")
    reservation_pending_days: int = 30
    reservation_collection_days: int = 3
    lost_book_fine_multiplier: int = 2
    damaged_book_fine: Decimal = Decimal("100.00")
    currency: str = "NPR"

    class Config:
        env_file = str(ENV_FILE) if ENV_FILE.exists() else ".env"
        case_sensitive = False

settings = Settings()
