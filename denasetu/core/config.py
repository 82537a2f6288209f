from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
import os
from pathlib import Path


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Look for .env file in the project root
        env_file=os.path.join(Path(__file__).parent.parent.parent, ".env"),
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "DenaSetu Donation Service"
    service_name: str = "denasetu-service"
    debug: bool = False
    instance_id: str = "denasetu-1"

    # Database
    database_url: str = "sqlite:///./denasetu.db"

    # Payment gateway (Razorpay). Credentials have no defaults on purpose.
    razorpay_base_url: str = "https://api.razorpay.com/v1"
    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_webhook_secret: str = ""
    payment_currency: str = "INR"
    gateway_timeout_seconds: float = 15.0
    gateway_connect_timeout_seconds: float = 5.0
    gateway_failure_threshold: int = 5
    gateway_recovery_seconds: int = 30

    # Redis (session context store)
    redis_url: str = "redis://localhost:6379/0"
    session_ttl_seconds: int = 60 * 60 * 12

    # Kafka change relay
    kafka_enabled: bool = False
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_topic_store_changes: str = "store.changes"

    # Realtime feed
    feed_backoff_initial_seconds: float = 0.5
    feed_backoff_max_seconds: float = 30.0
    feed_queue_size: int = 256

    # Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://localhost:4318/v1/traces"


@lru_cache()
def get_settings():
    return Settings()
