from pydantic import Field
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    app_name: str = Field("purchase-approvals", alias="APP_NAME")
    app_env: str = Field("dev", alias="APP_ENV")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Storage ("memory" or "sqlite")
    storage_backend: str = Field("memory", alias="STORAGE_BACKEND")
    sqlite_db_path: str = Field("purchase_approvals.db", alias="SQLITE_DB_PATH")

    # One-time codes
    otp_validity_minutes: int = Field(3, alias="OTP_VALIDITY_MINUTES")
    otp_max_attempts: int = Field(5, alias="OTP_MAX_ATTEMPTS")

    # Conditional write retries for the overall request status
    aggregation_max_retries: int = Field(5, alias="AGGREGATION_MAX_RETRIES")

    # Frontend base URL (for approver links)
    frontend_url: str = Field("http://localhost:3000", alias="FRONTEND_URL")

    # Teams
    teams_webhook_url: str | None = Field(default=None, alias="TEAMS_WEBHOOK_URL")

    # Service Bus (PDF evidence hand-off)
    service_bus_connection_string: str | None = Field(default=None, alias="SERVICE_BUS_CONNECTION_STRING")
    service_bus_queue_name: str = Field("purchase-approval-events", alias="SERVICE_BUS_QUEUE_NAME")

    # CORS allowed origins (comma-separated list for production deployment)
    cors_origins: str = Field("http://localhost:3000,http://127.0.0.1:3000", alias="CORS_ORIGINS")

    # Mock mail listing and OTP lookup, never enable in production
    debug_endpoints_enabled: bool = Field(False, alias="DEBUG_ENDPOINTS_ENABLED")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

settings = Settings()
