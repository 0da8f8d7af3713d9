from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application
    app_name: str = "Cabinet Juridique"
    app_version: str = "1.0.0"
    environment: str = "production"
    debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str = "postgresql+asyncpg://cabinet:cabinet@db:5432/cabinet"

    # Auth
    secret_key: str = "CHANGE_ME"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60 * 24 * 30
    impersonation_token_expire_minutes: int = 60
    max_login_attempts: int = 5
    lockout_duration_minutes: int = 30

    # Redis (Celery broker)
    redis_url: str = "redis://redis:6379/0"

    # Admin bootstrap
    first_admin_email: str = "admin@example.com"
    first_admin_password: str = "CHANGE_ME"
    first_admin_first_name: str = "Admin"
    first_admin_last_name: str = "Cabinet"

    # Uploads
    upload_dir: str = "uploads"
    max_upload_size_mb: int = 10
    max_message_attachments: int = 5
    contact_max_attachments: int = 5
    contact_max_upload_size_mb: int = 5

    # Notification outbox
    notification_max_attempts: int = 5
    notification_sweep_seconds: int = 30

    # Appointment slots
    slot_morning_start: str = "09:00"
    slot_morning_end: str = "11:30"
    slot_afternoon_start: str = "14:00"
    slot_afternoon_end: str = "17:00"
    slot_step_minutes: int = 30

    # CORS
    backend_cors_origins: list[str] = ["http://localhost", "http://localhost:3004"]

    model_config = {"env_file": ".env", "case_sensitive": False}


settings = Settings()
