from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'Lingowow'
    app_env: str = 'local'
    app_timezone: str = 'America/Lima'
    database_url: str = 'sqlite:///./lingowow.db'
    currency: str = 'USD'
    auth_secret: str = 'change-me'
    auth_session_expiry_hours: int = 12
    db_slow_query_ms: int = 100
    metrics_slow_ms: int = 200
    enable_scheduler: bool = True
    attendance_early_entry_minutes: int = 15
    attendance_late_entry_minutes: int = 15
    payroll_base_rate_per_hour: float = 10.0
    default_class_duration_minutes: int = 60
    rate_limit_coupon_validations: int = 10
    rate_limit_attendance_marks: int = 30
    rate_limit_window_seconds: int = 60
    niubiz_api_url: str = 'https://apiprod.vnforapps.com'
    niubiz_merchant_id: str = ''
    niubiz_user: str = ''
    niubiz_password: str = ''
    paypal_client_id: str = ''
    paypal_client_secret: str = ''
    paypal_mode: str = 'sandbox'
    gateway_timeout_seconds: float = 15.0
    payment_webhook_secret: str = ''
    bootstrap_admin_email: str = ''
    bootstrap_admin_password: str = ''


settings = Settings()
