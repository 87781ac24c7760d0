"""
Application configuration.
All settings are loaded from environment variables.
Required: DATABASE_URL, REDIS_URL, JWT_SECRET_KEY, REGISTRATION_STATE_SECRET.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    app_name: str = "DiploMate"
    # Comma-separated origins (e.g. http://localhost:5173,https://diplomate.app). Empty = default list in main.
    cors_origins: str = ""
    # Trusted proxy IPs (comma-separated). Used for X-Forwarded-For in production.
    trusted_proxy_ips: str = ""

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_recycle_seconds: int = 1800  # avoid stale connections

    # ===========================================
    # REDIS
    # ===========================================
    redis_url: str  # Required, no default

    # ===========================================
    # SESSIONS (JWT issued by the identity provider)
    # ===========================================
    jwt_secret_key: str  # Required, no default
    jwt_algorithm: str = "HS256"
    access_token_ttl_seconds: int = 7 * 24 * 3600

    # Signed registration state (itsdangerous)
    registration_state_secret: str  # Required, no default
    registration_state_ttl: int = 900  # OTP lifetime + margin for resends

    # ===========================================
    # EMAIL OTP
    # ===========================================
    otp_ttl_seconds: int = 300  # 5 minutes
    otp_length: int = 6
    otp_resend_cooldown_seconds: int = 60
    otp_issue_window_seconds: int = 3600
    otp_max_issues_per_window: int = 5

    # ===========================================
    # EMAIL TRANSPORT (SMTP)
    # ===========================================
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465
    smtp_use_ssl: bool = True
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_timeout: float = 10.0
    email_from_name: str = "DiploMate"
    email_from_address: str = ""  # Empty = smtp_username

    # ===========================================
    # DEVICE BINDING
    # ===========================================
    device_id_header: str = "X-Device-Id"
    # On a failed device-binding lookup: True = allow login and log, False = deny login.
    device_check_fail_open: bool = True
    # Local persisted install id (used by the install-side fingerprint provider)
    device_id_file: str = "~/.diplomate/device_id"

    # ===========================================
    # PURCHASES
    # ===========================================
    purchase_price: int = 199
    default_rejection_reason: str = "Payment could not be verified"
    proof_storage_path: str = "/data/payment-screenshots"
    proof_public_base_url: str = "/media/payment-screenshots"
    max_proof_size_mb: int = 5
    allowed_proof_extensions: str = ".jpg,.jpeg,.png,.webp"

    # ===========================================
    # LOGIN RATE LIMIT (brute-force protection)
    # ===========================================
    login_rate_limit_attempts: int = 5
    admin_login_rate_limit_attempts: int = 3
    otp_verify_rate_limit_attempts: int = 10
    login_rate_limit_window_seconds: int = 900  # 15 min

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    # Emails are masked in JSON logs (a***@example.com) unless disabled
    log_mask_emails: bool = True
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("allowed_proof_extensions")
    @classmethod
    def parse_extensions(cls, v: str) -> str:
        """Validate extensions format."""
        return v.lower().strip()

    @property
    def allowed_extensions_set(self) -> set[str]:
        """Get allowed proof extensions as a set."""
        return {ext.strip() for ext in self.allowed_proof_extensions.split(",") if ext.strip()}

    @property
    def trusted_proxy_ips_set(self) -> set[str]:
        """Get trusted proxy IPs as a set."""
        return {ip.strip() for ip in self.trusted_proxy_ips.split(",") if ip.strip()}

    @property
    def email_sender(self) -> str:
        return self.email_from_address or self.smtp_username

    @field_validator("jwt_secret_key", "registration_state_secret")
    @classmethod
    def validate_secret(cls, v: str) -> str:
        """Ensure signing secrets are reasonably secure."""
        if len(v) < 16:
            raise ValueError("signing secrets must be at least 16 characters")
        if v in ("changeme", "secret", "password", "admin"):
            raise ValueError("signing secret is too weak, please change it")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
