import os


def _env_flag(name, default=""):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:5000")

    # --- Payments (Stripe PaymentIntents, manual capture) ---
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_MAX_NETWORK_RETRIES = 0  # capture is never retried inside a request

    # --- Settlement ---
    GPS_MAX_DISTANCE_METERS = float(os.environ.get("GPS_MAX_DISTANCE_METERS", 150))
    # Off: an unverified check-out location is only logged as a fraud signal.
    GPS_HARD_ENFORCEMENT = _env_flag("GPS_HARD_ENFORCEMENT")
    SETTLEMENT_PERSIST_ATTEMPTS = int(os.environ.get("SETTLEMENT_PERSIST_ATTEMPTS", 3))
    SETTLEMENT_PERSIST_BACKOFF_SECONDS = float(
        os.environ.get("SETTLEMENT_PERSIST_BACKOFF_SECONDS", 0.1)
    )

    # --- Background checks ---
    BACKGROUND_CHECK_PROVIDER = os.environ.get("BACKGROUND_CHECK_PROVIDER", "checkr")  # checkr | truora
    BACKGROUND_CHECK_TIMEOUT_SECONDS = int(os.environ.get("BACKGROUND_CHECK_TIMEOUT_SECONDS", 30))
    CHECKR_API_KEY = os.environ.get("CHECKR_API_KEY")
    CHECKR_WEBHOOK_SECRET = os.environ.get("CHECKR_WEBHOOK_SECRET")
    CHECKR_BASE_URL = os.environ.get("CHECKR_BASE_URL", "https://api.checkr.com")
    TRUORA_API_KEY = os.environ.get("TRUORA_API_KEY")
    TRUORA_WEBHOOK_SECRET = os.environ.get("TRUORA_WEBHOOK_SECRET")
    TRUORA_BASE_URL = os.environ.get("TRUORA_BASE_URL", "https://api.truora.com")

    # --- Email (SMTP) ---
    MAIL_SMTP_HOST = os.environ.get("MAIL_SMTP_HOST", "smtp.gmail.com")
    MAIL_SMTP_PORT = int(os.environ.get("MAIL_SMTP_PORT", 587))
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_FROM_NAME = os.environ.get("MAIL_FROM_NAME", "Marketplace")
    MAIL_FROM_ADDRESS = os.environ.get("MAIL_FROM_ADDRESS")  # defaults to MAIL_USERNAME
    # Comma-separated list; receives payment and critical settlement alerts.
    ADMIN_ALERT_EMAILS = [
        e.strip() for e in os.environ.get("ADMIN_ALERT_EMAILS", "").split(",") if e.strip()
    ]

    # --- Push (Expo) ---
    EXPO_PUSH_URL = os.environ.get("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send")
    PUSH_TIMEOUT_SECONDS = int(os.environ.get("PUSH_TIMEOUT_SECONDS", 10))

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Session / cookies ---
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SAMESITE = "Lax"

    # --- WTF / CSRF ---
    WTF_CSRF_ENABLED = True

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "STRIPE_SECRET_KEY",
            "APP_BASE_URL",
        ]
        provider = os.environ.get("BACKGROUND_CHECK_PROVIDER", "checkr")
        if provider == "truora":
            required += ["TRUORA_API_KEY", "TRUORA_WEBHOOK_SECRET"]
        else:
            required += ["CHECKR_API_KEY", "CHECKR_WEBHOOK_SECRET"]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False


class TestConfig(Config):
    """Testing — in-memory SQLite, CSRF disabled."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    STRIPE_SECRET_KEY = "sk_test_fake"
    APP_BASE_URL = "http://localhost:5000"
    BACKGROUND_CHECK_PROVIDER = "checkr"
    CHECKR_API_KEY = "checkr_test_key"
    CHECKR_WEBHOOK_SECRET = "checkr_whsec_test"
    TRUORA_API_KEY = "truora_test_key"
    TRUORA_WEBHOOK_SECRET = "truora_whsec_test"
    GPS_HARD_ENFORCEMENT = False
    SETTLEMENT_PERSIST_BACKOFF_SECONDS = 0  # no sleeping between retries in tests
    ADMIN_ALERT_EMAILS = ["ops@marketplace.test"]
    WTF_CSRF_ENABLED = False  # disable CSRF for test requests
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
