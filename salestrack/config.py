import os


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

    # --- Scheduler ---
    # Bearer token the external scheduler must present to trigger the
    # next-action reminder job.
    CRON_SECRET = os.environ.get("CRON_SECRET")

    # --- Business day ---
    # "Today"/"tomorrow" are interpreted in this fixed civil timezone, never
    # in the host's local time. The offset is explicit; no DST handling.
    BUSINESS_TIMEZONE = os.environ.get("BUSINESS_TIMEZONE", "Asia/Kolkata")
    BUSINESS_UTC_OFFSET = os.environ.get("BUSINESS_UTC_OFFSET", "+05:30")

    # --- Reminder channel (WhatsApp gateway) ---
    WHATSAPP_API_URL = os.environ.get("WHATSAPP_API_URL")
    WHATSAPP_API_TOKEN = os.environ.get("WHATSAPP_API_TOKEN")
    REMINDER_NOTIFY_TIMEOUT = float(os.environ.get("REMINDER_NOTIFY_TIMEOUT", 10))

    # --- Audit log ---
    # Audit rows are written by a background worker; the queue is bounded
    # and entries are dropped (and logged) once it is full.
    AUDIT_ASYNC = os.environ.get(
        "AUDIT_ASYNC", "true"
    ).lower() in ("1", "true", "yes")
    AUDIT_QUEUE_MAXSIZE = int(os.environ.get("AUDIT_QUEUE_MAXSIZE", 1000))

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
            "CRON_SECRET",
            "APP_BASE_URL",
            "WHATSAPP_API_URL",
        ]
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
    """Testing — in-memory SQLite, CSRF disabled, audit written inline."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    APP_BASE_URL = "http://localhost:5000"
    CRON_SECRET = "cron-test-secret"
    BUSINESS_TIMEZONE = "Asia/Kolkata"
    BUSINESS_UTC_OFFSET = "+05:30"
    WHATSAPP_API_URL = "https://whatsapp.example.test/messages"
    WHATSAPP_API_TOKEN = "wa_test_fake"
    REMINDER_NOTIFY_TIMEOUT = 2
    AUDIT_ASYNC = False  # write audit rows inline
    WTF_CSRF_ENABLED = False
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
