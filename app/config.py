import os


def _flag(name, default=""):
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

    # Signs every QR credential. Rotating it invalidates all issued passes.
    QR_SECRET = os.environ.get("QR_SECRET", "change_this_qr_secret")
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:5000")
    UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER", "uploads")

    # --- WhatsApp (messagesapi.co.in) ---
    WHATSAPP_API_URL = os.environ.get(
        "WHATSAPP_API_URL", "https://messagesapi.co.in/chat/sendMessageFile"
    )
    WHATSAPP_DEVICE_UID = os.environ.get("WHATSAPP_DEVICE_UID")
    WHATSAPP_DEVICE_NAME = os.environ.get("WHATSAPP_DEVICE_NAME", "Mandapam")
    WHATSAPP_COUNTRY_CODE = os.environ.get("WHATSAPP_COUNTRY_CODE", "91")
    WHATSAPP_MESSAGE_TEMPLATE = os.environ.get("WHATSAPP_MESSAGE_TEMPLATE")

    # --- Notification queue (Celery + Redis) ---
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0")
    CELERY_RESULT_BACKEND = os.environ.get(
        "CELERY_RESULT_BACKEND", "redis://localhost:6379/1"
    )
    NOTIFY_QUEUE_ENABLED = _flag("NOTIFY_QUEUE_ENABLED", "true")
    NOTIFY_RATE_LIMIT = os.environ.get("NOTIFY_RATE_LIMIT", "10/s")
    NOTIFY_WORKER_CONCURRENCY = int(os.environ.get("NOTIFY_WORKER_CONCURRENCY", 5))
    NOTIFY_MAX_RETRIES = int(os.environ.get("NOTIFY_MAX_RETRIES", 3))
    AUTO_SEND_PASS_ON_PAYMENT = _flag("AUTO_SEND_PASS_ON_PAYMENT", "true")

    # --- Visitor pass rendering ---
    PASS_ORG_NAME = os.environ.get("PASS_ORG_NAME", "MANDAPAM")
    PASS_LOGO_PATH = os.environ.get("PASS_LOGO_PATH")
    PASS_FONT_DIR = os.environ.get("PASS_FONT_DIR", "fonts")
    PASS_TIMEZONE = os.environ.get("PASS_TIMEZONE", "Asia/Kolkata")
    PASS_PHOTO_PIXELS = int(os.environ.get("PASS_PHOTO_PIXELS", 400))
    PASS_IMAGE_FETCH_TIMEOUT = float(os.environ.get("PASS_IMAGE_FETCH_TIMEOUT", 10))
    PASS_FOOTER_TEXT = os.environ.get(
        "PASS_FOOTER_TEXT",
        "Thank you for registering with the Mandapam Event Team.",
    )
    PASS_HELPDESK_PHONE = os.environ.get("PASS_HELPDESK_PHONE", "")

    # 0 keeps a held send-lock until it is released explicitly.
    PASS_SEND_LOCK_TTL_SECONDS = int(os.environ.get("PASS_SEND_LOCK_TTL_SECONDS", 0))

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

    @classmethod
    def celery_settings(cls):
        """Celery config dict, consumed by celery_init_app()."""
        return {
            "broker_url": cls.CELERY_BROKER_URL,
            "result_backend": cls.CELERY_RESULT_BACKEND,
            "task_serializer": "json",
            "accept_content": ["json"],
            "result_serializer": "json",
            "timezone": "UTC",
            "enable_utc": True,
            "task_acks_late": True,  # Acknowledge after task completes
            "task_reject_on_worker_lost": True,  # Requeue if worker dies
            "worker_prefetch_multiplier": 1,
            "worker_concurrency": cls.NOTIFY_WORKER_CONCURRENCY,
            "imports": ("app.tasks.notification_tasks",),
            "task_annotations": {
                "app.tasks.notification_tasks.send_pass_task": {
                    "rate_limit": cls.NOTIFY_RATE_LIMIT,
                    "max_retries": cls.NOTIFY_MAX_RETRIES,
                },
            },
            "result_expires": 86400,
        }

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "QR_SECRET",
            "APP_BASE_URL",
            "WHATSAPP_DEVICE_UID",
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
    """Testing — in-memory SQLite, CSRF disabled, no broker."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    QR_SECRET = "test-qr-secret"
    APP_BASE_URL = "http://localhost:5000"
    WHATSAPP_DEVICE_UID = "test-device"
    WHATSAPP_DEVICE_NAME = "Mandapam"
    CELERY_BROKER_URL = "memory://"
    CELERY_RESULT_BACKEND = "cache+memory://"
    NOTIFY_QUEUE_ENABLED = False  # direct transport unless a test opts in
    AUTO_SEND_PASS_ON_PAYMENT = True
    PASS_LOGO_PATH = None
    PASS_SEND_LOCK_TTL_SECONDS = 0
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
