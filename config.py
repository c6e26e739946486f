import os


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in {"1", "true", "yes"}


def _env_int(name: str):
    value = os.environ.get(name)
    return int(value) if value else None


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///expenseflow.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "USD")

    MAIL_SERVER = os.environ.get("MAIL_SERVER", "localhost")
    MAIL_PORT = int(os.environ.get("MAIL_PORT", 587))
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_USE_TLS = _env_bool("MAIL_USE_TLS", "true")
    MAIL_DEFAULT_SENDER = os.environ.get("MAIL_DEFAULT_SENDER", "noreply@expenseflow.local")
    NOTIFICATIONS_ENABLED = _env_bool("NOTIFICATIONS_ENABLED", "true")

    # auto_approve | org_chart | disabled
    APPROVAL_FALLBACK_POLICY = os.environ.get("APPROVAL_FALLBACK_POLICY", "auto_approve")
    APPROVAL_FALLBACK_LEVELS = int(os.environ.get("APPROVAL_FALLBACK_LEVELS", 1))
    APPROVAL_CONFLICT_RETRIES = int(os.environ.get("APPROVAL_CONFLICT_RETRIES", 3))
    AUTOMATED_APPROVER_ID = _env_int("AUTOMATED_APPROVER_ID")

    ACCOUNTING_SYNC_URL = os.environ.get("ACCOUNTING_SYNC_URL")
    ACCOUNTING_SYNC_TIMEOUT = int(os.environ.get("ACCOUNTING_SYNC_TIMEOUT", 10))


class DevelopmentConfig(Config):
    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    WTF_CSRF_ENABLED = False
    MAIL_SUPPRESS_SEND = True
    ACCOUNTING_SYNC_URL = None
    APPROVAL_FALLBACK_POLICY = "auto_approve"
    AUTOMATED_APPROVER_ID = None


class ProductionConfig(Config):
    DEBUG = False


config_by_name = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
}
