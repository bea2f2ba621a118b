import os

from dotenv import load_dotenv


class ConfigError(Exception):
    """Raised when a required setting is missing."""


def _required(name):
    value = os.getenv(name)
    if not value:
        raise ConfigError(f"{name} must be set (environment or .env)")
    return value


class Config:
    """Flask settings, read from the environment after loading ``.env``."""

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    def __init__(self, **overrides):
        load_dotenv()
        self.SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///gmo_registry.db")
        self.MASTER_KEY = overrides.pop("MASTER_KEY", None) or _required("MASTER_KEY")
        self.PRINCIPAL_SECRET = overrides.pop("PRINCIPAL_SECRET", None) or _required("PRINCIPAL_SECRET")
        self.AUTHORITY_PRINCIPAL = os.getenv("AUTHORITY_PRINCIPAL", "")
        self.AUDITORS = [a for a in os.getenv("AUDITORS", "").split(",") if a.strip()]
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        self.LOG_FORMAT = os.getenv("LOG_FORMAT", "console")
        for key, value in overrides.items():
            setattr(self, key, value)
