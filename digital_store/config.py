import logging
import os
import sys

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./digital_store.db")

SECRET_KEY = os.getenv("SECRET_KEY", "change-me-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

# Self-registration with this email gets the ADMIN role.
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@digital.store")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def configure_logging():
    """Attach a stdout handler to the package logger (once)."""
    log = logging.getLogger("digital_store")
    log.setLevel(LOG_LEVEL)
    if not log.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - [%(levelname)-7s] - %(message)s"
        ))
        log.addHandler(handler)
    return log
