import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


def _env_bool(name, default="false"):
    return os.getenv(name, default).lower() in ("true", "on", "1", "yes")


class Config:
    """Base configuration class"""

    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")

    # Dispatch queue
    MAX_CONCURRENT_SCANS = int(os.getenv("MAX_CONCURRENT_SCANS", "3"))
    MAX_QUEUE_SIZE = int(os.getenv("MAX_QUEUE_SIZE", "50"))
    DEFAULT_SCAN_TIMEOUT = float(os.getenv("DEFAULT_SCAN_TIMEOUT", "300"))

    # Scheduler
    RETRY_DELAY_SECONDS = float(os.getenv("RETRY_DELAY_SECONDS", "60"))
    DEFAULT_RETRIES = int(os.getenv("DEFAULT_RETRIES", "2"))
    EXECUTION_HISTORY_SIZE = int(os.getenv("EXECUTION_HISTORY_SIZE", "100"))
    SCHEDULER_TICK_SECONDS = float(os.getenv("SCHEDULER_TICK_SECONDS", "1"))
    SCHEDULER_AUTOSTART = _env_bool("SCHEDULER_AUTOSTART", "true")
    SCHEDULES_FILE = os.getenv("SCHEDULES_FILE")

    # Snapshots
    MAX_SNAPSHOTS = int(os.getenv("MAX_SNAPSHOTS", "0")) or None

    # Scanner
    NMAP_SUDO = _env_bool("NMAP_SUDO")
    NMAP_EXTRA_ARGUMENTS = os.getenv("NMAP_EXTRA_ARGUMENTS", "")

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR = os.getenv("LOG_DIR", str(BASE_DIR / "logs"))
    LOG_TO_FILES = _env_bool("LOG_TO_FILES", "true")


class DevelopmentConfig(Config):
    DEBUG = True
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")


class TestingConfig(Config):
    TESTING = True
    SCHEDULER_AUTOSTART = False
    SCHEDULES_FILE = None
    LOG_TO_FILES = False
    DEFAULT_SCAN_TIMEOUT = 5


class ProductionConfig(Config):
    DEBUG = False


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}


def get_config():
    return config.get(os.getenv("FLASK_ENV", "development"), DevelopmentConfig)
