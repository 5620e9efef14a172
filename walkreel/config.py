import os
import logging
import logging.config
import tempfile
from pathlib import Path

# Base Paths
PACKAGE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_DIR.parent

# Logging Setup
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_FILE_PATH = os.getenv(
    "LOG_FILE_PATH",
    str((PROJECT_ROOT / "logs" / "walkreel.log").resolve()),
)

LOG_DIR = Path(LOG_FILE_PATH).parent
LOG_DIR.mkdir(parents=True, exist_ok=True)

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": LOG_FORMAT,
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "level": LOG_LEVEL,
            "formatter": "standard",
            "stream": "ext://sys.stdout",
        },
        "file": {
            "class": "logging.handlers.RotatingFileHandler",
            "level": LOG_LEVEL,
            "formatter": "standard",
            "filename": LOG_FILE_PATH,
            "maxBytes": 10 * 1024 * 1024,  # 10 MB
            "backupCount": 5,
            "encoding": "utf8",
        },
    },
    "loggers": {
        "walkreel": {
            "handlers": ["console", "file"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        # boto is chatty at DEBUG
        "botocore": {"level": "WARNING"},
        "boto3": {"level": "WARNING"},
    },
    "root": {
        "handlers": ["console"],
        "level": LOG_LEVEL,
    },
}

logging.config.dictConfig(LOGGING_CONFIG)
logger = logging.getLogger("walkreel")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# AWS
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")
S3_BUCKET_NAME = os.getenv("S3_BUCKET_NAME", "")

# Continuation records
TASK_TOKEN_TABLE = os.getenv("TASK_TOKEN_TABLE", "")
TASK_TOKEN_TTL_SECONDS = int(os.getenv("TASK_TOKEN_TTL_SECONDS", "3600"))  # 1 hour

# Storage retries
STORAGE_MAX_ATTEMPTS = int(os.getenv("STORAGE_MAX_ATTEMPTS", "3"))
STORAGE_RETRY_BASE_DELAY = float(os.getenv("STORAGE_RETRY_BASE_DELAY", "0.5"))  # seconds

# Media assembly
FFMPEG_PATH = os.getenv("FFMPEG_PATH", "ffmpeg")
FFPROBE_PATH = os.getenv("FFPROBE_PATH", "ffprobe")
FONT_PATH = os.getenv("FONT_PATH", "/opt/fonts/DejaVuSans-Bold.ttf")
ENABLE_TEXT_OVERLAY = _env_bool("ENABLE_TEXT_OVERLAY", True)
SCRATCH_DIR = Path(os.getenv("SCRATCH_DIR", tempfile.gettempdir()))
ASSEMBLY_MAX_WORKERS = int(os.getenv("ASSEMBLY_MAX_WORKERS", "1"))
