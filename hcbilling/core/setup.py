"""
Application setup and initialization.

Shared by the API entry point and the command line so both load the same
environment, error tracking and logging configuration.
"""
import os
from typing import Optional

from dotenv import load_dotenv

from hcbilling.config.sentry import init_sentry
from hcbilling.utils.logger import configure_logging


def setup_application(log_format: Optional[str] = None) -> None:
    """
    Initialize application environment and configuration.

    Order matters: environment variables are needed by Sentry and logging,
    and Sentry should be initialized before anything else can fail.

    Args:
        log_format: Overrides ``LOG_FORMAT`` (the CLI uses ``console``)
    """
    load_dotenv()

    init_sentry()

    configure_logging(
        log_level=os.getenv("LOG_LEVEL", "info"),
        log_format=log_format or os.getenv("LOG_FORMAT", "json"),
        log_file=os.getenv(
            "LOG_FILE",
            "hcbilling.log" if os.getenv("ENVIRONMENT") == "production" else None,
        ),
        log_dir=os.getenv("LOG_DIR", "logs"),
    )
