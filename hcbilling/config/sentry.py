"""Sentry error tracking configuration."""
import os
from typing import Optional, Dict, Any

import sentry_sdk
from pydantic import Field
from pydantic_settings import BaseSettings
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from hcbilling.utils.logger import get_logger

logger = get_logger(__name__)


class SentrySettings(BaseSettings):
    """Sentry configuration settings."""

    dsn: Optional[str] = Field(None, alias="SENTRY_DSN")
    environment: str = Field("development", alias="SENTRY_ENVIRONMENT")
    release: Optional[str] = Field(None, alias="SENTRY_RELEASE")
    traces_sample_rate: float = Field(0.1, alias="SENTRY_TRACES_SAMPLE_RATE")
    # Claim and remittance data is PHI; never ship PII by default
    send_default_pii: bool = Field(False, alias="SENTRY_SEND_DEFAULT_PII")
    enable_before_send_filter: bool = Field(True, alias="SENTRY_ENABLE_BEFORE_SEND_FILTER")
    sensitive_keys: str = Field(
        "password,token,secret,client_name,first_name,last_name,patient",
        alias="SENTRY_SENSITIVE_KEYS",
    )

    # Alert configuration
    enable_alerts: bool = Field(True, alias="SENTRY_ENABLE_ALERTS")
    alert_on_errors: bool = Field(True, alias="SENTRY_ALERT_ON_ERRORS")
    alert_on_warnings: bool = Field(False, alias="SENTRY_ALERT_ON_WARNINGS")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"
        populate_by_name = True


settings = SentrySettings()


def init_sentry() -> None:
    """
    Initialize Sentry error tracking.

    Does nothing when ``SENTRY_DSN`` is unset or when running under tests
    (``TESTING=true``), so local runs and the command line only log.
    """
    if not settings.dsn:
        logger.info("Sentry DSN not configured, error tracking disabled")
        return

    if os.getenv("TESTING") == "true":
        logger.info("Skipping Sentry initialization in test environment")
        return

    sentry_sdk.init(
        dsn=settings.dsn,
        environment=settings.environment,
        release=settings.release,
        traces_sample_rate=settings.traces_sample_rate,
        send_default_pii=settings.send_default_pii,
        integrations=[
            SqlalchemyIntegration(),
            # Log records become breadcrumbs; errors are captured explicitly
            LoggingIntegration(level=None, event_level=None),
        ],
        before_send=filter_sensitive_data if settings.enable_before_send_filter else None,
    )

    logger.info(
        "Sentry initialized",
        environment=settings.environment,
        release=settings.release,
    )


def filter_sensitive_data(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Remove patient identifying data from a Sentry event before it is sent.

    Keys in ``extra`` and in each breadcrumb's ``data`` whose name contains
    one of ``SENTRY_SENSITIVE_KEYS`` are dropped. Request headers other than
    content type and user agent are dropped as well.

    Args:
        event: The Sentry event dictionary
        hint: Additional context about the event

    Returns:
        The filtered event
    """
    sensitive = [key.strip().lower() for key in settings.sensitive_keys.split(",") if key.strip()]

    def scrub(mapping: Dict[str, Any]) -> None:
        for key in [k for k in mapping if any(s in k.lower() for s in sensitive)]:
            mapping.pop(key, None)

    request = event.get("request")
    if request and "headers" in request:
        request["headers"] = {
            k: v for k, v in request["headers"].items()
            if k.lower() in ("content-type", "user-agent")
        }

    if "extra" in event:
        scrub(event["extra"])

    for crumb in (event.get("breadcrumbs") or {}).get("values", []):
        if isinstance(crumb.get("data"), dict):
            scrub(crumb["data"])

    if "user" in event:
        event["user"] = {"id": event["user"].get("id")}

    return event


def capture_exception(
    exception: Exception,
    level: str = "error",
    context: Optional[Dict[str, Any]] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Capture an exception to Sentry with additional context.

    Args:
        exception: The exception to capture
        level: Severity level (debug, info, warning, error, fatal)
        context: Context sections, each attached with ``set_context``
        tags: Tags to attach to the event

    Returns:
        Event ID if Sentry is configured, None otherwise
    """
    with sentry_sdk.new_scope() as scope:
        scope.level = level
        for name, values in (context or {}).items():
            scope.set_context(name, values)
        for key, value in (tags or {}).items():
            scope.set_tag(key, value)
        return sentry_sdk.capture_exception(exception)


def add_breadcrumb(
    message: str,
    category: str = "default",
    level: str = "info",
    data: Optional[Dict[str, Any]] = None,
) -> None:
    """Add a breadcrumb describing what happened before a possible error."""
    sentry_sdk.add_breadcrumb(
        message=message,
        category=category,
        level=level,
        data=data or {},
    )
