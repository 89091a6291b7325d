"""
=====================================================
AI Phone Receptionist - Error Reporting
=====================================================
Sentry integration. Without SENTRY_DSN every call here is a no-op.
"""

import sentry_sdk
from loguru import logger


_enabled = False


def init_error_reporting(dsn: str, environment: str = "development") -> bool:
    """
    Initialize Sentry if a DSN is configured.

    Returns:
        True if reporting is active
    """
    global _enabled
    if not dsn:
        logger.info("ErrorReporter: SENTRY_DSN not set, error reporting disabled")
        _enabled = False
        return False

    sentry_sdk.init(dsn=dsn, environment=environment)
    _enabled = True
    logger.info("ErrorReporter: Sentry initialized")
    return True


def capture_exception(error: BaseException, **tags) -> None:
    """
    Report an exception with tags (e.g. call_sid, operation).

    Args:
        error: The exception to report
        **tags: Tag values attached to the event
    """
    if not _enabled:
        return
    with sentry_sdk.new_scope() as scope:
        for key, value in tags.items():
            scope.set_tag(key, str(value))
        sentry_sdk.capture_exception(error)
