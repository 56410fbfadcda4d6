"""Helpers for turning exceptions into report messages."""


def safe_error_message(e: Exception, fallback: str = "operation failed") -> str:
    """Extract a meaningful error message from an exception.

    Some exceptions (timeouts, cancelled requests) produce an empty
    ``str(e)``; fall back to the exception class name.
    """
    msg = str(e).strip()
    if not msg:
        msg = f"{type(e).__name__}: {fallback}"
    return msg
