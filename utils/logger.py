"""
Logging utility functions and helpers.
"""

import logging
from typing import Any, Dict, Optional


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Usage:
        from utils.logger import get_logger
        logger = get_logger(__name__)
    """
    return logging.getLogger(name)


# Fields that are dropped entirely
SECRET_FIELDS = {'password', 'secret', 'api_key', 'credit_card', 'cvv'}

# Fields that keep a short prefix so support can still match them up
PARTIAL_FIELDS = {'token', 'payment_reference'}

# Customer contact details
PERSONAL_FIELDS = {'phone', 'delivery_address'}


def sanitize_log_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Remove sensitive information from log data.

    Secrets are redacted, tokens and payment references are cut to their first
    8 characters, and customer phone numbers and addresses are masked.
    Nested dictionaries are sanitized too.
    """
    sanitized = data.copy()

    for key, value in sanitized.items():
        lowered = key.lower()

        if isinstance(value, dict):
            sanitized[key] = sanitize_log_data(value)
            continue

        if not isinstance(value, str):
            continue

        if any(field in lowered for field in SECRET_FIELDS):
            sanitized[key] = "***REDACTED***"
        elif any(field in lowered for field in PARTIAL_FIELDS):
            sanitized[key] = f"{value[:8]}..." if len(value) > 8 else "***REDACTED***"
        elif any(field in lowered for field in PERSONAL_FIELDS):
            sanitized[key] = f"***{value[-3:]}" if len(value) > 3 else "***"

    return sanitized


def log_request(
    logger: logging.Logger,
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    client_ip: str = "unknown",
    extra: Optional[Dict[str, Any]] = None
):
    """
    Log an HTTP request in a structured format. The level follows the status
    code: 5xx as error, 4xx as warning, the rest as info.
    """
    log_data = {
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2),
        "client_ip": client_ip,
    }

    if extra:
        log_data.update(sanitize_log_data(extra))

    message = f'{client_ip} - "{method} {path} HTTP/1.1" {status_code}'
    if status_code >= 500:
        logger.error(message, extra=log_data)
    elif status_code >= 400:
        logger.warning(message, extra=log_data)
    else:
        logger.info(message, extra=log_data)
