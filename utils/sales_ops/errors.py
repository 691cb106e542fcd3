# utils/sales_ops/errors.py
"""
User-safe error messages.

Database and auth errors can leak schema details (table names, policies,
tokens). Pages show get_safe_error_message(e) and keep the raw error in
the log via log_error().
"""

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = 'An unexpected error occurred. Please try again.'
MAX_MESSAGE_LENGTH = 200

SENSITIVE_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in [
        r'column .* does not exist',
        r'relation .* does not exist',
        r'permission denied',
        r'violates .* constraint',
        r'\bRLS\b',
        r'row-level security',
        r'policy',
        r'duplicate key',
        r'foreign key',
        r'null value in column',
        r'syntax error',
        r'PGRST',
        r'supabase',
        r'postgres',
        r'authentication',
        r'JWT',
        r'token',
    ]
]

# (substring, message) checked in order, case-insensitive
FRIENDLY_MESSAGES = [
    ('invalid login credentials', 'Invalid email or password. Please try again.'),
    ('already registered', 'An account with this email already exists.'),
    ('email not confirmed', 'Please check your email to confirm your account.'),
    ('rate limit', 'Too many requests. Please try again in a moment.'),
    ('network', 'Network error. Please check your connection.'),
    ('timeout', 'Request timed out. Please try again.'),
]


def _message_of(error: Any) -> str:
    if error is None:
        return ''
    if isinstance(error, str):
        return error
    message = getattr(error, 'message', None)
    if isinstance(message, str) and message:
        return message
    return str(error)


def get_safe_error_message(error: Any) -> str:
    """
    Message that is safe to show in the UI.

    Known cases get a friendly text; anything that looks like an internal
    database/auth detail, or is suspiciously long, becomes a generic message.
    """
    message = _message_of(error).strip()
    if not message:
        return GENERIC_ERROR_MESSAGE

    lowered = message.lower()
    for needle, friendly in FRIENDLY_MESSAGES:
        if needle in lowered:
            return friendly

    if any(p.search(message) for p in SENSITIVE_PATTERNS):
        return GENERIC_ERROR_MESSAGE

    if len(message) > MAX_MESSAGE_LENGTH:
        return GENERIC_ERROR_MESSAGE

    return message


def log_error(context: str, error: Any) -> None:
    """Log the full error with where it happened."""
    logger.error(f"❌ [{context}] {_message_of(error)}", exc_info=isinstance(error, BaseException))
