"""Error sanitization utilities to prevent leaking key material."""

import re
from typing import Any

# PEM blocks (certificates and private keys) anywhere in a message
PEM_PATTERN = re.compile(
    r"-----BEGIN ([A-Z0-9 ]+)-----.*?-----END \1-----",
    flags=re.DOTALL,
)

# Patterns whose captured value must be redacted
SENSITIVE_PATTERNS = [
    r"(client-key-data[:\s]+)([A-Za-z0-9/+=]+)",
    r"(client-certificate-data[:\s]+)([A-Za-z0-9/+=]+)",
    r"(privateMaterial[:\s]+)([A-Za-z0-9/+=]+)",
    r"(aws_access_key_id[:=\s]+)([A-Z0-9]{16,})",
    r"(aws_secret_access_key[:=\s]+)([A-Za-z0-9/+=]{30,})",
    r"(session[_\s]?token[:=\s]+)([A-Za-z0-9/+=]+)",
    r"(Bearer\s+)([A-Za-z0-9\-_\.=]+)",
]

# Fields to redact completely
SENSITIVE_FIELDS = {
    "client_key",
    "client-key-data",
    "private_key",
    "privatematerial",
    "secret_access_key",
    "session_token",
    "password",
    "token",
    "kubeconfig",
}


def sanitize_error_message(message: str) -> str:
    """Sanitize error message to remove sensitive information.

    Args:
        message: Original error message

    Returns:
        Sanitized error message with sensitive data redacted
    """
    sanitized = PEM_PATTERN.sub(lambda m: f"[REDACTED {m.group(1)}]", message)

    for pattern in SENSITIVE_PATTERNS:
        sanitized = re.sub(pattern, r"\1[REDACTED]", sanitized, flags=re.IGNORECASE)

    return sanitized


def sanitize_exception(error: BaseException) -> str:
    """Sanitize exception message.

    Args:
        error: Exception object

    Returns:
        Sanitized error message
    """
    return sanitize_error_message(str(error))


def sanitize_dict(data: dict[str, Any], sensitive_keys: set[str] | None = None) -> dict[str, Any]:
    """Sanitize dictionary by redacting sensitive fields.

    Args:
        data: Dictionary to sanitize
        sensitive_keys: Additional keys to redact (merged with SENSITIVE_FIELDS)

    Returns:
        Sanitized dictionary with sensitive values redacted
    """
    all_sensitive = SENSITIVE_FIELDS | {key.lower() for key in (sensitive_keys or set())}
    sanitized: dict[str, Any] = {}

    for key, value in data.items():
        if key.lower() in all_sensitive:
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, dict):
            sanitized[key] = sanitize_dict(value, sensitive_keys)
        elif isinstance(value, (bytes, bytearray)):
            sanitized[key] = f"[{len(value)} bytes]"
        elif isinstance(value, str):
            sanitized[key] = sanitize_error_message(value)
        else:
            sanitized[key] = value

    return sanitized
