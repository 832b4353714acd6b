# paygate/core/logging_utils.py
"""Logging setup and redaction of payment headers."""
import logging
from typing import Dict, Mapping

# Header names whose values must never reach the logs
SENSITIVE_HEADERS = {
    "authorization",
    "cookie",
    "x-payment",
    "x-secret-key",
    "x-payment-response",
}


def configure_logging(level: str = "INFO") -> None:
    """Configure basic logging for the service."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def redact_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """
    Return a copy of the headers that is safe to log.

    Sensitive values are replaced with a length marker so that presence
    stays visible without leaking the payment proof or credentials.
    """
    redacted = {}
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS:
            redacted[key] = f"<redacted:{len(value)} chars>"
        elif key.lower().startswith("sec-") or key.lower() == "user-agent":
            continue
        else:
            redacted[key] = value
    return redacted
