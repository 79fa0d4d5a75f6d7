"""
Security module for the Capellán HTTP API.
Implements passkey authentication for ingestion, answering and admin endpoints.
"""

import hashlib
import logging
import secrets
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request

from capellan import config

logger = logging.getLogger(__name__)

DEFAULT_PASSKEY = "your_secure_passkey_here_change_me"


def hash_passkey(passkey: str) -> str:
    """Create a SHA-256 hash of the passkey for logging (never log raw passkey)."""
    return hashlib.sha256(passkey.encode()).hexdigest()[:8]


def get_client_ip(request: Request) -> str:
    """Extract real client IP from request, handling proxies and load balancers."""
    forwarded_for = request.headers.get('X-Forwarded-For')
    if forwarded_for:
        # X-Forwarded-For can contain multiple IPs, use the first one
        return forwarded_for.split(',')[0].strip()

    real_ip = request.headers.get('X-Real-IP')
    if real_ip:
        return real_ip.strip()

    return str(request.client.host) if request.client else "unknown"


def log_security_event(
    event_type: str,
    ip_address: str,
    details: Dict[str, Any],
    severity: str = "WARNING"
) -> None:
    """
    Log security events with structured data for monitoring and analysis.

    Args:
        event_type: Type of security event (auth_failure, auth_success, etc.)
        ip_address: Source IP address
        details: Additional event details
        severity: Log severity level
    """
    log_entry = {
        "event": event_type,
        "ip": ip_address,
        "severity": severity,
        **details
    }

    if severity == "CRITICAL":
        logger.critical(f"[SECURITY] {log_entry}")
    elif severity == "ERROR":
        logger.error(f"[SECURITY] {log_entry}")
    elif severity == "INFO":
        logger.info(f"[SECURITY] {log_entry}")
    else:
        logger.warning(f"[SECURITY] {log_entry}")


def validate_passkey(request: Request, provided_passkey: Optional[str]) -> bool:
    """
    Validate a passkey taken from the request body or query string.

    Returns:
        True if authentication is valid.

    Raises:
        HTTPException: 401 if the passkey is missing or wrong.
    """
    client_ip = get_client_ip(request)
    user_agent = request.headers.get('User-Agent', 'unknown')

    if not provided_passkey:
        log_security_event(
            "auth_failure_missing_passkey",
            client_ip,
            {"reason": "Missing passkey", "path": request.url.path, "user_agent": user_agent},
            severity="ERROR"
        )
        raise HTTPException(status_code=401, detail="Authentication required")

    expected = config.WEBHOOK_PASSKEY or DEFAULT_PASSKEY
    if not secrets.compare_digest(str(provided_passkey), expected):
        log_security_event(
            "auth_failure_invalid_passkey",
            client_ip,
            {
                "reason": "Invalid passkey provided",
                "path": request.url.path,
                "passkey_hash": hash_passkey(str(provided_passkey)),
                "user_agent": user_agent
            },
            severity="ERROR"
        )
        raise HTTPException(status_code=401, detail="Authentication failed")

    log_security_event(
        "auth_success",
        client_ip,
        {"path": request.url.path, "user_agent": user_agent},
        severity="INFO"
    )
    return True


def validate_webhook_auth(request: Request, payload: Dict[str, Any]) -> bool:
    """Validate the `passkey` field of a JSON request body."""
    return validate_passkey(request, payload.get('passkey'))


def check_security_config() -> Dict[str, Any]:
    """
    Check current security configuration and return status.
    """
    passkey = config.WEBHOOK_PASSKEY or DEFAULT_PASSKEY
    status = {
        "passkey_configured": passkey != DEFAULT_PASSKEY,
        "passkey_hash": hash_passkey(passkey),
    }

    if not status["passkey_configured"]:
        logger.warning("[SECURITY] WEBHOOK_PASSKEY not set or using default - this is insecure!")

    return status
