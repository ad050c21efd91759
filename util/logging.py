"""
Structured operation logging for the persistence core.
Sensitive document content is redacted before it reaches any log line.
"""

import logging
from typing import Any, Dict, List, Optional

# Credential-style names that are always redacted in log payloads
CREDENTIAL_FIELDS = [
    'password', 'token', 'access_token', 'refresh_token', 'api_key',
    'secret', 'authorization', 'cookie', 'session', 'credential', 'jwt',
]


def _default_sensitive_fields() -> List[str]:
    # Imported lazily so util stays importable without the core package configured
    from worksheet_vault.core.config import get_sensitive_field_keywords
    return CREDENTIAL_FIELDS + ['data', 'document', 'value'] + list(get_sensitive_field_keywords())


def _is_redacted(key: str, sensitive_fields: List[str]) -> bool:
    lowered = key.lower()
    return any(field in lowered for field in sensitive_fields)


class StructuredLogger:
    """Structured logger for save, codec, gateway and cache operations."""

    def __init__(self, name: str = "worksheet_vault"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_save_operation(self, owner_id: str, group_key: int, record_key: str, status: str = "success",
                           details: Dict[str, Any] = None):
        """Log a gateway write (never includes document content)."""
        log_details = {"owner_id": owner_id, "phase": group_key, "worksheet": record_key}
        if details:
            log_details.update(sanitize_payload(details))

        level = logging.ERROR if status == "failed" else logging.INFO
        self.log_operation("gateway.write", status, log_details, level)

    def log_gateway_timeout(self, owner_id: str, group_key: int, record_key: str, timeout_sec: float, policy: str):
        """Log a store write that did not resolve within the timeout."""
        log_details = {
            "owner_id": owner_id,
            "phase": group_key,
            "worksheet": record_key,
            "timeout_sec": timeout_sec,
            "policy": policy,
        }
        self.log_operation("gateway.timeout", "optimistic" if policy == "optimistic" else "failed",
                           log_details, logging.WARNING)

    def log_codec_fallback(self, direction: str, field_path: str, error: Exception):
        """Log a per-field encrypt/decrypt failure (field path only, never the value)."""
        log_details = {
            "field": field_path,
            "error_type": type(error).__name__,
        }
        # Decrypt fallbacks are expected for legacy plaintext records
        level = logging.WARNING if direction == "encode" else logging.DEBUG
        self.log_operation(f"codec.{direction}", "fallback", log_details, level)

    def log_invalidation(self, keys: List[tuple], reason: str = "write"):
        """Log cache views marked stale."""
        self.log_operation("cache.invalidate", "stale", {"keys": [list(k) for k in keys], "reason": reason},
                           logging.DEBUG)

    def log_scheduler_event(self, event: str, record_key: str, details: Dict[str, Any] = None):
        """Log an auto-save scheduler transition."""
        log_details = {"worksheet": record_key}
        if details:
            log_details.update(details)

        level = logging.ERROR if event == "error" else logging.DEBUG
        self.log_operation(f"autosave.{event}", "ok" if event != "error" else "failed", log_details, level)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)

# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None,
                sensitive_fields: Optional[List[str]] = None):
    """General audit event logging with privacy controls."""
    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields)

    logger.log_operation(event_type.replace(".", "_"), "audit", log_details)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for logging: redact sensitive keys, truncate long strings."""
    if sensitive_fields is None:
        sensitive_fields = _default_sensitive_fields()

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or not _is_redacted(str(k), sensitive_fields):
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
