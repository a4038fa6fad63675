"""Audit logging utilities for service lifecycle events."""

from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import os
import sys
from pathlib import Path
from typing import Any, Literal

AUDIT_LOG_DIR = Path(os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"))
_env_secret_path_str = os.environ.get("AUDIT_LOG_SIGNING_KEY_FILE")
_env_secret_path: Path | None = Path(_env_secret_path_str) if _env_secret_path_str else None
AUDIT_LOG_FILE = AUDIT_LOG_DIR / "service-events.jsonl"


def _get_signing_key() -> bytes:
    """Get the audit signing key (loaded lazily so /run/secrets can populate the environment first)."""
    if _env_secret_path and _env_secret_path.exists():
        try:
            return _env_secret_path.read_text(encoding="utf-8").strip().encode("utf-8")
        except OSError:
            pass
    if "AUDIT_LOG_SIGNING_KEY" in os.environ:
        return os.environ.get("AUDIT_LOG_SIGNING_KEY", "").strip().encode("utf-8")
    demo_default = os.environ.get("AUDIT_LOG_SIGNING_KEY_DEMO", "demo-audit-signing-key-change-in-production")
    return demo_default.encode("utf-8")


EventType = Literal[
    "audit.service_instance.create",
    "audit.service_instance.update",
    "audit.service_instance.delete",
    "audit.service_key.create",
    "audit.service_key.delete",
    "audit.feature_flag.update",
]


def _ensure_audit_dir() -> None:
    """Create audit directory with restricted permissions."""
    AUDIT_LOG_DIR.mkdir(parents=True, exist_ok=True)
    AUDIT_LOG_DIR.chmod(0o700)


def _sign_event(event: dict[str, Any]) -> str:
    """Generate HMAC-SHA256 signature for audit event."""
    signing_key = _get_signing_key()
    if not signing_key:
        return ""
    canonical = json.dumps(event, sort_keys=True, separators=(",", ":"))
    return hmac.new(signing_key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def log_service_event(
    event_type: EventType,
    resource_guid: str,
    *,
    resource_name: str = "",
    actor: str = "system",
    timestamp: datetime.datetime | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """Append a lifecycle event to the audit trail with a signature.

    Args:
        event_type: audit.<resource type>.<operation>
        resource_guid: Target resource
        resource_name: Display name of the target resource
        actor: Who requested the operation (user guid, "cli", "system")
        timestamp: When the request was made (defaults to now, UTC)
        details: Additional context (operation description, parameters, ...)
        success: Whether the request was accepted
    """
    _ensure_audit_dir()

    when = timestamp or datetime.datetime.now(datetime.timezone.utc)
    event = {
        "timestamp": when.isoformat(),
        "event_type": event_type,
        "resource_guid": resource_guid,
        "resource_name": resource_name,
        "actor": actor,
        "success": success,
        "details": details or {},
    }

    signature = _sign_event(event)
    if signature:
        event["signature"] = signature

    # One JSON object per line
    with AUDIT_LOG_FILE.open("a", encoding="utf-8") as f:
        f.write(json.dumps(event, ensure_ascii=False) + "\n")

    AUDIT_LOG_FILE.chmod(0o600)


def safe_log_service_event(event_type: EventType, resource_guid: str, **kwargs: Any) -> bool:
    """Log a lifecycle event, reporting failures on stderr instead of raising.

    Returns:
        True if the event was written, False otherwise
    """
    try:
        log_service_event(event_type, resource_guid, **kwargs)
        return True
    except Exception as e:
        print(
            f"[audit] Warning: Failed to log {event_type} event for {resource_guid}: {e}",
            file=sys.stderr,
        )
        return False


def verify_audit_log() -> tuple[int, int]:
    """Verify all signatures in the audit log.

    Returns:
        Tuple of (total_events, valid_signatures)
    """
    if not AUDIT_LOG_FILE.exists():
        return 0, 0

    total = 0
    valid = 0

    with AUDIT_LOG_FILE.open("r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            total += 1
            try:
                event = json.loads(line)
                stored_sig = event.pop("signature", "")
                if not stored_sig:
                    continue
                computed_sig = _sign_event(event)
                if hmac.compare_digest(stored_sig, computed_sig):
                    valid += 1
            except (json.JSONDecodeError, KeyError):
                continue

    return total, valid


if __name__ == "__main__":
    total, valid = verify_audit_log()
    print(f"Audit log: {valid}/{total} events with valid signatures")
    sys.exit(0 if total == valid else 1)
