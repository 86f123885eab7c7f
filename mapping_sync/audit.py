"""Audit logging utilities for OneLogin mapping changes."""

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
AUDIT_LOG_FILE = AUDIT_LOG_DIR / "mapping-events.jsonl"


def _get_signing_key() -> bytes:
    """Get the audit signing key (key file first, then environment)."""
    if _env_secret_path and _env_secret_path.exists():
        try:
            return _env_secret_path.read_text(encoding="utf-8").strip().encode("utf-8")
        except OSError:
            pass
    return os.environ.get("AUDIT_LOG_SIGNING_KEY", "").strip().encode("utf-8")


EventType = Literal[
    "mapping_order_sync",
    "mapping_create",
    "mapping_delete",
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


def log_sync_event(
    event_type: EventType,
    target: str,
    *,
    operator: str = "system",
    subdomain: str = "",
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """Log a mapping change to the audit trail with timestamp and signature.

    Args:
        event_type: Type of operation (mapping_order_sync, mapping_create, ...)
        target: What was changed ("mapping-order" or a mapping id)
        operator: Who performed the operation
        subdomain: OneLogin instance the change was applied to
        details: Additional context (ids toggled, resulting order, error)
        success: Whether the operation succeeded
    """
    _ensure_audit_dir()

    event = {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "event_type": event_type,
        "subdomain": subdomain,
        "target": target,
        "operator": operator,
        "success": success,
        "details": details or {},
    }

    signature = _sign_event(event)
    if signature:
        event["signature"] = signature

    with AUDIT_LOG_FILE.open("a", encoding="utf-8") as f:
        f.write(json.dumps(event, ensure_ascii=False) + "\n")

    AUDIT_LOG_FILE.chmod(0o600)


def safe_log_sync_event(
    event_type: EventType,
    target: str,
    *,
    operator: str = "system",
    subdomain: str = "",
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> bool:
    """Log a mapping change, reporting failures on stderr instead of raising.

    Returns:
        True if event was logged successfully, False if logging failed
    """
    try:
        log_sync_event(
            event_type,
            target,
            operator=operator,
            subdomain=subdomain,
            details=details,
            success=success,
        )
        return True
    except OSError as e:
        print(f"[audit] Warning: Failed to log {event_type} event for {target}: {e}", file=sys.stderr)
        return False


def verify_audit_log(path: Path | None = None) -> tuple[int, int]:
    """Verify all signatures in an audit log.

    Args:
        path: Log file to check (defaults to AUDIT_LOG_FILE)

    Returns:
        Tuple of (total_events, valid_signatures)
    """
    log_file = path or AUDIT_LOG_FILE
    if not log_file.exists():
        return 0, 0

    total = 0
    valid = 0

    with log_file.open("r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            total += 1
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                continue
            stored_sig = event.pop("signature", "")
            if not stored_sig:
                continue
            computed_sig = _sign_event(event)
            if hmac.compare_digest(stored_sig, computed_sig):
                valid += 1

    return total, valid


def main(argv: list[str] | None = None) -> None:
    """Verify an audit log; exits 1 when any event lacks a valid signature."""
    argv = sys.argv[1:] if argv is None else argv
    target = Path(argv[0]) if argv else AUDIT_LOG_FILE
    total, valid = verify_audit_log(target)
    print(f"[audit] {target}: {valid}/{total} events carry a valid signature")
    sys.exit(0 if total == valid else 1)


if __name__ == "__main__":
    main()
