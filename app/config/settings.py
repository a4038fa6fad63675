"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

JOB_EXECUTION_MODES = ("inline", "async")


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                print(f"[settings] ✓ Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read /run/secrets/{secret_name}: {e}")

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


@dataclass
class AppConfig:
    """Application configuration container."""
    # Mode
    demo_mode: bool

    # Flask
    secret_key: str

    # Persistence
    database_url: str = "sqlite:///.runtime/lifecycle.db"

    # Broker client
    broker_client_timeout: float = 60.0
    broker_api_version: str = "2.15"

    # Job execution
    job_execution_mode: str = "inline"
    job_workers: int = 4

    # Audit
    audit_log_signing_key: str = ""

    # Reconciliation
    stuck_operation_minutes: int = 60

    # Logging
    log_level: str = "INFO"

    @property
    def is_async(self) -> bool:
        """True when jobs are handed to the worker pool instead of run inline."""
        return self.job_execution_mode == "async"


def _get_or_generate(var_name: str, demo_default: Optional[str] = None, required: bool = True, demo_mode: bool = False) -> str:
    """Get environment variable or use demo default."""
    value = os.environ.get(var_name)
    if value:
        return value

    if demo_mode and demo_default is not None:
        print(f"[demo-mode] Using default for {var_name}")
        os.environ[var_name] = demo_default
        return demo_default

    if not required:
        return ""

    raise RuntimeError(f"Environment variable {var_name} is required in production mode.")


def _parse_positive_number(var_name: str, default: str, cast=float):
    raw = os.environ.get(var_name, default).strip()
    try:
        value = cast(raw)
    except ValueError:
        raise RuntimeError(f"{var_name} must be a number, got {raw!r}")
    if value <= 0:
        raise RuntimeError(f"{var_name} must be greater than zero, got {raw!r}")
    return value


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets."""
    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"

    # Flask secret key
    secret_key = _load_secret_from_file("flask_secret_key", "FLASK_SECRET_KEY")
    if not secret_key:
        if not demo_mode:
            raise RuntimeError("FLASK_SECRET_KEY not found in /run/secrets or environment")
        secret_key = secrets.token_urlsafe(48)
        os.environ["FLASK_SECRET_KEY"] = secret_key
        print("[demo-mode] Generated temporary FLASK_SECRET_KEY")

    # Database (may embed credentials, so it is resolvable from /run/secrets too)
    database_url = _load_secret_from_file("database_url", "DATABASE_URL")
    if not database_url:
        database_url = _get_or_generate(
            "DATABASE_URL",
            demo_default="sqlite:///.runtime/lifecycle.db",
            demo_mode=demo_mode,
        )

    # Audit log signing key
    audit_log_signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY")
    if audit_log_signing_key:
        os.environ["AUDIT_LOG_SIGNING_KEY"] = audit_log_signing_key
    elif demo_mode:
        audit_log_signing_key = os.environ.get("AUDIT_LOG_SIGNING_KEY_DEMO", "demo-audit-signing-key-change-in-production")
        os.environ["AUDIT_LOG_SIGNING_KEY"] = audit_log_signing_key
        print(f"[demo-mode] Using demo AUDIT_LOG_SIGNING_KEY: {audit_log_signing_key[:20]}...")
    else:
        audit_log_signing_key = ""

    broker_client_timeout = _parse_positive_number("BROKER_CLIENT_TIMEOUT_SECONDS", "60")
    broker_api_version = os.environ.get("BROKER_API_VERSION", "2.15").strip() or "2.15"

    job_execution_mode = os.environ.get("JOB_EXECUTION_MODE", "inline").strip().lower()
    if job_execution_mode not in JOB_EXECUTION_MODES:
        raise RuntimeError(
            f"JOB_EXECUTION_MODE must be one of {', '.join(JOB_EXECUTION_MODES)}, got {job_execution_mode!r}"
        )
    job_workers = _parse_positive_number("JOB_WORKERS", "4", cast=int)

    stuck_operation_minutes = _parse_positive_number("STUCK_OPERATION_MINUTES", "60", cast=int)
    log_level = os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO"

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    print(f"[settings] Mode={mode_label}; jobs={job_execution_mode}; broker_timeout={broker_client_timeout}s")

    if demo_mode:
        print("[settings] WARNING: Demo credentials in use. Do not deploy with these defaults.")

    return AppConfig(
        demo_mode=demo_mode,
        secret_key=secret_key,
        database_url=database_url,
        broker_client_timeout=broker_client_timeout,
        broker_api_version=broker_api_version,
        job_execution_mode=job_execution_mode,
        job_workers=job_workers,
        audit_log_signing_key=audit_log_signing_key,
        stuck_operation_minutes=stuck_operation_minutes,
        log_level=log_level,
    )
