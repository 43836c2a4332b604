# Overview: Service-layer operations for process-wide settings; encapsulates business logic and database work.

from __future__ import annotations

from typing import Any

import bcrypt

from ..extensions import db
from ..models import AppSetting
from ..validation import ValidationError


KEY_ADMIN_PASSWORD_HASH = "admin_password_hash"
KEY_CUSTOMER_TYPES = "customer_types"
KEY_NEEDS_SYNC = "needs_sync"

DEFAULT_CUSTOMER_TYPES = [
    "Unclassified",
    "Hospital",
    "Medical center",
    "Clinic",
    "Individual",
    "Company",
    "Residential complex",
    "Restaurant",
]

# Keys clients may write through update_settings(), with their defaults.
PUBLIC_SETTINGS_DEFAULTS: dict[str, Any] = {
    "allowed_emails": [],
    "admin_email": None,
    "backup_email": None,
    "backup_whatsapp": None,
    "last_backup_date": None,
    "auto_backup_enabled": False,
    "storage_limit_mb": 9000,
}

MIN_ADMIN_PASSWORD_LENGTH = 4


def _get_row(key: str) -> AppSetting | None:
    return db.session.query(AppSetting).filter_by(key=key).first()


def get_value(key: str, default: Any = None) -> Any:
    row = _get_row(key)
    if row is None or row.value_json is None:
        return default
    return row.value


def set_value(key: str, value: Any, *, commit: bool = True) -> None:
    row = _get_row(key)
    if row is None:
        row = AppSetting(key=key)
        db.session.add(row)
    row.value = value
    if commit:
        db.session.commit()


def get_settings() -> dict:
    """Public settings view. The admin password hash never leaves this module."""
    settings = {key: get_value(key, default) for key, default in PUBLIC_SETTINGS_DEFAULTS.items()}
    settings["has_admin_password"] = get_value(KEY_ADMIN_PASSWORD_HASH) is not None
    settings["needs_sync"] = is_sync_needed()
    return settings


def _validate_setting(key: str, value: Any) -> Any:
    if key == "allowed_emails":
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ValidationError("allowed_emails must be a list of strings")
        return [v.strip().lower() for v in value if v.strip()]
    if key == "auto_backup_enabled":
        if not isinstance(value, bool):
            raise ValidationError("auto_backup_enabled must be a boolean")
        return value
    if key == "storage_limit_mb":
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationError("storage_limit_mb must be a positive integer")
        return value
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value.strip() if isinstance(value, str) else value


def update_settings(patch: dict, *, commit: bool = True) -> dict:
    if not isinstance(patch, dict):
        raise ValidationError("Invalid JSON payload")
    unknown = sorted(k for k in patch if k not in PUBLIC_SETTINGS_DEFAULTS)
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")

    for key, raw in patch.items():
        set_value(key, _validate_setting(key, raw), commit=False)
    if commit:
        db.session.commit()
    return get_settings()


# =============================================================================
# ADMIN PASSWORD
# =============================================================================

def set_admin_password(password: str | None) -> None:
    """Set (or clear with None) the password that confirms destructive actions."""
    if password is None:
        set_value(KEY_ADMIN_PASSWORD_HASH, None)
        return
    if len(password) < MIN_ADMIN_PASSWORD_LENGTH:
        raise ValidationError(f"Admin password must be at least {MIN_ADMIN_PASSWORD_LENGTH} characters")
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")
    set_value(KEY_ADMIN_PASSWORD_HASH, hashed)


def has_admin_password() -> bool:
    return get_value(KEY_ADMIN_PASSWORD_HASH) is not None


def verify_admin_password(password: str | None) -> bool:
    """True when no password is configured, or when password matches it."""
    hashed = get_value(KEY_ADMIN_PASSWORD_HASH)
    if hashed is None:
        return True
    if not password:
        return False
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


# =============================================================================
# CUSTOMER TYPES
# =============================================================================

def get_customer_types() -> list[str]:
    types = get_value(KEY_CUSTOMER_TYPES)
    if types is None:
        return list(DEFAULT_CUSTOMER_TYPES)
    return types


def save_customer_types(types: list, *, commit: bool = True) -> list[str]:
    if not isinstance(types, list) or not all(isinstance(t, str) for t in types):
        raise ValidationError("customer types must be a list of strings")
    cleaned: list[str] = []
    for t in types:
        label = t.strip()
        if label and label not in cleaned:
            cleaned.append(label)
    if not cleaned:
        raise ValidationError("At least one customer type is required")
    set_value(KEY_CUSTOMER_TYPES, cleaned, commit=commit)
    return cleaned


def ensure_defaults_seeded() -> bool:
    """Seed the default customer-type labels on a fresh install. Idempotent."""
    if _get_row(KEY_CUSTOMER_TYPES) is not None:
        return False
    set_value(KEY_CUSTOMER_TYPES, list(DEFAULT_CUSTOMER_TYPES))
    return True


# =============================================================================
# SYNC FLAG
# =============================================================================

def is_sync_needed() -> bool:
    return bool(get_value(KEY_NEEDS_SYNC, False))


def mark_sync_needed(*, commit: bool = True) -> None:
    if not is_sync_needed():
        set_value(KEY_NEEDS_SYNC, True, commit=commit)


def mark_sync_done(*, commit: bool = True) -> None:
    if is_sync_needed():
        set_value(KEY_NEEDS_SYNC, False, commit=commit)
