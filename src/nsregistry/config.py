"""Registry configuration.

Loaded from config/registry.json, then overridden by environment
variables. A .env file next to the config directory is read first, so
deployment secrets and admin lists can live outside version control:

    NSREGISTRY_ADMIN_USERS=alice,bob
    NSREGISTRY_REQUIRE_ORIGIN_APPROVAL=true
    NSREGISTRY_STORE_TIMEOUT_SECONDS=2.5
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

CONFIG_FILENAME = "registry.json"
ENV_PREFIX = "NSREGISTRY_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name}: expected a boolean, got {raw!r}")


@dataclass
class RegistryConfig:
    """Runtime settings for the registry service."""
    admin_users: list[str] = field(default_factory=list)
    # When False, a registration of that type counts as approved for
    # status checks even while pending.
    require_origin_approval: bool = True
    require_cache_approval: bool = True
    store_timeout_seconds: float = 5.0
    lock_timeout_seconds: float = 10.0
    db_location: Optional[Path] = None
    event_log_location: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], base_dir: Optional[Path] = None) -> RegistryConfig:
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown registry config keys: {sorted(unknown)}")

        config = cls(**data)
        config.admin_users = list(config.admin_users)
        config.db_location = _resolve(config.db_location, base_dir)
        config.event_log_location = _resolve(config.event_log_location, base_dir)
        return config

    @classmethod
    def from_config_dir(
        cls,
        config_dir: Path,
        environ: Optional[dict[str, str]] = None,
    ) -> RegistryConfig:
        """Load registry.json from a directory and apply env overrides.

        Args:
            config_dir: Directory containing registry.json. A missing
                file yields the defaults.
            environ: Environment mapping to read overrides from. When
                omitted, os.environ is used after loading a .env file
                from the config directory's parent.
        """
        path = config_dir / CONFIG_FILENAME
        data: dict[str, Any] = {}
        if path.exists():
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)

        if environ is None:
            load_dotenv(config_dir.parent / ".env")
            environ = dict(os.environ)

        config = cls.from_dict(data, base_dir=config_dir.parent)
        config.apply_env(environ, base_dir=config_dir.parent)
        return config

    def apply_env(self, environ: dict[str, str], base_dir: Optional[Path] = None) -> None:
        """Override fields from NSREGISTRY_* variables."""
        for f in fields(self):
            name = ENV_PREFIX + f.name.upper()
            raw = environ.get(name)
            if raw is None:
                continue
            if f.name == "admin_users":
                self.admin_users = [u.strip() for u in raw.split(",") if u.strip()]
            elif f.name.startswith("require_"):
                setattr(self, f.name, _parse_bool(name, raw))
            elif f.name.endswith("_seconds"):
                setattr(self, f.name, float(raw))
            else:
                setattr(self, f.name, _resolve(raw, base_dir))

    def validate(self) -> list[str]:
        """Check configuration invariants. Returns errors (empty = OK)."""
        errors: list[str] = []
        if self.store_timeout_seconds <= 0:
            errors.append("store_timeout_seconds must be > 0")
        if self.lock_timeout_seconds <= 0:
            errors.append("lock_timeout_seconds must be > 0")
        if self.lock_timeout_seconds < self.store_timeout_seconds:
            errors.append(
                "lock_timeout_seconds must be >= store_timeout_seconds "
                "(a waiter must outlast one bounded write)"
            )
        if any(not u.strip() for u in self.admin_users):
            errors.append("admin_users must not contain blank entries")
        if len(set(self.admin_users)) != len(self.admin_users):
            errors.append("admin_users contains duplicates")
        if (
            self.db_location is not None
            and self.event_log_location is not None
            and self.db_location == self.event_log_location
        ):
            errors.append("db_location and event_log_location must differ")
        return errors


def _resolve(value: Any, base_dir: Optional[Path]) -> Optional[Path]:
    if value is None or value == "":
        return None
    path = Path(value)
    if base_dir is not None and not path.is_absolute():
        path = base_dir / path
    return path
