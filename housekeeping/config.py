"""
Housekeeping configuration.

Settings are layered: built-in defaults, then an optional JSON file (for
structured values such as group mappings), then HOUSEKEEPING_* environment
variables (a .env file is honoured through python-dotenv), then explicit
overrides from the command line. The result is an immutable, validated
HousekeepingConfig passed to every entry point.
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from dotenv import load_dotenv
from ldap3.core.exceptions import LDAPException, LDAPInvalidDnError
from ldap3.utils.dn import parse_dn

from directory.exceptions import ValidationFailedError
from directory.models.object_record import SearchScope

from .differ import NON_COMPLIANT_ACTIONS
from .exclusions import validate_identifier
from .models.classification import Classification

logger = logging.getLogger(__name__)

ENV_PREFIX = "HOUSEKEEPING_"
TRUE_VALUES = {"1", "true", "yes", "y", "on"}
FALSE_VALUES = {"0", "false", "no", "n", "off"}


def parse_bool(value: Any, name: str = "value") -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ValidationFailedError(f"{name} must be a boolean, got {value!r}")


def parse_list(value: Any) -> Tuple[str, ...]:
    """Accept a list or a comma/semicolon separated string."""
    if value is None or value == "":
        return ()
    if isinstance(value, str):
        value = value.replace(";", ",").split(",")
    return tuple(str(item).strip() for item in value if str(item).strip())


@dataclass(frozen=True)
class HousekeepingConfig:
    """Validated options for one housekeeping run."""

    search_scope: SearchScope = SearchScope.SUBTREE
    search_base: Optional[str] = None
    exclusion_list: Tuple[str, ...] = ()
    desired_groups_by_classification: Mapping[Classification, FrozenSet[str]] = field(default_factory=dict)
    strict_mode: bool = False
    disable_non_compliant: bool = False
    non_compliant_action: str = "disable"
    dry_run: bool = True
    protected_groups: Tuple[str, ...] = ()
    stale_days: int = 90
    tier_attribute: Optional[str] = "employeeType"
    retry_backoff: float = 2.0
    run_deadline_seconds: Optional[float] = None
    max_workers: int = 1

    def __post_init__(self):
        self._set("search_scope", SearchScope.parse(self.search_scope))

        if self.search_base is not None:
            if not str(self.search_base).strip():
                self._set("search_base", None)
            else:
                try:
                    components = parse_dn(self.search_base)
                    if not components or any(not component[0] for component in components):
                        raise LDAPInvalidDnError("every RDN needs an attribute type")
                except LDAPException as e:
                    raise ValidationFailedError(f"Invalid search base {self.search_base!r}: {e}")

        self._set("exclusion_list", tuple(validate_identifier(e) for e in parse_list(self.exclusion_list)))
        self._set("protected_groups", parse_list(self.protected_groups))

        raw_mapping = self.desired_groups_by_classification or {}
        if isinstance(raw_mapping, str):
            try:
                raw_mapping = json.loads(raw_mapping)
            except json.JSONDecodeError as e:
                raise ValidationFailedError(f"desired_groups_by_classification is not valid JSON: {e}")
        if not isinstance(raw_mapping, Mapping):
            raise ValidationFailedError("desired_groups_by_classification must map classifications to groups")

        mapping: Dict[Classification, FrozenSet[str]] = {}
        for tag, groups in raw_mapping.items():
            try:
                classification = Classification.parse(tag)
            except ValueError as e:
                raise ValidationFailedError(str(e))
            mapping[classification] = frozenset(parse_list(groups))
        self._set("desired_groups_by_classification", mapping)

        for name in ("strict_mode", "disable_non_compliant", "dry_run"):
            self._set(name, parse_bool(getattr(self, name), name))

        if self.non_compliant_action not in NON_COMPLIANT_ACTIONS:
            raise ValidationFailedError(
                f"non_compliant_action must be one of {NON_COMPLIANT_ACTIONS}, got {self.non_compliant_action!r}"
            )

        try:
            self._set("stale_days", int(self.stale_days))
            self._set("retry_backoff", float(self.retry_backoff))
            self._set("max_workers", int(self.max_workers))
            if self.run_deadline_seconds not in (None, ""):
                self._set("run_deadline_seconds", float(self.run_deadline_seconds))
            else:
                self._set("run_deadline_seconds", None)
        except (TypeError, ValueError) as e:
            raise ValidationFailedError(f"Invalid numeric setting: {e}")

        if self.stale_days < 1:
            raise ValidationFailedError("stale_days must be at least 1")
        if self.retry_backoff < 0:
            raise ValidationFailedError("retry_backoff cannot be negative")
        if self.max_workers < 1:
            raise ValidationFailedError("max_workers must be at least 1")
        if self.run_deadline_seconds is not None and self.run_deadline_seconds <= 0:
            raise ValidationFailedError("run_deadline_seconds must be positive")

        if not self.tier_attribute:
            self._set("tier_attribute", None)

    def _set(self, name: str, value: Any) -> None:
        object.__setattr__(self, name, value)

    def with_overrides(self, **overrides) -> "HousekeepingConfig":
        """Copy with the given non-None settings replaced (and re-validated)."""
        changes = {name: value for name, value in overrides.items() if value is not None}
        return replace(self, **changes) if changes else self

    @classmethod
    def field_names(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "HousekeepingConfig":
        unknown = set(values) - set(cls.field_names())
        if unknown:
            raise ValidationFailedError(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**dict(values))

    @classmethod
    def load(
        cls,
        config_file: Optional[str] = None,
        overrides: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "HousekeepingConfig":
        """
        Build a configuration from file, environment and overrides.

        Args:
            config_file: JSON file path; falls back to HOUSEKEEPING_CONFIG_FILE
            overrides: Highest-precedence values (None entries are ignored)
            environ: Environment mapping (defaults to os.environ after load_dotenv)

        Raises:
            ValidationFailedError: If any value is structurally invalid
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        values: Dict[str, Any] = {}

        config_file = config_file or environ.get(f"{ENV_PREFIX}CONFIG_FILE")
        if config_file:
            values.update(read_config_file(config_file))

        for name in cls.field_names():
            env_value = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if env_value is not None and env_value != "":
                values[name] = env_value

        if "search_base" not in values and environ.get("AD_SEARCH_BASE"):
            values["search_base"] = environ["AD_SEARCH_BASE"]

        values.update({k: v for k, v in (overrides or {}).items() if v is not None})
        config = cls.from_mapping(values)
        logger.debug(f"Loaded configuration: {config}")
        return config


def read_config_file(path: str) -> Dict[str, Any]:
    """Read a JSON configuration file into a dictionary."""
    config_path = Path(path)
    if not config_path.is_file():
        raise ValidationFailedError(f"Configuration file not found: {path}")
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValidationFailedError(f"Configuration file {path} is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise ValidationFailedError(f"Configuration file {path} must contain a JSON object")
    logger.info(f"Loaded configuration file: {path}")
    return data


def get_ldap_config(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Directory connection settings from AD_* environment variables.

    AD_PASSWORD may be injected by the scheduler; otherwise the adapter falls
    back to the keyring entry named by AD_KEYRING_SERVICE.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    use_ssl = parse_bool(environ.get("AD_USE_SSL", "true"), "AD_USE_SSL")
    try:
        port = int(environ.get("AD_PORT", "636" if use_ssl else "389"))
        timeout = int(environ.get("AD_TIMEOUT", "60"))
    except ValueError as e:
        raise ValidationFailedError(f"AD_PORT and AD_TIMEOUT must be integers: {e}")

    config = {
        "server": environ.get("AD_SERVER"),
        "search_base": environ.get("AD_SEARCH_BASE"),
        "user": environ.get("AD_USER"),
        "password": environ.get("AD_PASSWORD"),
        "keyring_service": environ.get("AD_KEYRING_SERVICE", "ad_housekeeping"),
        "port": port,
        "use_ssl": use_ssl,
        "timeout": timeout,
    }

    missing = [key for key in ("server", "search_base", "user") if not config[key]]
    if missing:
        raise ValidationFailedError(
            "Missing required environment variables: "
            + ", ".join(f"AD_{key.upper()}" for key in missing)
        )
    return config
