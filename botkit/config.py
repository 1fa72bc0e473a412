from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import os
import yaml


class ConfigError(RuntimeError):
    """Raised when the configuration file is invalid."""


@dataclass(slots=True)
class LoggingConfig:
    level: str
    logger_channel_id: Optional[int]


@dataclass(slots=True)
class PermissionsConfig:
    admin_roles: List[int] = field(default_factory=list)
    developer_ids: List[int] = field(default_factory=list)
    test_guild_id: Optional[int] = None


@dataclass(slots=True)
class StorageConfig:
    data_dir: Path = Path("data")


@dataclass(slots=True)
class InteractionsConfig:
    # None disables the staleness check for components without their own timeout
    default_timeout_minutes: Optional[float] = 15


@dataclass(slots=True)
class TriggerDocuments:
    rules: Path
    lists: Path


@dataclass(slots=True)
class TriggersConfig:
    chat_react: TriggerDocuments
    chat_response: TriggerDocuments


@dataclass(slots=True)
class Config:
    token: str
    application_id: int
    logging: LoggingConfig
    permissions: PermissionsConfig
    storage: StorageConfig
    interactions: InteractionsConfig
    triggers: TriggersConfig


def _require(data: Dict[str, Any], key: str) -> Any:
    if key not in data:
        raise ConfigError(f"Missing required config key: {key}")
    return data[key]

def _resolve_env_value(value: str, key: str) -> str:
    trimmed = value.strip()
    if trimmed.startswith("${") and trimmed.endswith("}"):
        env_name = trimmed[2:-1].strip()
        if not env_name:
            raise ConfigError(f"Environment reference for '{key}' is empty.")
        env_value = os.getenv(env_name)
        if env_value is None:
            raise ConfigError(
                f"Environment variable '{env_name}' referenced by '{key}' is not set."
            )
        return env_value
    return value


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key} must be a mapping.")
    return value


def _optional_id(value: Any, key: str) -> Optional[int]:
    if value in (None, "", 0):
        return None
    if isinstance(value, str):
        value = _resolve_env_value(value, key)
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be an integer ID or null.") from exc
    if parsed <= 0:
        raise ConfigError(f"{key} must be a positive integer.")
    return parsed


def _id_list(value: Any, key: str) -> List[int]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a list of IDs.")
    ids: List[int] = []
    for item in value:
        try:
            ids.append(int(item))
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{key} contains invalid id: {item!r}") from exc
    return ids


def _parse_logging(data: Dict[str, Any]) -> LoggingConfig:
    level = str(data.get("level", "INFO")).upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigError(f"logging.level has an unknown value: {level!r}")
    logger_channel_id = data.get("logger_channel_id")
    if logger_channel_id is not None and not isinstance(logger_channel_id, int):
        raise ConfigError(
            "logging.logger_channel_id must be an integer channel ID or null."
        )
    return LoggingConfig(level=level, logger_channel_id=logger_channel_id)


def _parse_permissions(data: Dict[str, Any]) -> PermissionsConfig:
    return PermissionsConfig(
        admin_roles=_id_list(data.get("admin_roles"), "permissions.admin_roles"),
        developer_ids=_id_list(data.get("developer_ids"), "permissions.developer_ids"),
        test_guild_id=_optional_id(
            data.get("test_guild_id"), "permissions.test_guild_id"
        ),
    )


def _parse_storage(data: Dict[str, Any]) -> StorageConfig:
    data_dir = data.get("data_dir", "data")
    if not isinstance(data_dir, str) or not data_dir.strip():
        raise ConfigError("storage.data_dir must be a non-empty path.")
    return StorageConfig(data_dir=Path(data_dir))


def _parse_interactions(data: Dict[str, Any]) -> InteractionsConfig:
    if "default_timeout_minutes" not in data:
        return InteractionsConfig()
    timeout = data["default_timeout_minutes"]
    if timeout is None:
        return InteractionsConfig(default_timeout_minutes=None)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigError(
            "interactions.default_timeout_minutes must be a positive number or null."
        )
    return InteractionsConfig(default_timeout_minutes=float(timeout))


def _parse_trigger_documents(
    data: Dict[str, Any], name: str
) -> TriggerDocuments:
    section = _section(data, name)
    try:
        rules = Path(str(section.get("rules", f"config/{name}.yaml")))
        lists = Path(str(section.get("lists", f"config/{name}_lists.yaml")))
    except TypeError as exc:
        raise ConfigError(f"Invalid trigger document paths for {name}.") from exc
    return TriggerDocuments(rules=rules, lists=lists)


def _parse_triggers(data: Dict[str, Any]) -> TriggersConfig:
    return TriggersConfig(
        chat_react=_parse_trigger_documents(data, "chat_react"),
        chat_response=_parse_trigger_documents(data, "chat_response"),
    )


def load_config(path: Path) -> Config:
    if not path.exists():
        raise ConfigError(f"Config file {path} does not exist.")

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping at the root.")

    token_raw = str(_require(data, "token"))
    token = _resolve_env_value(token_raw, "token").strip()
    if not token:
        raise ConfigError("token must not be empty.")
    application_raw = _require(data, "application_id")
    if isinstance(application_raw, str):
        application_raw = _resolve_env_value(application_raw, "application_id")
    try:
        application_id = int(application_raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError("application_id must be an integer.") from exc

    return Config(
        token=token,
        application_id=application_id,
        logging=_parse_logging(_section(data, "logging")),
        permissions=_parse_permissions(_section(data, "permissions")),
        storage=_parse_storage(_section(data, "storage")),
        interactions=_parse_interactions(_section(data, "interactions")),
        triggers=_parse_triggers(_section(data, "triggers")),
    )
