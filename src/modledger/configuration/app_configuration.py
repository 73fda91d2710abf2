from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
import fcntl
from typing import Any, Dict
import yaml

from modledger.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path("./config/app_config.yml").resolve()

DEFAULT_WARN_MUTE_MINUTES = 10
DEFAULT_WARNINGS_DISPLAY_LIMIT = 10
DEFAULT_DB_PATH = "./data/modledger.db"
DEFAULT_HEALTH_PORT = 3000


@dataclass(frozen=True)
class RoleIds:
    """Role ids backing each authority tier. ``None`` means the tier is unreachable."""

    staff_assistant: int | None = None
    assistant_supervisor: int | None = None
    supervisor: int | None = None
    assistant_manager: int | None = None


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("[APP CONFIGURATION] Ignoring non-numeric id %r", value)
        return None


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key, {})
    return value if isinstance(value, dict) else {}


class AppConfig:
    """File-lock based accessor around the YAML application configuration.

    The class caches the contents of ``./config/app_config.yml`` and exposes
    typed shortcuts for the role ladder, channels and moderation knobs.
    Reads take a shared fcntl lock so an operator editing the file from
    another process never hands us a half-written document.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                data = yaml.safe_load(f)
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
                return data if isinstance(data, dict) else {}
        except FileNotFoundError:
            logger.error("[APP CONFIGURATION] Config file %s not found.", self.config_path)
        except Exception as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
        return {}

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Re-read the YAML file, replace the cache and return the new mapping.

        An unreadable or missing file yields an empty mapping, which makes
        every shortcut fall back to its default.
        """
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        """The cached configuration mapping. Callers must not mutate it."""
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    # --------------------------
    # High-level shortcuts
    # --------------------------
    @property
    def role_ids(self) -> RoleIds:
        """Role ids for the four staff tiers, lowest first."""
        roles = _section(self._data, "roles")
        return RoleIds(
            staff_assistant=_optional_int(roles.get("staff_assistant")),
            assistant_supervisor=_optional_int(roles.get("assistant_supervisor")),
            supervisor=_optional_int(roles.get("supervisor")),
            assistant_manager=_optional_int(roles.get("assistant_manager")),
        )

    @property
    def mod_log_channel_id(self) -> int | None:
        """Channel receiving case and event mirrors; ``None`` disables mirroring."""
        return _optional_int(_section(self._data, "channels").get("mod_log"))

    @property
    def rules_channel_id(self) -> int | None:
        """Channel under which private acknowledgement threads are opened."""
        return _optional_int(_section(self._data, "channels").get("rules"))

    @property
    def warn_mute_minutes(self) -> int:
        """Length of the restriction a warning applies until it is acknowledged."""
        value = _section(self._data, "moderation").get("warn_mute_minutes", DEFAULT_WARN_MUTE_MINUTES)
        try:
            return max(1, int(value))
        except (TypeError, ValueError):
            return DEFAULT_WARN_MUTE_MINUTES

    @property
    def warnings_display_limit(self) -> int:
        value = _section(self._data, "moderation").get("warnings_display_limit", DEFAULT_WARNINGS_DISPLAY_LIMIT)
        try:
            return max(1, int(value))
        except (TypeError, ValueError):
            return DEFAULT_WARNINGS_DISPLAY_LIMIT

    @property
    def acknowledgement_expiry_minutes(self) -> float | None:
        """Minutes after which an unanswered acknowledgement lapses.

        ``None`` (the default) keeps workflows open until the user clicks.
        """
        value = _section(self._data, "acknowledgement").get("expiry_minutes")
        if value is None:
            return None
        try:
            minutes = float(value)
        except (TypeError, ValueError):
            logger.warning("[APP CONFIGURATION] Invalid acknowledgement.expiry_minutes %r; disabling expiry", value)
            return None
        return minutes if minutes > 0 else None

    @property
    def database_path(self) -> Path:
        value = _section(self._data, "database").get("path") or DEFAULT_DB_PATH
        return Path(str(value)).resolve()

    @property
    def health_enabled(self) -> bool:
        return bool(_section(self._data, "health").get("enabled", True))

    @property
    def health_port(self) -> int:
        value = _section(self._data, "health").get("port", DEFAULT_HEALTH_PORT)
        try:
            return int(value)
        except (TypeError, ValueError):
            return DEFAULT_HEALTH_PORT


# Shared application-wide configuration instance
app_config = AppConfig(CONFIG_PATH)
