"""Locate, read and write the gateway's TOML config file."""

from __future__ import annotations

import logging
import os
import platform
import stat
import tomllib
from pathlib import Path

import tomli_w
from pydantic import ValidationError

from lark_gateway.config.defaults import DEFAULT_CONFIG
from lark_gateway.config.schema import GatewayConfig
from lark_gateway.errors import ConfigurationError

logger = logging.getLogger(__name__)

_CONFIG_DIR = Path("~/.config/lark-gateway").expanduser()
_CONFIG_FILE = "config.toml"


class ConfigManager:
    """Owns ``config.toml`` for one gateway installation.

    A missing or unreadable file is not an error: :meth:`load` hands back
    the built-in defaults, which enable no channels.  A file that parses
    but describes an impossible channel setup is an error.
    """

    def __init__(self, config_dir: Path | None = None) -> None:
        self._config_dir = config_dir or _CONFIG_DIR

    def load(self) -> GatewayConfig:
        """Return the on-disk config layered over :data:`DEFAULT_CONFIG`.

        Raises:
            ConfigurationError: A section fails validation, for example a
                webhook channel with no ``port``.
        """
        path = self.get_config_path()
        if not path.is_file():
            logger.debug("No config at %s; channels stay disabled", path)
            return GatewayConfig()

        try:
            raw = tomllib.loads(path.read_text(encoding="utf-8"))
        except (tomllib.TOMLDecodeError, OSError, UnicodeDecodeError) as exc:
            logger.warning("Ignoring unreadable config %s (%s)", path, exc)
            return GatewayConfig()

        try:
            return GatewayConfig(**_deep_merge(DEFAULT_CONFIG, raw))
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid config at {path}: {exc}") from exc

    def save(self, config: GatewayConfig) -> None:
        """Write *config* back as TOML, owner-readable only on POSIX hosts."""
        path = self.get_config_path()
        path.parent.mkdir(parents=True, exist_ok=True)

        # None has no TOML spelling: unset tokens and ports are left out
        path.write_bytes(tomli_w.dumps(config.model_dump(mode="json", exclude_none=True)).encode())
        if platform.system() in ("Linux", "Darwin"):
            os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)

        logger.debug("Wrote config to %s", path)

    def exists(self) -> bool:
        return self.get_config_path().is_file()

    def get_config_path(self) -> Path:
        return self._config_dir / _CONFIG_FILE


def _deep_merge(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    """Return *base* with *override* laid on top, table by table.

    A ``[channels.feishu]`` table that sets only ``enabled`` keeps every
    other feishu default; neither input is modified.
    """
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)  # type: ignore[arg-type]
        else:
            merged[key] = value
    return merged
