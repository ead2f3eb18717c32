"""
App Directory - catalogue of MCP apps the host knows how to reach.

Config format:
{
    "apps": {
        "weather-app": {
            "name": "Weather",
            "description": "Forecasts and conditions for any location",
            "server_url": "https://weather-mcp.example.com",
            "icon": "https://example.com/icons/weather.png"
        }
    }
}
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectoryEntry:
    id: str
    name: str
    server_url: str
    description: str = ""
    icon: Optional[str] = None


class AppDirectory:
    """In-memory catalogue, optionally loaded from a JSON file."""

    def __init__(self, entries: Optional[Iterable[DirectoryEntry]] = None):
        self._entries: Dict[str, DirectoryEntry] = {}
        for entry in entries or []:
            self.add(entry)

    @classmethod
    def from_file(cls, config_path: str) -> "AppDirectory":
        """Load entries from JSON. A missing file yields an empty directory."""
        directory = cls()
        path = Path(config_path)
        if not path.exists():
            logger.warning(f"App directory file not found: {config_path}")
            return directory

        try:
            with open(path, 'r', encoding='utf-8') as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid app directory file {config_path}: {e}") from e

        apps = config.get("apps", {}) if isinstance(config, dict) else {}
        for app_id, app_config in apps.items():
            if not app_config.get("enabled", True):
                continue
            server_url = app_config.get("server_url") or app_config.get("url")
            if not server_url:
                logger.warning(f"Skipping app '{app_id}': no server_url")
                continue
            directory.add(DirectoryEntry(
                id=app_id,
                name=app_config.get("name", app_id),
                server_url=server_url,
                description=app_config.get("description", ""),
                icon=app_config.get("icon"),
            ))

        logger.info(f"📚 Loaded {len(directory)} apps from {config_path}")
        return directory

    def add(self, entry: DirectoryEntry) -> None:
        self._entries[entry.id] = entry

    def get(self, app_id: str) -> Optional[DirectoryEntry]:
        return self._entries.get(app_id)

    def list_apps(self) -> List[DirectoryEntry]:
        return list(self._entries.values())

    def search(self, query: str) -> List[DirectoryEntry]:
        """Case-insensitive match on name or description."""
        needle = query.lower()
        return [
            entry for entry in self._entries.values()
            if needle in entry.name.lower() or needle in entry.description.lower()
        ]

    def __len__(self) -> int:
        return len(self._entries)
