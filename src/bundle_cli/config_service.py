# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

from pathlib import Path
from typing import Optional

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap

from bundle_cli.logger import setup_logger
from bundle_cli.paths import CONFIG_FILE_NAME, CONFIG_FOLDER

logger = setup_logger(__name__)

DOCKER_ORGANIZATION_PROPERTY = "docker-organization"
DOCKER_REGISTRY_PROPERTY = "docker-registry"

_yaml = YAML()
_yaml.preserve_quotes = True
_yaml.indent(mapping=2, sequence=2, offset=0)


class ConfigService:
    """
    Properties persisted per bundle project between CLI invocations.

    Values live in ``<bundle>/.bundle-cli/config.yaml``; the file is rewritten
    round-trip so hand-written comments are kept.
    """

    def __init__(self, bundle_dir: Path) -> None:
        self.config_path = Path(bundle_dir) / CONFIG_FOLDER / CONFIG_FILE_NAME

    def _load(self) -> CommentedMap:
        if not self.config_path.exists():
            return CommentedMap()
        data = _yaml.load(self.config_path)
        return data if data is not None else CommentedMap()

    def _dump(self, data: CommentedMap) -> None:
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with self.config_path.open("w") as f:
            _yaml.dump(data, f)

    def get_property(self, name: str) -> Optional[str]:
        """Return the value of a property, or None if it isn't set."""
        value = self._load().get(name)
        return None if value is None else str(value)

    def add_or_update_property(self, name: str, value: str) -> None:
        """Set a property, creating the configuration file if needed."""
        data = self._load()
        data[name] = value
        self._dump(data)
        logger.debug("Property %s set to %s in %s", name, value, self.config_path)
