# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

from pathlib import Path

from bundle_cli.config_service import (
    DOCKER_ORGANIZATION_PROPERTY,
    DOCKER_REGISTRY_PROPERTY,
    ConfigService,
)


def test_missing_property_returns_none(tmp_path: Path):
    """Reading from a bundle without configuration doesn't create any file."""
    config_service = ConfigService(tmp_path)

    assert config_service.get_property(DOCKER_ORGANIZATION_PROPERTY) is None
    assert not config_service.config_path.exists()


def test_add_and_update_property(tmp_path: Path):
    config_service = ConfigService(tmp_path)

    config_service.add_or_update_property(DOCKER_ORGANIZATION_PROPERTY, "first-org")
    assert config_service.get_property(DOCKER_ORGANIZATION_PROPERTY) == "first-org"

    config_service.add_or_update_property(DOCKER_ORGANIZATION_PROPERTY, "second-org")
    assert config_service.get_property(DOCKER_ORGANIZATION_PROPERTY) == "second-org"


def test_properties_are_persisted(tmp_path: Path):
    """Values survive across service instances, under the bundle's config folder."""
    ConfigService(tmp_path).add_or_update_property(DOCKER_REGISTRY_PROPERTY, "registry.local")

    assert (tmp_path / ".bundle-cli" / "config.yaml").is_file()
    assert ConfigService(tmp_path).get_property(DOCKER_REGISTRY_PROPERTY) == "registry.local"


def test_comments_are_preserved(tmp_path: Path):
    """Hand-written comments in the configuration file survive updates."""
    config_service = ConfigService(tmp_path)
    config_service.config_path.parent.mkdir(parents=True)
    config_service.config_path.write_text(
        "# organization used for Docker Hub\ndocker-organization: my-org\n"
    )

    config_service.add_or_update_property(DOCKER_REGISTRY_PROPERTY, "registry.local")

    content = config_service.config_path.read_text()
    assert "# organization used for Docker Hub" in content
    assert "docker-organization: my-org" in content
    assert "docker-registry: registry.local" in content
