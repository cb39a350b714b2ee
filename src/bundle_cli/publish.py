# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

from dataclasses import dataclass, field
from functools import partial
from importlib.resources import files
from pathlib import Path
from typing import Callable, List, Optional

from jinja2 import Template

from bundle_cli.bundle_descriptor_service import load_bundle_descriptor
from bundle_cli.config_service import (
    DOCKER_ORGANIZATION_PROPERTY,
    DOCKER_REGISTRY_PROPERTY,
    ConfigService,
)
from bundle_cli.docker_service import DEFAULT_DOCKER_REGISTRY, DockerService
from bundle_cli.errors import BundleCliError
from bundle_cli.logger import setup_logger
from bundle_cli.pack import pack_bundle

logger = setup_logger(__name__)


class PublishError(BundleCliError):
    """Raised when the publish workflow can't proceed."""


@dataclass
class PushedImage:
    """An image reference pushed to the registry, with the digest docker reported."""

    name: str
    digest: str

    @property
    def tag(self) -> str:
        return self.name.rsplit(":", 1)[-1]


@dataclass
class PublishResult:
    bundle_image: PushedImage
    microservices: List[PushedImage] = field(default_factory=list)


def _load_summary_template() -> Template:
    """Load the Jinja2 template of the publish summary from the package resources."""
    template_path = files("bundle_cli.templates").joinpath("publish_summary.txt.j2")
    return Template(template_path.read_text(), trim_blocks=True, lstrip_blocks=True)


def render_publish_summary(result: PublishResult) -> str:
    """Render the summary printed once every image has been pushed."""
    return _load_summary_template().render(
        bundle_image=result.bundle_image,
        microservices=result.microservices,
    )


def resolve_organization(config_service: ConfigService, organization: Optional[str]) -> str:
    """
    Pick the Docker organization: flag value first, then the configured one.

    Raises:
        PublishError: If neither is available.
    """
    resolved = organization or config_service.get_property(DOCKER_ORGANIZATION_PROPERTY)
    if not resolved:
        raise PublishError(
            "No configured Docker organization found. Please run the command with --org flag."
        )
    return resolved


def publish_bundle(
    bundle_dir: Path,
    organization: Optional[str] = None,
    registry: Optional[str] = None,
    config_service: Optional[ConfigService] = None,
    docker_service: Optional[DockerService] = None,
    pack: Optional[Callable[[str], object]] = None,
) -> PublishResult:
    """
    Push the bundle image and every microservice image to a Docker registry.

    Missing local images are rebuilt once through ``pack``, or retagged when they
    exist under the previously configured organization.

    Args:
        bundle_dir: Root directory of the bundle project.
        organization: Organization from the command line; persisted when given.
        registry: Registry from the command line; persisted when given.
        config_service: Persisted properties, defaults to the bundle's own.
        docker_service: Image operations, defaults to one for ``bundle_dir``.
        pack: Called with the organization to rebuild every image.

    Returns:
        The pushed images with their digests, bundle image first.

    Raises:
        PublishError: If no organization is available.
        DockerServiceError: If tagging, login or a push fails.
    """
    bundle_dir = Path(bundle_dir)
    config_service = config_service or ConfigService(bundle_dir)
    docker_service = docker_service or DockerService(bundle_dir)
    pack = pack or partial(pack_bundle, bundle_dir, docker_service=docker_service)

    descriptor = load_bundle_descriptor(bundle_dir)

    configured_organization = config_service.get_property(DOCKER_ORGANIZATION_PROPERTY)
    organization = resolve_organization(config_service, organization)
    if organization != configured_organization:
        config_service.add_or_update_property(DOCKER_ORGANIZATION_PROPERTY, organization)

    if not docker_service.bundle_images_exist(descriptor, organization):
        if (
            configured_organization
            and configured_organization != organization
            and docker_service.bundle_images_exist(descriptor, configured_organization)
        ):
            logger.warning("Docker organization changed. Updating images names.")
            docker_service.update_images_organization(
                descriptor, configured_organization, organization
            )
        else:
            logger.warning("One or more Docker images are missing. Running pack command.")
            pack(organization)

    if registry:
        if registry != config_service.get_property(DOCKER_REGISTRY_PROPERTY):
            config_service.add_or_update_property(DOCKER_REGISTRY_PROPERTY, registry)
    else:
        registry = config_service.get_property(DOCKER_REGISTRY_PROPERTY) or DEFAULT_DOCKER_REGISTRY

    images = docker_service.set_images_registry(descriptor, organization, registry)

    logger.info("Login on Docker registry %s", registry)
    if docker_service.check_authentication(registry) != 0:
        docker_service.login(registry)

    pushed: List[PushedImage] = []
    for image in images:
        digest = docker_service.push_image(image)
        pushed.append(PushedImage(name=image, digest=digest))
        logger.info("Pushed %s (%d/%d)", image, len(pushed), len(images))

    return PublishResult(bundle_image=pushed[0], microservices=pushed[1:])
