# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

import sys
from pathlib import Path
from typing import Optional

import click
import yaml

from bundle_cli.bundle_descriptor_service import load_bundle_descriptor
from bundle_cli.config_service import ConfigService
from bundle_cli.docker_service import DockerService
from bundle_cli.errors import BundleCliError
from bundle_cli.logger import enable_debug, setup_logger
from bundle_cli.pack import pack_bundle
from bundle_cli.publish import publish_bundle, render_publish_summary, resolve_organization

logger = setup_logger(__name__)

bundle_dir_option = click.option(
    "--bundle-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Root directory of the bundle project.",
)


@click.group()
@click.option("--debug", is_flag=True, help="Show the output of the external commands.")
def main(debug: bool) -> None:
    """Validate, pack and publish bundles of microfrontends and microservices."""
    if debug:
        enable_debug()


@main.command("validate")
@bundle_dir_option
def validate(bundle_dir: Path) -> None:
    """Validate the bundle descriptor."""
    try:
        load_bundle_descriptor(bundle_dir)
    except BundleCliError as e:
        logger.error(str(e))
        sys.exit(1)

    click.echo("Bundle descriptor is valid")


@main.command("pack")
@bundle_dir_option
@click.option("--org", "organization", help="Docker organization of the images.")
def pack(bundle_dir: Path, organization: Optional[str]) -> None:
    """Build every component and the bundle's Docker images."""
    try:
        organization = resolve_organization(ConfigService(bundle_dir), organization)
        images = pack_bundle(bundle_dir, organization)
    except BundleCliError as e:
        logger.error(str(e))
        sys.exit(1)

    for image in images:
        click.echo(image)


@main.command("publish")
@bundle_dir_option
@click.option("--org", "organization", help="Docker organization of the images.")
@click.option("--registry", help="Docker registry the images are pushed to.")
def publish(bundle_dir: Path, organization: Optional[str], registry: Optional[str]) -> None:
    """Push the bundle's Docker images to a registry."""
    try:
        result = publish_bundle(bundle_dir, organization=organization, registry=registry)
    except BundleCliError as e:
        logger.error(str(e))
        sys.exit(1)

    click.echo(render_publish_summary(result))


@main.command("list-versions")
@bundle_dir_option
@click.argument("image")
@click.option("--digests", is_flag=True, help="Show the digest of every tag.")
def list_versions(bundle_dir: Path, image: str, digests: bool) -> None:
    """List the tags of a published image, most recent first."""
    docker_service = DockerService(bundle_dir)
    try:
        tags = docker_service.list_tags(image)
        tags_with_digests = docker_service.get_digests(image, tags) if digests else {}
    except BundleCliError as e:
        logger.error(str(e))
        sys.exit(1)

    for tag in tags:
        if digests:
            click.echo(f"{tag}\t{tags_with_digests[tag]}")
        else:
            click.echo(tag)


@main.command("descriptor")
@bundle_dir_option
@click.argument("image")
def descriptor(bundle_dir: Path, image: str) -> None:
    """Print the bundle descriptor packaged in a published bundle image."""
    try:
        yaml_descriptor = DockerService(bundle_dir).get_yaml_descriptor_from_image(image)
    except BundleCliError as e:
        logger.error(str(e))
        sys.exit(1)

    click.echo(
        yaml.safe_dump(
            yaml_descriptor.model_dump(by_alias=True, exclude_none=True), sort_keys=False
        ),
        nl=False,
    )


if __name__ == "__main__":
    main()
