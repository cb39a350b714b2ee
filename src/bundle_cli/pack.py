# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

from pathlib import Path
from typing import List, Optional

from bundle_cli.bundle_descriptor_service import load_bundle_descriptor
from bundle_cli.component_service import ComponentError, ComponentService, ComponentType
from bundle_cli.docker_service import (
    DEBUG_GUIDANCE,
    DockerBuildError,
    DockerBuildOptions,
    DockerService,
    get_docker_image_name,
)
from bundle_cli.logger import DebugStream, setup_logger

logger = setup_logger(__name__)


def pack_bundle(
    bundle_dir: Path,
    organization: str,
    component_service: Optional[ComponentService] = None,
    docker_service: Optional[DockerService] = None,
) -> List[str]:
    """
    Build every component of a bundle, then its Docker images.

    Components are built one at a time with their stack's build tool. The bundle
    image and one image per microservice are then built as a parallel batch.

    Args:
        bundle_dir: Root directory of the bundle project.
        organization: Organization the images are tagged under.
        component_service: Component lookup, defaults to one for ``bundle_dir``.
        docker_service: Image operations, defaults to one for ``bundle_dir``.

    Returns:
        The built image references, bundle image first.

    Raises:
        ComponentError: If a component build fails.
        DockerBuildError: If any image build fails.
    """
    bundle_dir = Path(bundle_dir)
    component_service = component_service or ComponentService(bundle_dir)
    docker_service = docker_service or DockerService(bundle_dir, component_service)
    descriptor = load_bundle_descriptor(bundle_dir)

    for component in component_service.get_components():
        logger.info("Building %s %s", component.type.value, component.name)
        if component_service.build(component.name) != 0:
            raise ComponentError(f"Build of {component.type.value} {component.name} failed")

    build_options = [
        DockerBuildOptions(
            path=bundle_dir,
            organization=organization,
            name=descriptor.name,
            tag=descriptor.version,
            output_stream=DebugStream(logger),
        )
    ]
    for microservice in component_service.get_versioned_components(ComponentType.MICROSERVICE):
        build_options.append(
            DockerBuildOptions(
                path=component_service.get_component_path(microservice),
                organization=organization,
                name=microservice.name,
                tag=microservice.version,
                output_stream=DebugStream(logger),
            )
        )

    images = [
        get_docker_image_name(options.organization, options.name, options.tag)
        for options in build_options
    ]
    logger.info("Building Docker images: %s", ", ".join(images))

    results = docker_service.get_docker_images_executor(build_options).execute()
    failed_images = [image for image, result in zip(images, results) if result != 0]
    if failed_images:
        raise DockerBuildError(
            f"Unable to build Docker images {', '.join(failed_images)}. {DEBUG_GUIDANCE}"
        )

    logger.info("Docker images built successfully")
    return images
