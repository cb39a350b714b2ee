# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

import json
import os
import re
import shlex
from dataclasses import dataclass
from io import StringIO
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TextIO, Tuple

import jsonschema
import yaml

from bundle_cli.bundle_descriptor_constraints import YAML_BUNDLE_DESCRIPTOR_CONSTRAINTS
from bundle_cli.bundle_descriptor_models import BundleDescriptor, YamlBundleDescriptor
from bundle_cli.component_service import Component, ComponentService, ComponentType
from bundle_cli.constraints import JsonValidationError, validate_object_constraints
from bundle_cli.errors import BundleCliError
from bundle_cli.image_metadata_schema import image_config_schema, image_manifest_schema
from bundle_cli.logger import DebugStream, setup_logger
from bundle_cli.paths import CONFIG_FOLDER, DOCKER_CONFIG_FOLDER
from bundle_cli.process_executor import (
    COMMAND_NOT_FOUND_EXIT_CODE,
    ParallelProcessExecutor,
    ProcessExecutionOptions,
    execute_process,
)

logger = setup_logger(__name__)

DEFAULT_DOCKERFILE_NAME = "Dockerfile"
DEFAULT_DOCKER_REGISTRY = "registry.hub.docker.com"
DOCKER_COMMAND = "docker"
DOCKER_BUILD_PLATFORM = "linux/amd64"
CRANE_BIN_NAME = "crane"
BUNDLE_NAME_LABEL = "org.entando.bundle-name"
BUNDLE_DESCRIPTOR_NAME = "descriptor.yaml"

CRANE_BIN_ENV_VAR = "BUNDLE_CLI_CRANE_BIN"
DOCKER_CONFIG_PATH_ENV_VAR = "BUNDLE_CLI_DOCKER_CONFIG_PATH"

DIGESTS_PARALLELISM = 6

DEBUG_GUIDANCE = "Enable debug mode to see output of failed command."

DIGEST_PATTERN = re.compile(r"digest:\s(\S*)")


class DockerServiceError(BundleCliError):
    """Generic failure of a docker or crane invocation."""


class CommandNotFoundError(DockerServiceError):
    """Raised when the docker or crane executable can't be found."""


class ImageNotFoundError(DockerServiceError):
    """Raised when the registry doesn't know the requested image."""


class RegistryAuthenticationError(DockerServiceError):
    """Raised when the registry refuses the request for missing or wrong credentials."""


class InvalidBundleImageError(DockerServiceError):
    """Raised when an image lacks the metadata every bundle image carries."""


class DescriptorNotFoundError(DockerServiceError):
    """Raised when the bundle descriptor is missing from the image layer."""


class InvalidDescriptorError(DockerServiceError):
    """Raised when the descriptor inside an image can't be parsed or validated."""


class DockerLoginError(DockerServiceError):
    """Raised when both the silent and the interactive login fail."""


class DockerBuildError(DockerServiceError):
    """Raised when one or more image builds fail."""


# Evaluated top to bottom against crane's stderr. These substrings are the registry
# error codes crane prints verbatim, so they follow crane's output format.
LIST_TAGS_ERROR_RULES: List[Tuple[str, Callable[[str], DockerServiceError]]] = [
    ("NAME_UNKNOWN", lambda image: ImageNotFoundError(f"Image {image} not found")),
    (
        "UNAUTHORIZED",
        lambda image: RegistryAuthenticationError(
            "Registry required authentication. This may also be caused by searching for "
            f"a non-existing image. Please verify that {image} exists."
        ),
    ),
]


@dataclass
class DockerBuildOptions:
    """
    Inputs of a docker build.

    Attributes:
        path: Build context, also used as working directory.
        organization: Organization the image is tagged under.
        name: Image name.
        tag: Image tag.
        dockerfile: Dockerfile name, relative to ``path``.
        output_stream: Receives the build output; discarded if None.
    """

    path: Path
    organization: str
    name: str
    tag: str
    dockerfile: str = DEFAULT_DOCKERFILE_NAME
    output_stream: Optional[TextIO] = None


def get_docker_image_name(organization: str, name: str, tag: str) -> str:
    """Return the image reference ``organization/name:tag``."""
    return f"{organization}/{name}:{tag}"


class DockerService:
    """
    Computes, builds, tags, pushes and inspects the Docker images of a bundle.

    Every operation runs docker or crane as an external process and turns exit
    codes and output into return values or DockerServiceError subclasses. Raw
    command output is only ever logged at DEBUG level.
    """

    def __init__(
        self, bundle_dir: Path, component_service: Optional[ComponentService] = None
    ) -> None:
        self.bundle_dir = Path(bundle_dir)
        self.component_service = component_service or ComponentService(self.bundle_dir)

    @property
    def docker_config_folder(self) -> Path:
        """Folder passed to ``docker --config``."""
        config_path = os.environ.get(DOCKER_CONFIG_PATH_ENV_VAR)
        if config_path:
            return Path(config_path).parent
        return self.bundle_dir / CONFIG_FOLDER / DOCKER_CONFIG_FOLDER

    def _docker_command(self, *args: str) -> str:
        config_folder = shlex.quote(str(self.docker_config_folder))
        return " ".join([DOCKER_COMMAND, "--config", config_folder, *args])

    def _crane_options(self, crane_command: str, **kwargs: Any) -> ProcessExecutionOptions:
        crane_bin = os.environ.get(CRANE_BIN_ENV_VAR, CRANE_BIN_NAME)
        # crane reads credentials from $HOME/.docker/config.json
        config_path = os.environ.get(DOCKER_CONFIG_PATH_ENV_VAR)
        home = Path(config_path).parent.parent if config_path else self.bundle_dir / CONFIG_FOLDER
        return ProcessExecutionOptions(
            command=f"{crane_bin} {crane_command}", env={"HOME": str(home)}, **kwargs
        )

    # Build

    def _build_execution_options(self, options: DockerBuildOptions) -> ProcessExecutionOptions:
        image = get_docker_image_name(options.organization, options.name, options.tag)
        command = self._docker_command(
            "build",
            "--platform",
            DOCKER_BUILD_PLATFORM,
            "-f",
            shlex.quote(options.dockerfile),
            "-t",
            shlex.quote(image),
            ".",
        )
        return ProcessExecutionOptions(
            command=command,
            work_dir=options.path,
            output_stream=options.output_stream,
            error_stream=options.output_stream,
        )

    def build_docker_image(self, options: DockerBuildOptions) -> int:
        """Build one image, streaming the output. Returns the build's exit code."""
        return execute_process(self._build_execution_options(options))

    def get_docker_images_executor(
        self, options_list: List[DockerBuildOptions]
    ) -> ParallelProcessExecutor:
        """Prepare a bounded parallel batch of builds; ``execute()`` runs it."""
        return ParallelProcessExecutor(
            [self._build_execution_options(options) for options in options_list]
        )

    # Local images

    def get_bundle_docker_images(
        self, bundle_descriptor: BundleDescriptor, organization: str
    ) -> List[str]:
        """
        Return the bundle's image references: the bundle image first, then one
        per microservice in declaration order.
        """
        images = [
            get_docker_image_name(organization, bundle_descriptor.name, bundle_descriptor.version)
        ]
        for microservice in bundle_descriptor.microservices:
            component = Component(
                microservice.name, microservice.stack, ComponentType.MICROSERVICE
            )
            version = self.component_service.get_component_version(component)
            images.append(get_docker_image_name(organization, microservice.name, version))
        return images

    def bundle_images_exist(self, bundle_descriptor: BundleDescriptor, organization: str) -> bool:
        """
        Check that every image of the bundle exists in the local image store.

        Raises:
            DockerServiceError: If the images can't be listed.
        """
        images = self.get_bundle_docker_images(bundle_descriptor, organization)

        args = ["image", "ls"]
        for image in images:
            args += ["--filter", shlex.quote(f"reference={image}")]
        args += ["--format", shlex.quote("{{.Repository}}:{{.Tag}}")]

        output = StringIO()
        result = execute_process(
            ProcessExecutionOptions(
                command=self._docker_command(*args),
                output_stream=output,
                error_stream=DebugStream(logger),
            )
        )

        if result != 0:
            logger.debug(output.getvalue())
            raise DockerServiceError(
                "Unable to check Docker images. "
                "Enable debug mode to see failed command and its error stream"
            )

        found_images = set(output.getvalue().split())
        return all(image in found_images for image in images)

    # Registry authentication

    def _login_options(self, registry: str, interactive: bool) -> ProcessExecutionOptions:
        command = self._docker_command("login", shlex.quote(registry))
        if interactive:
            return ProcessExecutionOptions(command=command, interactive=True)
        return ProcessExecutionOptions(
            command=command,
            output_stream=DebugStream(logger),
            error_stream=DebugStream(logger),
        )

    def check_authentication(self, registry: str = DEFAULT_DOCKER_REGISTRY) -> int:
        """Try to log in with stored credentials only. Returns the exit code."""
        return execute_process(self._login_options(registry, interactive=False))

    def login(self, registry: str = DEFAULT_DOCKER_REGISTRY) -> None:
        """
        Log in to a registry, prompting the user for credentials if needed.

        Raises:
            DockerLoginError: If the interactive login fails too.
        """
        if execute_process(self._login_options(registry, interactive=False)) == 0:
            return

        # docker prompts for username and password on the terminal
        if execute_process(self._login_options(registry, interactive=True)) != 0:
            raise DockerLoginError("Docker login failed")

    # Tagging

    def update_images_organization(
        self,
        bundle_descriptor: BundleDescriptor,
        old_organization: str,
        new_organization: str,
    ) -> List[str]:
        """Tag every bundle image of ``old_organization`` under ``new_organization``."""
        prefix = re.compile("^" + re.escape(old_organization) + "/")
        return self.create_tags(
            bundle_descriptor,
            old_organization,
            lambda source_image: prefix.sub(new_organization + "/", source_image),
        )

    def set_images_registry(
        self, bundle_descriptor: BundleDescriptor, organization: str, registry: str
    ) -> List[str]:
        """Tag every bundle image with the registry host as prefix."""
        return self.create_tags(
            bundle_descriptor, organization, lambda source_image: f"{registry}/{source_image}"
        )

    def create_tags(
        self,
        bundle_descriptor: BundleDescriptor,
        organization: str,
        get_target_image: Callable[[str], str],
    ) -> List[str]:
        """
        Tag every bundle image under a new reference, in parallel.

        Args:
            bundle_descriptor: Bundle whose images are tagged.
            organization: Organization of the source images.
            get_target_image: Maps a source reference to its new reference.

        Returns:
            The new references, in the same order as get_bundle_docker_images.

        Raises:
            DockerServiceError: If any tag command fails.
        """
        source_images = self.get_bundle_docker_images(bundle_descriptor, organization)
        target_images = [get_target_image(source_image) for source_image in source_images]

        options = [
            ProcessExecutionOptions(
                command=self._docker_command(
                    "tag", shlex.quote(source_image), shlex.quote(target_image)
                ),
                output_stream=DebugStream(logger),
                error_stream=DebugStream(logger),
            )
            for source_image, target_image in zip(source_images, target_images)
        ]
        results = ParallelProcessExecutor(options).execute()

        if any(result != 0 for result in results):
            raise DockerServiceError(f"Unable to create Docker image tag. {DEBUG_GUIDANCE}")

        return target_images

    # Registry operations

    def push_image(self, image: str) -> str:
        """
        Push an image and return the digest reported by docker.

        Returns:
            The digest, or an empty string if docker didn't print one.

        Raises:
            DockerServiceError: If the push fails.
        """
        output = StringIO()
        result = execute_process(
            ProcessExecutionOptions(
                command=self._docker_command("push", shlex.quote(image)),
                output_stream=output,
                error_stream=DebugStream(logger),
            )
        )

        if result != 0:
            logger.debug(output.getvalue())
            raise DockerServiceError(f"Unable to push Docker image. {DEBUG_GUIDANCE}")

        match = DIGEST_PATTERN.search(output.getvalue())
        return match.group(1) if match else ""

    def get_digests(self, image_name: str, tags: List[str]) -> Dict[str, str]:
        """
        Look up the remote digest of several tags of an image, in parallel.

        Returns:
            Mapping of tag to digest, in the order of ``tags``.

        Raises:
            DockerServiceError: If any lookup fails.
        """
        outputs = [StringIO() for _ in tags]
        options = [
            self._crane_options(
                f"digest {shlex.quote(f'{image_name}:{tag}')}",
                output_stream=output,
                error_stream=DebugStream(logger),
            )
            for tag, output in zip(tags, outputs)
        ]
        results = ParallelProcessExecutor(options, max_workers=DIGESTS_PARALLELISM).execute()

        if any(result != 0 for result in results):
            raise DockerServiceError(
                f"Unable to retrieve digests for Docker image {image_name}. {DEBUG_GUIDANCE}"
            )

        return {tag: output.getvalue().strip() for tag, output in zip(tags, outputs)}

    def list_tags(self, image_name: str) -> List[str]:
        """
        List the remote tags of an image, most recent first.

        Raises:
            CommandNotFoundError: If crane isn't installed.
            ImageNotFoundError: If the registry doesn't know the image.
            RegistryAuthenticationError: If the registry requires authentication.
            DockerServiceError: For any other failure.
        """
        output, error = StringIO(), StringIO()
        result = execute_process(
            self._crane_options(
                f"ls {shlex.quote(image_name)}", output_stream=output, error_stream=error
            )
        )

        if result == 0:
            # crane lists the oldest tags first
            tags = [line.strip() for line in output.getvalue().splitlines() if line.strip()]
            return list(reversed(tags))

        if result == COMMAND_NOT_FOUND_EXIT_CODE:
            raise CommandNotFoundError(f"Command {CRANE_BIN_NAME} not found")

        for marker, error_factory in LIST_TAGS_ERROR_RULES:
            if marker in error.getvalue():
                raise error_factory(image_name)

        logger.debug(output.getvalue())
        logger.debug(error.getvalue())
        raise DockerServiceError(
            f"Unable to list tags for Docker image {image_name}. {DEBUG_GUIDANCE}"
        )

    # Remote bundle descriptor

    def get_yaml_descriptor_from_image(self, image_name: str) -> YamlBundleDescriptor:
        """
        Extract and validate the bundle descriptor packaged in a bundle image.

        The descriptor is read from the image's first layer without pulling the image.

        Raises:
            InvalidBundleImageError: If the image is not a bundle image.
            DescriptorNotFoundError: If the layer doesn't contain the descriptor.
            InvalidDescriptorError: If the descriptor is not valid YAML or violates
                its constraints.
            DockerServiceError: For any other failure.
        """
        digest = self._get_first_layer_digest(image_name)
        output, error = StringIO(), StringIO()
        blob = shlex.quote(f"{image_name}@{digest}")

        result = execute_process(
            self._crane_options(
                f"blob {blob} | tar -zOxf - {BUNDLE_DESCRIPTOR_NAME}",
                output_stream=output,
                error_stream=error,
            )
        )

        if result == 0:
            try:
                parsed_descriptor = yaml.safe_load(output.getvalue())
            except yaml.YAMLError as e:
                logger.debug(output.getvalue())
                raise InvalidDescriptorError(
                    "Retrieved descriptor contains invalid YAML. "
                    "Enable debug mode to see retrieved content."
                ) from e

            try:
                validate_object_constraints(parsed_descriptor, YAML_BUNDLE_DESCRIPTOR_CONSTRAINTS)
            except JsonValidationError as e:
                raise InvalidDescriptorError(
                    f"Retrieved descriptor has an invalid format. {e}"
                ) from e

            return YamlBundleDescriptor.model_validate(parsed_descriptor)

        if f"tar: {BUNDLE_DESCRIPTOR_NAME}: Not found in archive" in error.getvalue():
            raise DescriptorNotFoundError(
                f"{BUNDLE_DESCRIPTOR_NAME} not found. "
                "Have you specified a valid bundle Docker image?"
            )

        logger.debug(error.getvalue())
        logger.debug(output.getvalue())
        raise DockerServiceError(
            f"Unable to parse YAML descriptor from bundle Docker image. {DEBUG_GUIDANCE}"
        )

    def _run_crane_json(self, crane_command: str, failure_message: str) -> str:
        output = StringIO()
        result = execute_process(
            self._crane_options(
                crane_command, output_stream=output, error_stream=DebugStream(logger)
            )
        )
        if result == COMMAND_NOT_FOUND_EXIT_CODE:
            raise CommandNotFoundError(f"Command {CRANE_BIN_NAME} not found")
        if result != 0:
            logger.debug(output.getvalue())
            raise DockerServiceError(f"{failure_message} {DEBUG_GUIDANCE}")
        return output.getvalue()

    def _get_first_layer_digest(self, image_name: str) -> str:
        quoted_image = shlex.quote(image_name)

        raw_config = self._run_crane_json(
            f"config {quoted_image}", "Unable to retrieve image metadata."
        )
        image_config = _load_json_document(
            raw_config,
            image_config_schema,
            "Retrieved image metadata contains invalid JSON.",
            "Retrieved image metadata has an unexpected format.",
        )

        labels = image_config["config"].get("Labels") or {}
        if not labels.get(BUNDLE_NAME_LABEL):
            logger.debug(raw_config)
            raise InvalidBundleImageError(
                f"Given Docker image doesn't contain required label {BUNDLE_NAME_LABEL}. "
                "Have you specified a valid bundle Docker image?"
            )

        raw_manifest = self._run_crane_json(
            f"manifest {quoted_image}", "Unable to retrieve image manifest."
        )
        manifest = _load_json_document(
            raw_manifest,
            image_manifest_schema,
            "Retrieved manifest contains invalid JSON.",
            "Unable to extract digest from retrieved manifest. "
            "Have you specified a valid bundle Docker image?",
        )
        return manifest["layers"][0]["digest"]


def _load_json_document(
    raw: str, schema: Dict[str, Any], invalid_json_message: str, invalid_shape_message: str
) -> Dict[str, Any]:
    """
    Parse a JSON document printed by crane and check its shape.

    Raises:
        InvalidBundleImageError: If the document isn't JSON or doesn't match ``schema``.
    """
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.debug(raw)
        raise InvalidBundleImageError(
            f"{invalid_json_message} Enable debug mode to see retrieved content."
        ) from e

    try:
        jsonschema.validate(instance=document, schema=schema)
    except jsonschema.ValidationError as e:
        logger.debug(raw)
        raise InvalidBundleImageError(
            f"{invalid_shape_message} Enable debug mode to see retrieved content."
        ) from e

    return document
