# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

import json
import sys
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from bundle_cli.bundle_descriptor_models import BundleDescriptor
from bundle_cli.bundle_descriptor_service import load_bundle_descriptor
from bundle_cli.errors import BundleCliError
from bundle_cli.logger import setup_logger
from bundle_cli.paths import MICROFRONTENDS_FOLDER, MICROSERVICES_FOLDER
from bundle_cli.process_executor import ProcessExecutionOptions, execute_process

logger = setup_logger(__name__)

POM_NAMESPACE = {"pom": "http://maven.apache.org/POM/4.0.0"}


class ComponentError(BundleCliError):
    """Raised for unknown, misconfigured or unbuildable components."""


class ComponentType(str, Enum):
    MICROFRONTEND = "microfrontend"
    MICROSERVICE = "microservice"


class MicroFrontendStack(str, Enum):
    REACT = "react"
    ANGULAR = "angular"


class MicroServiceStack(str, Enum):
    SPRING_BOOT = "spring-boot"
    NODE = "node"


# Build command per stack, run inside the component folder
BUILD_COMMANDS = {
    MicroFrontendStack.REACT.value: "npm install && npm run build",
    MicroFrontendStack.ANGULAR.value: "npm install && npm run build",
    MicroServiceStack.NODE.value: "npm install && npm run build",
    MicroServiceStack.SPRING_BOOT.value: "mvn clean package",
}


@dataclass(frozen=True)
class Component:
    """A microfrontend or microservice declared in the bundle descriptor."""

    name: str
    stack: str
    type: ComponentType


@dataclass(frozen=True)
class VersionedComponent(Component):
    version: str


class ComponentService:
    """Maps the components declared in bundle.json to their on-disk layout."""

    def __init__(
        self,
        bundle_dir: Path,
        descriptor_loader: Callable[[Path], BundleDescriptor] = load_bundle_descriptor,
    ) -> None:
        self.bundle_dir = Path(bundle_dir)
        self._descriptor_loader = descriptor_loader

    def get_components(self, component_type: Optional[ComponentType] = None) -> List[Component]:
        """
        List declared components, microfrontends first, in declaration order.

        Args:
            component_type: Restrict the list to one component type.
        """
        descriptor = self._descriptor_loader(self.bundle_dir)
        microfrontends = [
            Component(mfe.name, mfe.stack, ComponentType.MICROFRONTEND)
            for mfe in descriptor.microfrontends
        ]
        microservices = [
            Component(ms.name, ms.stack, ComponentType.MICROSERVICE)
            for ms in descriptor.microservices
        ]

        if component_type == ComponentType.MICROFRONTEND:
            return microfrontends
        if component_type == ComponentType.MICROSERVICE:
            return microservices
        return microfrontends + microservices

    def get_versioned_components(
        self, component_type: Optional[ComponentType] = None
    ) -> List[VersionedComponent]:
        """Same as get_components, with each version read from the component's manifest."""
        return [
            VersionedComponent(comp.name, comp.stack, comp.type, self.get_component_version(comp))
            for comp in self.get_components(component_type)
        ]

    def get_component_path(self, component: Component) -> Path:
        folder = (
            MICROSERVICES_FOLDER
            if component.type == ComponentType.MICROSERVICE
            else MICROFRONTENDS_FOLDER
        )
        return self.bundle_dir / folder / component.name

    def get_component_version(self, component: Component) -> str:
        """
        Read a component's version from its own build manifest.

        Spring Boot components use pom.xml, every other stack uses package.json.

        Raises:
            ComponentError: If the manifest is missing or has no version.
        """
        component_path = self.get_component_path(component)

        if component.stack == MicroServiceStack.SPRING_BOOT.value:
            pom_path = component_path / "pom.xml"
            if not pom_path.is_file():
                raise ComponentError(f"File {pom_path} not found")
            try:
                root = ET.parse(pom_path).getroot()
            except ET.ParseError as e:
                raise ComponentError(f"Unable to parse {pom_path}: {e}") from e
            version = root.findtext("pom:version", namespaces=POM_NAMESPACE) or root.findtext(
                "version"
            )
            manifest_path = pom_path
        else:
            package_path = component_path / "package.json"
            if not package_path.is_file():
                raise ComponentError(f"File {package_path} not found")
            try:
                package = json.loads(package_path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise ComponentError(f"Unable to parse {package_path}: {e}") from e
            version = package.get("version") if isinstance(package, dict) else None
            manifest_path = package_path

        if not isinstance(version, str) or not version.strip():
            raise ComponentError(f"Version not found in {manifest_path}")
        return version.strip()

    def get_component(self, name: str) -> Component:
        for component in self.get_components():
            if component.name == name:
                return component
        raise ComponentError(f"Component {name} not found")

    def validate_component(self, component: Component) -> None:
        """Ensure the component's stack is one supported for its type."""
        if component.type == ComponentType.MICROFRONTEND:
            allowed = [stack.value for stack in MicroFrontendStack]
        elif component.type == ComponentType.MICROSERVICE:
            allowed = [stack.value for stack in MicroServiceStack]
        else:
            raise ComponentError(f"Invalid component type {component.type}")

        if component.stack not in allowed:
            raise ComponentError(
                f"Component {component.name} of type {component.type.value} "
                f"has an invalid stack {component.stack}"
            )

    def build(self, name: str) -> int:
        """
        Build a component with its stack's build tool, streaming the output.

        Returns:
            The build command's exit code.
        """
        component = self.get_component(name)
        self.validate_component(component)

        component_path = self.get_component_path(component)
        if not component_path.is_dir():
            raise ComponentError(f"Directory {component_path} does not exist")

        build_command = BUILD_COMMANDS[component.stack]
        logger.debug("Building %s using %s", name, build_command)

        return execute_process(
            ProcessExecutionOptions(
                command=build_command,
                work_dir=component_path,
                output_stream=sys.stdout,
                error_stream=sys.stdout,
            )
        )
