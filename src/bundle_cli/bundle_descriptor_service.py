# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

import json
from pathlib import Path
from typing import Any

from bundle_cli.bundle_descriptor_constraints import BUNDLE_DESCRIPTOR_CONSTRAINTS
from bundle_cli.bundle_descriptor_models import BundleDescriptor
from bundle_cli.constraints import validate_object_constraints
from bundle_cli.errors import BundleCliError
from bundle_cli.logger import setup_logger

logger = setup_logger(__name__)

BUNDLE_DESCRIPTOR_FILE_NAME = "bundle.json"


class BundleNotInitializedError(BundleCliError):
    """Raised when a directory doesn't contain a bundle descriptor."""

    def __init__(self, bundle_dir: Path):
        self.bundle_dir = bundle_dir
        super().__init__(f"{bundle_dir} is not an initialized bundle project")


class BundleDescriptorParseError(BundleCliError):
    """Raised when bundle.json is not valid JSON."""


def is_bundle_initialized(bundle_dir: Path) -> bool:
    """Return True if ``bundle_dir`` contains a bundle descriptor."""
    return (Path(bundle_dir) / BUNDLE_DESCRIPTOR_FILE_NAME).is_file()


def verify_bundle_initialized(bundle_dir: Path) -> None:
    """
    Ensure ``bundle_dir`` is a bundle project.

    Raises:
        BundleNotInitializedError: If no bundle descriptor is found.
    """
    if not is_bundle_initialized(bundle_dir):
        raise BundleNotInitializedError(bundle_dir)


def validate_parsed_bundle_descriptor(data: Any) -> BundleDescriptor:
    """
    Validate a parsed bundle.json and convert it into a typed descriptor.

    Args:
        data: The result of parsing bundle.json.

    Returns:
        The validated BundleDescriptor.

    Raises:
        JsonValidationError: At the first structural violation.
    """
    validate_object_constraints(data, BUNDLE_DESCRIPTOR_CONSTRAINTS)
    return BundleDescriptor.model_validate(data)


def load_bundle_descriptor(bundle_dir: Path) -> BundleDescriptor:
    """
    Read, parse and validate the bundle descriptor of a bundle project.

    Args:
        bundle_dir: Root directory of the bundle project.

    Returns:
        The validated BundleDescriptor.

    Raises:
        BundleNotInitializedError: If the descriptor file doesn't exist.
        BundleDescriptorParseError: If the descriptor is not valid JSON.
        JsonValidationError: If the descriptor violates its constraints.
    """
    verify_bundle_initialized(bundle_dir)
    descriptor_path = Path(bundle_dir) / BUNDLE_DESCRIPTOR_FILE_NAME

    try:
        raw = json.loads(descriptor_path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise BundleDescriptorParseError(f"{descriptor_path} contains invalid JSON: {e}") from e

    logger.debug("Loaded bundle descriptor from %s", descriptor_path)
    return validate_parsed_bundle_descriptor(raw)
