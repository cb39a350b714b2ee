# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

# Layout of a bundle project, relative to its root directory
CONFIG_FOLDER = ".bundle-cli"
CONFIG_FILE_NAME = "config.yaml"
DOCKER_CONFIG_FOLDER = ".docker"
MICROFRONTENDS_FOLDER = "microfrontends"
MICROSERVICES_FOLDER = "microservices"
