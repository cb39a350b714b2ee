# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

import copy
import json
from pathlib import Path
from typing import List, Tuple

import pytest

from bundle_cli.docker_service import CRANE_BIN_ENV_VAR, DOCKER_CONFIG_PATH_ENV_VAR
from bundle_cli.process_executor import ProcessExecutionOptions

BUNDLE_DESCRIPTOR = {
    "name": "test-bundle",
    "version": "0.0.1",
    "description": "test description",
    "type": "bundle",
    "microservices": [
        {
            "name": "test-ms-spring-boot-1",
            "stack": "spring-boot",
            "healthCheckPath": "/api/health",
            "dbms": "none",
        },
        {
            "name": "test-ms-spring-boot-2",
            "stack": "spring-boot",
            "env": [{"name": "LOG_LEVEL", "value": "debug"}],
        },
    ],
    "microfrontends": [
        {
            "name": "test-mfe-1",
            "stack": "react",
            "customElement": "test-mfe-1",
            "titles": {"en": "Test MFE", "it": "Test MFE"},
            "group": "free",
        },
        {
            "name": "test-mfe-2",
            "stack": "angular",
            "customElement": "test-mfe-2",
            "titles": {"en": "Second MFE"},
            "group": "free",
            "apiClaims": [
                {"name": "ms1-api", "type": "internal", "serviceId": "test-ms-spring-boot-1"},
                {
                    "name": "ext-api",
                    "type": "external",
                    "serviceId": "other-ms",
                    "bundle": "other-bundle",
                },
            ],
        },
    ],
}

MICROSERVICE_VERSIONS = {
    "test-ms-spring-boot-1": "0.0.2",
    "test-ms-spring-boot-2": "0.0.3",
}

POM_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<project xmlns="http://maven.apache.org/POM/4.0.0">
  <modelVersion>4.0.0</modelVersion>
  <groupId>com.example</groupId>
  <artifactId>{name}</artifactId>
  <version>{version}</version>
</project>
"""


@pytest.fixture
def bundle_descriptor_data() -> dict:
    """A deep copy of a valid bundle.json, safe to mutate."""
    return copy.deepcopy(BUNDLE_DESCRIPTOR)


@pytest.fixture
def bundle_dir(tmp_path: Path, bundle_descriptor_data: dict) -> Path:
    """A bundle project on disk with bundle.json and one manifest per component."""
    (tmp_path / "bundle.json").write_text(json.dumps(bundle_descriptor_data, indent=2))

    for microservice in bundle_descriptor_data["microservices"]:
        ms_dir = tmp_path / "microservices" / microservice["name"]
        ms_dir.mkdir(parents=True)
        version = MICROSERVICE_VERSIONS[microservice["name"]]
        (ms_dir / "pom.xml").write_text(
            POM_TEMPLATE.format(name=microservice["name"], version=version)
        )

    for microfrontend in bundle_descriptor_data["microfrontends"]:
        mfe_dir = tmp_path / "microfrontends" / microfrontend["name"]
        mfe_dir.mkdir(parents=True)
        (mfe_dir / "package.json").write_text(
            json.dumps({"name": microfrontend["name"], "version": "1.0.0"})
        )

    return tmp_path


class FakeProcesses:
    """
    Stand-in for execute_process that answers commands from canned responses.

    Responses are matched by substring of the command line; the most recently
    registered match wins. Unmatched commands succeed with no output.
    """

    def __init__(self) -> None:
        self.calls: List[ProcessExecutionOptions] = []
        self._responses: List[Tuple[str, int, str, str]] = []

    def respond(self, fragment: str, exit_code: int = 0, stdout: str = "", stderr: str = ""):
        self._responses.append((fragment, exit_code, stdout, stderr))

    def __call__(self, options: ProcessExecutionOptions) -> int:
        self.calls.append(options)
        for fragment, exit_code, stdout, stderr in reversed(self._responses):
            if fragment in options.command:
                if stdout and options.output_stream is not None:
                    options.output_stream.write(stdout)
                if stderr and options.error_stream is not None:
                    options.error_stream.write(stderr)
                return exit_code
        return 0

    @property
    def commands(self) -> List[str]:
        return [options.command for options in self.calls]

    def commands_containing(self, fragment: str) -> List[str]:
        return [command for command in self.commands if fragment in command]


@pytest.fixture
def fake_processes(monkeypatch: pytest.MonkeyPatch) -> FakeProcesses:
    """Replace every external command run by the docker layer with canned responses."""
    fake = FakeProcesses()
    monkeypatch.setattr("bundle_cli.docker_service.execute_process", fake)
    monkeypatch.setattr("bundle_cli.process_executor.execute_process", fake)
    monkeypatch.delenv(CRANE_BIN_ENV_VAR, raising=False)
    monkeypatch.delenv(DOCKER_CONFIG_PATH_ENV_VAR, raising=False)
    return fake
