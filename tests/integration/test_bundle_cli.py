# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

import io
import json
import os
import stat
import subprocess
import sys
import tarfile
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import yaml
from jsonpath_ng.ext import parse as jsonpath_parse

IMAGE = "my-org/test-bundle"

DESCRIPTOR = {
    "name": "test-bundle",
    "description": "Bundle published by the integration tests",
    "descriptorVersion": "v5",
    "components": {
        "widgets": ["widgets/test-mfe-1.yaml"],
        "plugins": ["plugins/test-ms-1.yaml"],
    },
}

FAKE_CRANE = """#!/bin/sh
case "$1" in
  ls) printf '0.0.1\\n0.0.2\\n0.0.3\\n' ;;
  digest) echo "sha256:digest-of-${{2##*:}}" ;;
  config) cat "{fixtures}/config.json" ;;
  manifest) cat "{fixtures}/manifest.json" ;;
  blob) cat "{fixtures}/layer.tar.gz" ;;
  *) echo "unexpected crane command $1" >&2; exit 1 ;;
esac
"""

FAKE_CRANE_UNKNOWN_IMAGE = """#!/bin/sh
echo "GET https://index.docker.io/v2/$2/tags/list: NAME_UNKNOWN: repository name not known" >&2
exit 1
"""


def write_executable(path: Path, content: str) -> Path:
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def write_layer(path: Path, files: Dict[str, str]) -> None:
    """Write a gzipped tar archive, the way image layers are stored."""
    with tarfile.open(path, "w:gz") as archive:
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))


@pytest.fixture
def fixtures_dir(tmp_path: Path) -> Path:
    """Image metadata and first layer of a published bundle image."""
    fixtures = tmp_path / "fixtures"
    fixtures.mkdir()
    (fixtures / "config.json").write_text(
        json.dumps({"config": {"Labels": {"org.entando.bundle-name": "test-bundle"}}})
    )
    (fixtures / "manifest.json").write_text(
        json.dumps({"layers": [{"digest": "sha256:layer", "size": 1}]})
    )
    write_layer(
        fixtures / "layer.tar.gz",
        {"descriptor.yaml": yaml.safe_dump(DESCRIPTOR), "widgets/test-mfe-1.yaml": "code: mfe"},
    )
    return fixtures


@pytest.fixture
def fake_crane(tmp_path: Path, fixtures_dir: Path) -> Path:
    return write_executable(tmp_path / "crane", FAKE_CRANE.format(fixtures=fixtures_dir))


def run_bundle_cli(
    args: List[str], crane_bin: Path, cwd: Path, extra_env: Optional[Dict[str, str]] = None
) -> subprocess.CompletedProcess:
    """
    Run the bundle CLI in a separate interpreter.

    Args:
        args: Command line arguments.
        crane_bin: crane executable the CLI should use.
        cwd: Working directory, used as the bundle directory.
        extra_env: Additional environment variables.

    Returns:
        The completed process, with text stdout and stderr.
    """
    env = {**os.environ, "BUNDLE_CLI_CRANE_BIN": str(crane_bin), **(extra_env or {})}
    env.pop("BUNDLE_CLI_DEBUG", None)
    env.pop("BUNDLE_CLI_DOCKER_CONFIG_PATH", None)
    return subprocess.run(
        [sys.executable, "-m", "bundle_cli", *args],
        cwd=cwd,
        env=env,
        capture_output=True,
        text=True,
    )


def test_list_versions(fake_crane: Path, tmp_path: Path) -> None:
    """Tags are listed most recent first."""
    result = run_bundle_cli(["list-versions", IMAGE], fake_crane, tmp_path)

    assert result.returncode == 0, f"CLI failed:\n{result.stdout}\n{result.stderr}"
    assert result.stdout.splitlines() == ["0.0.3", "0.0.2", "0.0.1"]


def test_list_versions_with_digests(fake_crane: Path, tmp_path: Path) -> None:
    result = run_bundle_cli(["list-versions", IMAGE, "--digests"], fake_crane, tmp_path)

    assert result.returncode == 0, f"CLI failed:\n{result.stdout}\n{result.stderr}"
    assert result.stdout.splitlines() == [
        "0.0.3\tsha256:digest-of-0.0.3",
        "0.0.2\tsha256:digest-of-0.0.2",
        "0.0.1\tsha256:digest-of-0.0.1",
    ]


def test_descriptor_is_read_from_first_layer(fake_crane: Path, tmp_path: Path) -> None:
    """The descriptor packaged in the image layer is printed as YAML."""
    result = run_bundle_cli(["descriptor", f"{IMAGE}:0.0.3"], fake_crane, tmp_path)

    assert result.returncode == 0, f"CLI failed:\n{result.stdout}\n{result.stderr}"
    printed = yaml.safe_load(result.stdout)
    assert printed == DESCRIPTOR
    assert [m.value for m in jsonpath_parse("$.components.widgets[*]").find(printed)] == [
        "widgets/test-mfe-1.yaml"
    ]


def test_descriptor_missing_from_layer(fake_crane: Path, fixtures_dir: Path, tmp_path: Path):
    write_layer(fixtures_dir / "layer.tar.gz", {"other.yaml": "name: other"})

    result = run_bundle_cli(["descriptor", f"{IMAGE}:0.0.3"], fake_crane, tmp_path)

    assert result.returncode == 1
    assert "[ERROR] descriptor.yaml not found" in result.stderr
    assert result.stdout == ""


def test_debug_shows_crane_output(fake_crane: Path, tmp_path: Path) -> None:
    """Debug mode surfaces the commands that are run."""
    result = run_bundle_cli(["--debug", "list-versions", IMAGE], fake_crane, tmp_path)

    assert result.returncode == 0, f"CLI failed:\n{result.stdout}\n{result.stderr}"
    assert f"[DEBUG] Executing command: {fake_crane} ls {IMAGE}" in result.stderr


@pytest.mark.parametrize(
    "crane_script, expected_error",
    [
        (FAKE_CRANE_UNKNOWN_IMAGE, f"Image {IMAGE} not found"),
        (None, "Command crane not found"),
    ],
)
def test_list_versions_failures(
    tmp_path: Path, crane_script: Optional[str], expected_error: str
) -> None:
    """Test that crane failures are reported as readable errors."""
    if crane_script is None:
        crane_bin = tmp_path / "missing" / "crane"
    else:
        crane_bin = write_executable(tmp_path / "crane", crane_script)

    result = run_bundle_cli(["list-versions", IMAGE], crane_bin, tmp_path)

    assert result.returncode == 1, (
        f"Expected CLI to fail, but it succeeded.\n"
        f"STDOUT:\n{result.stdout}\nSTDERR:\n{result.stderr}"
    )
    assert f"[ERROR] {expected_error}" in result.stderr


def test_validate_bundle_project(tmp_path: Path) -> None:
    bundle = {
        "name": "test-bundle",
        "version": "0.0.1",
        "microservices": [],
        "microfrontends": [
            {
                "name": "test-mfe-1",
                "stack": "react",
                "customElement": "test-mfe-1",
                "titles": {"en": "Test MFE"},
                "group": "free",
                "apiClaims": [{"name": "claim", "type": "remote", "serviceId": "ms"}],
            }
        ],
    }
    (tmp_path / "bundle.json").write_text(json.dumps(bundle))

    result = run_bundle_cli(["validate"], tmp_path / "crane", tmp_path)

    assert result.returncode == 1
    assert "(position: $.microfrontends[0].apiClaims[0].type)" in result.stderr
