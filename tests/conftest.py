"""Pytest configuration and shared fixtures."""

import os
import stat
from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import structlog

from kubeharness.core.config import CapiConfig, KindConfig
from kubeharness.core.models import HarnessOptions
from kubeharness.deployers.kind import KindDeployer
from kubeharness.utils.process import ProcessRunner


@pytest.fixture(autouse=True)
def clear_log_context():
    """Drop log context bound by CLI commands between tests."""
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def mock_runner() -> MagicMock:
    """Process runner that records calls instead of running commands."""
    runner = MagicMock(spec=ProcessRunner)
    runner.output.return_value = b""
    runner.combined_output_lines.return_value = []
    return runner


@pytest.fixture
def mock_kind() -> MagicMock:
    """kind deployer stand-in for the Cluster API deployer."""
    return MagicMock(spec=KindDeployer)


@pytest.fixture
def harness_options(tmp_path: Path) -> HarnessOptions:
    """Harness options with artifacts under a temporary directory."""
    return HarnessOptions(artifacts_dir=tmp_path / "artifacts", run_id="test-run")


@pytest.fixture
def kind_config() -> KindConfig:
    """Provide a kind configuration for testing."""
    return KindConfig(cluster_name="kind-test")


@pytest.fixture
def capi_config(kind_config: KindConfig) -> CapiConfig:
    """Provide a Cluster API configuration for testing."""
    return CapiConfig(
        kind=kind_config,
        provider="docker",
        kubernetes_version="v1.20.0",
        workload_cluster_name="wl",
    )


@pytest.fixture
def stub_bin(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Callable[[str, str], Path]:
    """Create stub executables that shadow real tools on PATH.

    Returns a function taking the executable name and a shell script body.
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")

    def _make(name: str, body: str) -> Path:
        path = bin_dir / name
        path.write_text(f"#!/bin/sh\n{body}\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make
