"""Cluster API deployer: a workload cluster provisioned from a kind management cluster."""

from __future__ import annotations

import os
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from kubeharness.core.config import CapiConfig
from kubeharness.core.exceptions import (
    ConfigurationError,
    DeadlineExceededError,
    DeployerError,
    ProcessError,
)
from kubeharness.core.models import HarnessOptions
from kubeharness.deployers.kind import KindDeployer
from kubeharness.interfaces.deployer import Deployer
from kubeharness.utils.deadline import Deadline
from kubeharness.utils.logging import get_logger
from kubeharness.utils.process import Command, ProcessRunner

logger = get_logger(__name__)

NAME = "capi"

CALICO_MANIFEST_URL = "https://docs.projectcalico.org/v3.12/manifests/calico.yaml"

# kubectl's error when the Cluster API CRDs are not installed yet
RESOURCE_TYPE_NOT_FOUND = "the server doesn't have a resource type"

# waits are bounded by the up deadline, not by kubectl
WAIT_FOREVER = "--timeout=-1m"


def is_resource_type_not_found(error: ProcessError) -> bool:
    """Check whether a kubectl failure means the queried resource type does not exist.

    This matches kubectl's free-text error output, so it breaks if that
    wording changes.

    Args:
        error: Failure from a kubectl query with stderr captured

    Returns:
        True if kubectl reported an unknown resource type
    """
    return RESOURCE_TYPE_NOT_FOUND in error.stderr


class CapiDeployer(Deployer):
    """Deployer for a Cluster API workload cluster.

    A kind cluster serves as the management cluster. ``up`` installs the
    Cluster API components on it, renders the workload cluster manifest with
    clusterctl and applies it, then waits for the workload cluster. Teardown,
    log export, readiness and image builds are handled by the kind deployer.
    """

    def __init__(
        self,
        config: CapiConfig,
        options: HarnessOptions | None = None,
        runner: ProcessRunner | None = None,
        kind: KindDeployer | None = None,
    ):
        """Initialize Cluster API deployer.

        Args:
            config: Cluster API configuration, including the kind section
            options: Harness-wide options
            runner: Process runner shared with the kind deployer
            kind: Management cluster deployer (built from config.kind if not given)
        """
        self.config = config
        self.options = options or HarnessOptions()
        self.runner = runner or ProcessRunner()
        self.kind = kind or KindDeployer(config.kind, options=self.options, runner=self.runner)
        self._kubeconfig_path: str | None = None

        logger.debug(
            "capi_deployer_initialized",
            provider=config.provider,
            workload_cluster_name=config.workload_cluster_name,
        )

    @contextmanager
    def _step(self, step: str) -> Iterator[None]:
        """Wrap command failures of one lifecycle step in a DeployerError."""
        try:
            yield
        except DeadlineExceededError:
            logger.error("capi_deadline_exceeded", step=step)
            raise
        except ProcessError as e:
            logger.error("capi_step_failed", step=step, error=str(e))
            raise DeployerError(f"{step}: {e}") from e

    def kubeconfig(self, deadline: Deadline | None = None) -> str:
        """Return a kubeconfig for the workload cluster.

        The kubeconfig is fetched once with ``clusterctl get kubeconfig`` and
        written to a private temporary file; later calls reuse that file.
        Failures are not cached.

        Args:
            deadline: Optional deadline of an enclosing operation

        Returns:
            Path to the kubeconfig file

        Raises:
            ProcessError: If clusterctl fails
            DeployerError: If the file cannot be written
        """
        if self.config.kubecfg_path:
            return self.config.kubecfg_path
        if self._kubeconfig_path is not None:
            return self._kubeconfig_path

        try:
            tmpdir = tempfile.mkdtemp(prefix="kubeharness-capi")
        except OSError as e:
            raise DeployerError(f"creating kubeconfig directory: {e}") from e

        try:
            data = self.runner.output(
                "clusterctl",
                ["get", "kubeconfig", self.config.workload_cluster_name],
                deadline=deadline,
            )
            path = Path(tmpdir) / "kubeconfig.yaml"
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
        except OSError as e:
            shutil.rmtree(tmpdir, ignore_errors=True)
            raise DeployerError(f"writing workload kubeconfig: {e}") from e
        except ProcessError:
            shutil.rmtree(tmpdir, ignore_errors=True)
            raise

        self._kubeconfig_path = str(path)
        logger.info("workload_kubeconfig_written", path=self._kubeconfig_path)
        return self._kubeconfig_path

    def config_cluster_args(self) -> list[str]:
        """clusterctl arguments rendering the workload cluster manifest."""
        return [
            "config",
            "cluster",
            self.config.workload_cluster_name,
            "--infrastructure",
            self.config.provider,
            "--kubernetes-version",
            self.config.kubernetes_version,
            "--worker-machine-count",
            self.config.worker_count,
            "--control-plane-machine-count",
            self.config.control_plane_count,
            "--flavor",
            self.config.flavor,
        ]

    def up(self) -> None:
        """Bring up the management cluster and the workload cluster.

        Every command runs under one deadline derived from the up timeout.
        The first failure aborts; a partially provisioned cluster is left for
        ``down`` to clean up.

        Raises:
            ConfigurationError: If the provider or up timeout is invalid
            DeployerError: If a step fails
            DeadlineExceededError: If the up timeout elapses
        """
        if not self.config.provider:
            raise ConfigurationError("an infrastructure provider is required for capi up")
        deadline = Deadline.from_duration(self.config.up_timeout)

        logger.info(
            "capi_up_started",
            provider=self.config.provider,
            workload_cluster_name=self.config.workload_cluster_name,
            up_timeout=self.config.up_timeout,
        )

        if not self.config.use_existing_cluster:
            with self._step("creating management cluster"):
                self.kind.up(deadline=deadline)

        self._install_management_plane(deadline)
        self._create_workload_cluster(deadline)

        if self.config.install_calico:
            self._install_calico(deadline)

        logger.info("capi_up_completed", workload_cluster_name=self.config.workload_cluster_name)

    def _providers_installed(self, deadline: Deadline) -> bool:
        args = [
            "get",
            "providers",
            "--all-namespaces",
            f"--field-selector=metadata.name=infrastructure-{self.config.provider}",
            "--ignore-not-found",
        ]
        try:
            output = self.runner.output("kubectl", args, deadline=deadline)
        except DeadlineExceededError:
            raise
        except ProcessError as e:
            if not is_resource_type_not_found(e):
                raise
            # fresh cluster, the Cluster API CRDs do not exist yet
            logger.info("cluster_api_crds_not_found")
            return False
        # any bytes at all mean a matching provider was listed
        return bool(output)

    def _install_management_plane(self, deadline: Deadline) -> None:
        logger.info("installing_cluster_api", provider=self.config.provider)

        with self._step("checking cluster API providers"):
            installed = self._providers_installed(deadline)

        if installed:
            logger.info("cluster_api_already_installed", provider=self.config.provider)
        else:
            with self._step("initializing cluster API"):
                self.runner.run(
                    "clusterctl",
                    ["init", "--infrastructure", self.config.provider],
                    deadline=deadline,
                )

        logger.info("waiting_for_cluster_api")
        with self._step("waiting for cluster API"):
            self.runner.run(
                "kubectl",
                [
                    "wait",
                    "--for=condition=Available",
                    "--all",
                    "--all-namespaces",
                    "deployment",
                    WAIT_FOREVER,
                ],
                deadline=deadline,
            )

    def _create_workload_cluster(self, deadline: Deadline) -> None:
        name = self.config.workload_cluster_name
        render = Command("clusterctl", self.config_cluster_args())
        apply = Command("kubectl", ["apply", "-f", "-"])

        logger.info("creating_workload_cluster", workload_cluster_name=name)
        with self._step("creating workload cluster"):
            self.runner.pipe(render, apply, deadline=deadline)

        logger.info("waiting_for_workload_cluster", workload_cluster_name=name)
        with self._step("waiting for workload cluster"):
            self.runner.run(
                "kubectl",
                ["wait", "--for=condition=Ready", f"cluster/{name}", WAIT_FOREVER],
                deadline=deadline,
            )

    def _install_calico(self, deadline: Deadline) -> None:
        with self._step("fetching workload kubeconfig"):
            kubeconfig = self.kubeconfig(deadline=deadline)

        logger.info("installing_calico", manifest=CALICO_MANIFEST_URL)
        with self._step("installing calico"):
            self.runner.run(
                "kubectl",
                ["--kubeconfig", kubeconfig, "apply", "-f", CALICO_MANIFEST_URL],
                deadline=deadline,
            )

        logger.info("waiting_for_calico")
        with self._step("waiting for calico"):
            self.runner.run(
                "kubectl",
                [
                    "--kubeconfig",
                    kubeconfig,
                    "wait",
                    "--for=condition=Available",
                    "--all",
                    "--all-namespaces",
                    "deployment",
                    WAIT_FOREVER,
                ],
                deadline=deadline,
            )

    def down(self) -> None:
        """Delete the workload cluster, then the management cluster.

        The management cluster is deleted even if the workload cluster delete
        failed; that failure is raised afterwards.

        Raises:
            DeployerError: If either delete fails
        """
        name = self.config.workload_cluster_name
        workload_error: ProcessError | None = None

        logger.info("deleting_workload_cluster", workload_cluster_name=name)
        try:
            self.runner.run("kubectl", ["delete", "--ignore-not-found", "--wait", "cluster", name])
        except ProcessError as e:
            logger.error("workload_cluster_delete_failed", workload_cluster_name=name, error=str(e))
            workload_error = e

        try:
            self.kind.down()
        except ProcessError as e:
            message = f"deleting management cluster: {e}"
            if workload_error is not None:
                message += f" (workload cluster delete also failed: {workload_error})"
            raise DeployerError(message) from e

        if workload_error is not None:
            raise DeployerError(f"deleting workload cluster: {workload_error}") from workload_error

    def is_up(self) -> bool:
        return self.kind.is_up()

    def dump_cluster_logs(self) -> None:
        self.kind.dump_cluster_logs()

    def build(self) -> None:
        self.kind.build()
