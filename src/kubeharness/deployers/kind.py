"""kind deployer: a local cluster managed with the kind CLI."""

from __future__ import annotations

from pathlib import Path

from kubeharness.core.config import KindConfig
from kubeharness.core.exceptions import ConfigurationError
from kubeharness.core.models import HarnessOptions
from kubeharness.interfaces.deployer import Deployer
from kubeharness.utils.deadline import Deadline
from kubeharness.utils.logging import get_logger
from kubeharness.utils.process import ProcessRunner

logger = get_logger(__name__)

NAME = "kind"

# Image tag kind build node-image produces by default. Up picks it up after
# a build in the same run, so both must use this constant.
KIND_DEFAULT_BUILT_IMAGE_NAME = "kindest/node:latest"


class KindDeployer(Deployer):
    """Deployer for a single named kind cluster.

    Each verb maps the configuration onto a kind argument vector and runs it
    with output streamed to the terminal. Errors from the runner propagate
    unwrapped.
    """

    def __init__(
        self,
        config: KindConfig,
        options: HarnessOptions | None = None,
        runner: ProcessRunner | None = None,
    ):
        """Initialize kind deployer.

        Args:
            config: kind configuration
            options: Harness-wide options (build requested, artifacts dir)
            runner: Process runner (a new one if not given)
        """
        self.config = config
        self.options = options or HarnessOptions()
        self.runner = runner or ProcessRunner()
        self.logs_dir = self.options.logs_dir

        logger.debug("kind_deployer_initialized", cluster_name=config.cluster_name)

    @property
    def cluster_name(self) -> str:
        return self.config.cluster_name

    def _image(self) -> str | None:
        # an explicit image wins; otherwise use what Build just produced
        if self.config.image_name:
            return self.config.image_name
        if self.options.should_build():
            return KIND_DEFAULT_BUILT_IMAGE_NAME
        return None

    def up(self, deadline: Deadline | None = None) -> None:
        """Create the kind cluster.

        Args:
            deadline: Optional deadline of an enclosing operation
        """
        args = ["create", "cluster", "--name", self.cluster_name]
        if self.config.log_level:
            args.extend(["--loglevel", self.config.log_level])
        image = self._image()
        if image:
            args.extend(["--image", image])
        if self.config.config_path:
            args.extend(["--config", self.config.config_path])
        if self.config.kubeconfig_path:
            args.extend(["--kubeconfig", self.config.kubeconfig_path])
        if self.config.verbosity > 0:
            args.extend(["--verbosity", str(self.config.verbosity)])

        logger.info("creating_kind_cluster", cluster_name=self.cluster_name, image=image)
        self.runner.run("kind", args, deadline=deadline)

    def down(self) -> None:
        """Delete the kind cluster."""
        args = ["delete", "cluster", "--name", self.cluster_name]
        if self.config.log_level:
            args.extend(["--loglevel", self.config.log_level])

        logger.info("deleting_kind_cluster", cluster_name=self.cluster_name)
        self.runner.run("kind", args)

    def is_up(self) -> bool:
        """Check whether the current kube context reports any nodes.

        Returns:
            True if at least one node is listed

        Raises:
            ProcessError: If kubectl fails, with its output attached
        """
        # naively assume that if the API server lists nodes, the cluster is up
        lines = self.runner.combined_output_lines("kubectl", ["get", "nodes", "-o=name"])
        up = len(lines) > 0

        logger.info("kind_cluster_is_up", cluster_name=self.cluster_name, up=up, nodes=len(lines))
        return up

    def dump_cluster_logs(self) -> None:
        """Export kind cluster logs into the artifacts logs directory."""
        args = ["export", "logs", "--name", self.cluster_name, str(self.logs_dir)]
        if self.config.log_level:
            args.extend(["--loglevel", self.config.log_level])

        logger.info("exporting_kind_logs", cluster_name=self.cluster_name, logs_dir=str(self.logs_dir))
        self.runner.run("kind", args)

    def build(self) -> None:
        """Build a kind node image."""
        args = ["build", "node-image"]
        if self.config.log_level:
            args.extend(["--loglevel", self.config.log_level])
        if self.config.build_type:
            args.extend(["--type", self.config.build_type])
        if self.config.kube_root:
            args.extend(["--kube-root", self.config.kube_root])
        image = self._image()
        if image:
            args.extend(["--image", image])

        logger.info("building_kind_node_image", image=image, build_type=self.config.build_type)
        self.runner.run("kind", args)

    def kubeconfig(self) -> str:
        """Return the kubeconfig kind writes to.

        Returns:
            The --kubeconfig override, else ~/.kube/config

        Raises:
            ConfigurationError: If the home directory cannot be determined
        """
        if self.config.kubeconfig_path:
            return self.config.kubeconfig_path

        try:
            home = Path.home()
        except (RuntimeError, KeyError) as e:
            raise ConfigurationError(f"Cannot determine home directory: {e}") from e
        return str(home / ".kube" / "config")
