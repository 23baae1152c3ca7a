"""Deployer interface for cluster lifecycle operations."""

from abc import ABC, abstractmethod


class Deployer(ABC):
    """Abstract interface every cluster deployer implements.

    The harness drives deployers polymorphically through this fixed set of
    lifecycle verbs. Implementations invoke external tools and raise
    ``HarnessError`` subclasses on failure.
    """

    @abstractmethod
    def up(self) -> None:
        """Bring the cluster up.

        Raises:
            HarnessError: If the cluster cannot be created
        """

    @abstractmethod
    def down(self) -> None:
        """Tear the cluster down.

        Raises:
            HarnessError: If the cluster cannot be deleted
        """

    @abstractmethod
    def is_up(self) -> bool:
        """Check whether the cluster is up.

        Returns:
            True if the cluster reports nodes

        Raises:
            ProcessError: If the cluster cannot be queried
        """

    @abstractmethod
    def dump_cluster_logs(self) -> None:
        """Export cluster logs into the artifacts directory."""

    @abstractmethod
    def build(self) -> None:
        """Build a node image for the cluster."""

    @abstractmethod
    def kubeconfig(self) -> str:
        """Return the path of a kubeconfig for the cluster.

        Raises:
            HarnessError: If the kubeconfig cannot be resolved
        """
