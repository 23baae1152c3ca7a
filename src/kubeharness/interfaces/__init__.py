"""Interface definitions for kubeharness deployers."""

from kubeharness.interfaces.deployer import Deployer

__all__ = [
    "Deployer",
]
