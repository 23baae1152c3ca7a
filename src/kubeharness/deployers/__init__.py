"""Deployer implementations for cluster lifecycle tools."""

from kubeharness.deployers.capi import CapiDeployer
from kubeharness.deployers.kind import KindDeployer

__all__ = [
    "CapiDeployer",
    "KindDeployer",
]
