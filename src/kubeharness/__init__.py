"""Kubernetes cluster lifecycle deployers (kubeharness).

Bring test clusters up and down with kind and Cluster API by driving the
kind, clusterctl and kubectl command-line tools.
"""

__version__ = "0.1.0"
__author__ = "Platform Engineering Team"
__license__ = "Apache-2.0"
