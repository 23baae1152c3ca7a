"""Configuration management for kubeharness."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from kubeharness.core.exceptions import ConfigurationError
from kubeharness.core.models import HarnessOptions
from kubeharness.utils.deadline import parse_duration


class KindConfig(BaseModel):
    """kind deployer configuration."""

    model_config = ConfigDict(frozen=True)

    cluster_name: str = Field("kind-kubeharness", description="kind cluster --name")
    log_level: str = Field("", description="--loglevel for kind commands")
    image_name: str = Field("", description="Node image to build and deploy")
    build_type: str = Field("", description="--type for kind build node-image")
    config_path: str = Field("", description="--config for kind create cluster")
    kubeconfig_path: str = Field("", description="--kubeconfig for kind create cluster")
    kube_root: str = Field("", description="--kube-root for kind build node-image")
    verbosity: int = Field(0, ge=0, description="--verbosity for kind")

    @field_validator("cluster_name")
    @classmethod
    def _require_cluster_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("cluster name must not be empty")
        return value


class CapiConfig(BaseModel):
    """Cluster API deployer configuration.

    Machine counts are opaque strings handed to clusterctl verbatim.
    """

    model_config = ConfigDict(frozen=True)

    kind: KindConfig = Field(default_factory=KindConfig)
    provider: str = Field("", description="--infrastructure provider for clusterctl")
    kubernetes_version: str = Field("", description="--kubernetes-version for clusterctl")
    control_plane_count: str = "1"
    worker_count: str = "1"
    flavor: str = Field("", description="--flavor for clusterctl")
    use_existing_cluster: bool = False
    up_timeout: str = "30m"
    install_calico: bool = False
    workload_cluster_name: str = "capi-workload-cluster"
    kubecfg_path: str = Field("", description="Workload cluster kubeconfig override")

    @field_validator("control_plane_count", "worker_count", mode="before")
    @classmethod
    def _count_as_string(cls, value: Any) -> Any:
        # YAML turns "3" into an int
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("up_timeout")
    @classmethod
    def _valid_up_timeout(cls, value: str) -> str:
        try:
            parse_duration(value)
        except ConfigurationError as e:
            raise ValueError(str(e)) from e
        return value

    @field_validator("workload_cluster_name")
    @classmethod
    def _require_workload_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("workload cluster name must not be empty")
        return value


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"
    output: str = "stderr"


class HarnessConfig(BaseModel):
    """Top-level kubeharness configuration file.

    The ``kind`` section configures the kind layer for both deployers; the
    ``capi`` section holds the Cluster API settings layered on top of it.
    """

    kind: KindConfig = Field(default_factory=KindConfig)
    capi: CapiConfig = Field(default_factory=CapiConfig)
    options: HarnessOptions = Field(default_factory=HarnessOptions)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="before")
    @classmethod
    def _reject_nested_kind(cls, data: Any) -> Any:
        # the top-level kind section is the only one
        if isinstance(data, dict) and isinstance(data.get("capi"), dict) and "kind" in data["capi"]:
            raise ValueError("kind settings belong in the top-level kind section, not under capi")
        return data

    @classmethod
    def from_file(cls, path: str | Path) -> "HarnessConfig":
        """Load configuration from YAML file.

        Args:
            path: Path to configuration file

        Returns:
            HarnessConfig instance

        Raises:
            ConfigurationError: If file cannot be loaded or parsed
        """
        config_path = Path(path).expanduser()

        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with config_path.open() as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load configuration: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Invalid configuration: expected a mapping in {config_path}")

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def capi_config(self) -> CapiConfig:
        """The Cluster API configuration with the shared kind section applied."""
        return self.capi.model_copy(update={"kind": self.kind})

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary.

        The result has the layout of a configuration file and can be loaded
        back with ``from_file``.

        Returns:
            Dictionary representation
        """
        return self.model_dump(mode="json", exclude={"capi": {"kind"}})
