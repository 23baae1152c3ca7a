"""Core data models for kubeharness."""

import uuid
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class HarnessOptions(BaseModel):
    """Options shared by every deployer in a harness run."""

    model_config = ConfigDict(frozen=True)

    build: bool = Field(False, description="Whether a node image build was requested")
    artifacts_dir: Path = Field(Path("_artifacts"), description="Directory for run artifacts")
    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])

    def should_build(self) -> bool:
        """Return True when this run builds a node image before bringing the cluster up."""
        return self.build

    @property
    def logs_dir(self) -> Path:
        return self.artifacts_dir / "logs"
