"""
Runtime configuration.

Environment variables:
- MANUSCRIPT_STATE_DIR: State directory for registry, ledger and identities (default: ./state)
- MANUSCRIPT_STORAGE_CAPACITY: Storage capacity ceiling in bytes used by deploy (default: 1000000000)
- MANUSCRIPT_LOG_LEVEL: Root log level for the CLI and API (default: INFO)

The deployment record (administrator identity + capacity) is written once by
`manuscript-ledger deploy` and is immutable afterwards.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Dict

from pydantic import BaseModel, Field

from manuscript_ledger import DEFAULT_STORAGE_CAPACITY, __schema__
from manuscript_ledger.models import now_utc


def _opt(name: str, default: str) -> str:
    """Get optional environment variable with default."""
    return os.getenv(name, default)


def _opt_int(name: str, default: int) -> int:
    """Parse integer environment variable."""
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return int(v.strip())


@dataclass(frozen=True)
class Settings:
    STATE_DIR: str = "./state"
    STORAGE_CAPACITY: int = DEFAULT_STORAGE_CAPACITY
    LOG_LEVEL: str = "INFO"

    @staticmethod
    def load() -> Settings:
        """Load settings from environment variables."""
        return Settings(
            STATE_DIR=_opt("MANUSCRIPT_STATE_DIR", "./state"),
            STORAGE_CAPACITY=_opt_int("MANUSCRIPT_STORAGE_CAPACITY", DEFAULT_STORAGE_CAPACITY),
            LOG_LEVEL=_opt("MANUSCRIPT_LOG_LEVEL", "INFO").upper(),
        )


class Deployment(BaseModel):
    schema_version: str = Field(default=__schema__, alias="schema")
    administrator: str
    storage_capacity: int = Field(default=DEFAULT_STORAGE_CAPACITY, gt=0)
    deployed_utc: str = Field(default_factory=now_utc)

    model_config = {"populate_by_name": True, "frozen": True}


class DeploymentExistsError(Exception):
    """Raised when a state directory already carries a deployment record."""
    pass


def state_paths(state_dir: str, create: bool = True) -> Dict[str, str]:
    if create:
        os.makedirs(state_dir, exist_ok=True)
    return {
        "state": os.path.join(state_dir, "registry.json"),
        "ledger": os.path.join(state_dir, "ledger.jsonl"),
        "identities": os.path.join(state_dir, "identities.json"),
        "deployment": os.path.join(state_dir, "deployment.json"),
    }


def save_deployment(path: str, deployment: Deployment) -> None:
    if os.path.exists(path):
        raise DeploymentExistsError(f"Deployment already recorded at {path}")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(deployment.model_dump(by_alias=True), f, indent=2, sort_keys=True)


def load_deployment(path: str) -> Deployment:
    if not os.path.exists(path):
        raise FileNotFoundError(f"No deployment record at {path}. Run deploy first.")
    with open(path, "r", encoding="utf-8") as f:
        return Deployment.model_validate(json.load(f))
