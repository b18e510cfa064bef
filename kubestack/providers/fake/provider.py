"""In-memory cloud provider for tests and dry runs.

Only node pools are implemented. State can be persisted to a JSON file so
separate processes (e.g. successive CLI invocations) see the same pools.
"""

from __future__ import annotations

import base64
import json
import os
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Final, Literal, Self

from loguru import logger

from kubestack.exceptions import ConfigurationError
from kubestack.model import ComputePool, KubeArgs, MasterPool, NodePool, Status
from kubestack.providers.provider import Capability

log = logger.bind(component="fake")

STATE_FILE_ENV: Final = "KUBESTACK_FAKE_STATE_FILE"

type PoolKind = Literal["master", "compute"]


@dataclass(frozen=True, slots=True)
class Fake:
    """Fake provider configuration.

    Args:
        state_file: JSON file holding the pools. None keeps state in memory.
    """

    state_file: str | None = None

    @property
    def type(self) -> str: return "fake"


# =============================================================================
# Serialization
# =============================================================================


def _encode(kind: PoolKind, pool: NodePool) -> dict[str, Any]:
    data = asdict(pool)
    data["user_data"] = base64.b64encode(pool.user_data).decode()
    data["kind"] = kind
    return data


def _decode(data: dict[str, Any]) -> tuple[PoolKind, NodePool]:
    data = dict(data)
    kind: PoolKind = data.pop("kind")
    data["user_data"] = base64.b64decode(data.get("user_data", ""))
    data["networks"] = tuple(data.get("networks", ()))
    data["kube_args"] = KubeArgs(**data.get("kube_args", {}))
    data["status"] = Status(**data.get("status", {}))
    if kind == "master":
        data["kube_api_networks"] = tuple(data.get("kube_api_networks", ()))
        return kind, MasterPool(**data)
    return kind, ComputePool(**data)


# =============================================================================
# Provider
# =============================================================================


class FakeCloud:
    """NodePooler-only provider backed by a list of pools."""

    name: Final = "fake"
    capabilities: Final = frozenset({Capability.NODE_POOLER})

    def __init__(self, state_file: str | Path | None = None) -> None:
        self._lock = threading.Lock()
        self._pools: list[tuple[PoolKind, NodePool]] = []
        self.state_file = Path(state_file) if state_file else None
        self._load()

    @classmethod
    def create(cls, config: Fake | None = None) -> Self:
        """Build the provider; the state file defaults to ``$KUBESTACK_FAKE_STATE_FILE``."""
        state_file = config.state_file if config and config.state_file else os.environ.get(STATE_FILE_ENV)
        return cls(state_file)

    def clusters(self) -> None:
        return None

    def node_pooler(self) -> Self:
        return self

    def node(self) -> None:
        return None

    # -------------------------------------------------------------------------
    # NodePooler
    # -------------------------------------------------------------------------

    def create_master_pool(self, pool: MasterPool) -> None:
        self._add("master", pool)

    def create_compute_pool(self, pool: ComputePool) -> None:
        self._add("compute", pool)

    def get_master_pools(self, cluster_name: str, name: str = "") -> list[MasterPool]:
        return [p for p in self._list("master", cluster_name, name) if isinstance(p, MasterPool)]

    def get_compute_pools(self, cluster_name: str, name: str = "") -> list[ComputePool]:
        return [p for p in self._list("compute", cluster_name, name) if isinstance(p, ComputePool)]

    def delete_master_pool(self, cluster_name: str) -> None:
        self._remove("master", cluster_name, "")

    def delete_compute_pool(self, cluster_name: str, name: str = "") -> None:
        self._remove("compute", cluster_name, name)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @staticmethod
    def _matches(pool: NodePool, cluster_name: str, name: str) -> bool:
        return (not cluster_name or pool.cluster_name == cluster_name) and (not name or pool.name == name)

    def _add(self, kind: PoolKind, pool: NodePool) -> None:
        self._load()
        with self._lock:
            self._pools.append((kind, pool))
            self._save()
        log.debug("Created {kind} pool {name} in {cluster}", kind=kind, name=pool.name, cluster=pool.cluster_name)

    def _list(self, kind: PoolKind, cluster_name: str, name: str) -> list[NodePool]:
        self._load()
        with self._lock:
            return [p for k, p in self._pools if k == kind and self._matches(p, cluster_name, name)]

    def _remove(self, kind: PoolKind, cluster_name: str, name: str) -> None:
        self._load()
        with self._lock:
            self._pools = [
                (k, p) for k, p in self._pools
                if not (k == kind and p.cluster_name == cluster_name and self._matches(p, cluster_name, name))
            ]
            self._save()

    def _load(self) -> None:
        if self.state_file is None:
            return
        # Missing or empty state files mean no pools yet.
        if not self.state_file.is_file() or self.state_file.stat().st_size == 0:
            return
        with self._lock:
            try:
                raw = json.loads(self.state_file.read_text())
                self._pools = [_decode(item) for item in raw]
            except (ValueError, TypeError, KeyError) as e:
                raise ConfigurationError(f"invalid state file {self.state_file}: {e}") from e

    def _save(self) -> None:
        if self.state_file is None:
            return
        payload = [_encode(kind, pool) for kind, pool in self._pools]
        self.state_file.write_text(json.dumps(payload, indent=2))
