"""Boot configuration (cloud-init user data) for cluster nodes.

Documents are ``#cloud-config`` headers followed by a JSON body. JSON is a
subset of YAML, so cloud-init reads them as regular cloud-config while the
body stays trivially machine-checkable.
"""

from __future__ import annotations

import json
from typing import Any, Final, Protocol

from loguru import logger

from kubestack.model import PeerMap

log = logger.bind(component="userdata")

CLOUD_CONFIG_HEADER: Final = "#cloud-config\n"
ETCD_PEER_PORT: Final = 2380
KUBELET_IMAGE_URL: Final = "quay.io/coreos/hyperkube"


class UserDataRenderer(Protocol):
    """Renders the boot configuration of master and compute nodes."""

    def render_master(
        self,
        provider: str,
        cluster: str,
        kube_version: str,
        peers: PeerMap,
    ) -> bytes: ...

    def render_compute(self, provider: str, cluster: str, kube_version: str) -> bytes: ...


def _node_order(node_id: str) -> tuple[int, int | str]:
    return (0, int(node_id)) if node_id.isdigit() else (1, node_id)


def initial_cluster(peers: PeerMap) -> str:
    """Build the etcd ``initial-cluster`` value, ordered by node id.

    >>> initial_cluster({"10": "10.0.0.3", "1": "10.0.0.2", "0": "10.0.0.1"})
    'Node0=https://10.0.0.1:2380,Node1=https://10.0.0.2:2380,Node10=https://10.0.0.3:2380'
    """
    return ",".join(
        f"Node{node_id}=https://{peers[node_id]}:{ETCD_PEER_PORT}"
        for node_id in sorted(peers, key=_node_order)
    )


def _env_file(values: dict[str, str]) -> str:
    return "".join(f"{k}={v}\n" for k, v in values.items())


def _write_file(path: str, content: str, permissions: str = "0644") -> dict[str, str]:
    return {"path": path, "permissions": permissions, "owner": "root", "content": content}


class CloudConfigRenderer:
    """Default renderer producing CoreOS cloud-config documents."""

    def render_master(
        self,
        provider: str,
        cluster: str,
        kube_version: str,
        peers: PeerMap,
    ) -> bytes:
        etcd_env = {
            "ETCD_INITIAL_CLUSTER": initial_cluster(peers),
            "ETCD_INITIAL_CLUSTER_STATE": "new",
            "ETCD_CA_FILE": "/data/ca/etcd/ca.crt",
            "ETCD_PEER_CA_FILE": "/data/ca/etcd/ca.crt",
        }
        doc = self._base(provider, cluster, kube_version, role="master")
        doc["write_files"].append(_write_file("/etc/etcd.env", _env_file(etcd_env)))
        log.debug(
            "Rendered master cloud-config for {cluster} with {n} etcd peers",
            cluster=cluster, n=len(peers),
        )
        return self._dump(doc)

    def render_compute(self, provider: str, cluster: str, kube_version: str) -> bytes:
        doc = self._base(provider, cluster, kube_version, role="compute")
        doc["write_files"].append(
            _write_file("/etc/kubernetes/keto-token.env", "# Replaced on first boot\n", "0600")
        )
        log.debug("Rendered compute cloud-config for {cluster}", cluster=cluster)
        return self._dump(doc)

    @staticmethod
    def _base(provider: str, cluster: str, kube_version: str, role: str) -> dict[str, Any]:
        node_env = {
            "CLOUD_PROVIDER": provider,
            "CLUSTER_NAME": cluster,
            "NODE_ROLE": role,
            "KUBELET_IMAGE_URL": KUBELET_IMAGE_URL,
            "KUBELET_IMAGE_TAG": f"{kube_version}_coreos.0",
        }
        kube_cloud_config = (
            "[Global]\n"
            "DisableSecurityGroupIngress = true\n"
            f'KubernetesClusterTag = "{cluster}"\n'
        )
        return {
            "coreos": {"update": {"reboot-strategy": "off"}},
            "write_files": [
                _write_file("/etc/kubestack/node.env", _env_file(node_env)),
                _write_file("/etc/kubernetes/cloud-config", kube_cloud_config, "0600"),
            ],
        }

    @staticmethod
    def _dump(doc: dict[str, Any]) -> bytes:
        return (CLOUD_CONFIG_HEADER + json.dumps(doc, indent=2) + "\n").encode()
