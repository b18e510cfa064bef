"""Certificate authority material read from a local directory."""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from kubestack.constants import AssetObject
from kubestack.exceptions import AssetError
from kubestack.model import Assets

log = logger.bind(component="assets")


def _read(directory: Path, name: AssetObject) -> bytes:
    path = directory / name
    try:
        return path.read_bytes()
    except FileNotFoundError as e:
        raise AssetError(f"asset file not found: {path}") from e
    except OSError as e:
        raise AssetError(f"cannot read asset file {path}: {e}") from e


def read_assets(directory: str | Path) -> Assets:
    """Read the etcd and Kubernetes CA certificates and keys from ``directory``.

    Raises:
        AssetError: One of the four files is missing or unreadable.
    """
    directory = Path(directory).expanduser()
    log.debug("Reading assets from {dir}", dir=directory)
    return Assets(
        etcd_ca_cert=_read(directory, AssetObject.ETCD_CA_CERT),
        etcd_ca_key=_read(directory, AssetObject.ETCD_CA_KEY),
        kube_ca_cert=_read(directory, AssetObject.KUBE_CA_CERT),
        kube_ca_key=_read(directory, AssetObject.KUBE_CA_KEY),
    )


def asset_objects(assets: Assets) -> dict[AssetObject, bytes]:
    """Object name to content for every asset."""
    return {
        AssetObject.ETCD_CA_CERT: assets.etcd_ca_cert,
        AssetObject.ETCD_CA_KEY: assets.etcd_ca_key,
        AssetObject.KUBE_CA_CERT: assets.kube_ca_cert,
        AssetObject.KUBE_CA_KEY: assets.kube_ca_key,
    }
