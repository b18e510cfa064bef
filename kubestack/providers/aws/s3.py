"""S3-backed store for cluster certificate authority material."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from loguru import logger

from kubestack.assets import asset_objects
from kubestack.constants import ASSETS_EXPIRATION_SECONDS, AssetObject
from kubestack.model import Assets

from .clients import aws_call

if TYPE_CHECKING:
    from mypy_boto3_s3 import S3Client

log = logger.bind(component="s3")


class AssetStore:
    """Reads and writes the four asset objects of a cluster bucket.

    Assets are only needed while nodes bootstrap, so uploads expire after
    ``expiration`` seconds.
    """

    def __init__(self, s3: S3Client, expiration: int = ASSETS_EXPIRATION_SECONDS) -> None:
        self._s3 = s3
        self.expiration = expiration

    def put(self, bucket: str, assets: Assets) -> None:
        """Upload every asset to ``bucket``.

        Args:
            bucket: Cluster assets bucket.
            assets: CA material to upload.
        """
        expires = datetime.now(UTC) + timedelta(seconds=self.expiration)
        for key, body in asset_objects(assets).items():
            with aws_call(f"put s3://{bucket}/{key}"):
                self._s3.put_object(Bucket=bucket, Key=str(key), Body=body, Expires=expires)
        log.debug("Uploaded assets to {bucket}", bucket=bucket)

    def get(self, bucket: str) -> Assets:
        def read(key: AssetObject) -> bytes:
            with aws_call(f"get s3://{bucket}/{key}"):
                return self._s3.get_object(Bucket=bucket, Key=str(key))["Body"].read()

        return Assets(
            etcd_ca_cert=read(AssetObject.ETCD_CA_CERT),
            etcd_ca_key=read(AssetObject.ETCD_CA_KEY),
            kube_ca_cert=read(AssetObject.KUBE_CA_CERT),
            kube_ca_key=read(AssetObject.KUBE_CA_KEY),
        )

    def delete(self, bucket: str) -> None:
        """Delete every asset object from ``bucket``."""
        objects = [{"Key": str(key)} for key in AssetObject]
        with aws_call(f"delete assets from s3://{bucket}"):
            self._s3.delete_objects(Bucket=bucket, Delete={"Objects": objects, "Quiet": True})
        log.debug("Deleted assets from {bucket}", bucket=bucket)
