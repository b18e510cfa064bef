from __future__ import annotations

from pathlib import Path

import pytest

from kubestack.exceptions import ConfigurationError
from kubestack.model import ComputePool, KubeArgs, MasterPool
from kubestack.providers.fake import STATE_FILE_ENV, Fake, FakeCloud

pytestmark = [pytest.mark.xdist_group("unit")]


def _compute(name: str, cluster: str = "prod") -> ComputePool:
    return ComputePool(
        name=name,
        cluster_name=cluster,
        size=3,
        networks=("subnet-a",),
        user_data=b"\x00binary",
        kube_args=KubeArgs(kubelet="--v=2"),
    )


class TestInMemory:
    def test_pools_by_cluster_and_name(self):
        cloud = FakeCloud()
        cloud.create_compute_pool(_compute("a"))
        cloud.create_compute_pool(_compute("b"))
        cloud.create_compute_pool(_compute("a", cluster="dev"))

        assert [p.name for p in cloud.get_compute_pools("prod")] == ["a", "b"]
        assert [p.cluster_name for p in cloud.get_compute_pools("", "a")] == ["prod", "dev"]

    def test_master_and_compute_are_separate(self):
        cloud = FakeCloud()
        cloud.create_master_pool(MasterPool(name="master", cluster_name="prod"))
        assert cloud.get_compute_pools("prod") == []
        assert [p.name for p in cloud.get_master_pools("prod")] == ["master"]

    def test_delete_scoped_to_cluster(self):
        cloud = FakeCloud()
        cloud.create_compute_pool(_compute("a"))
        cloud.create_compute_pool(_compute("a", cluster="dev"))
        cloud.delete_compute_pool("prod", "a")
        assert cloud.get_compute_pools("prod") == []
        assert len(cloud.get_compute_pools("dev")) == 1

    def test_delete_master_pool(self):
        cloud = FakeCloud()
        cloud.create_master_pool(MasterPool(name="master", cluster_name="prod"))
        cloud.delete_master_pool("prod")
        assert cloud.get_master_pools("prod") == []


class TestPersistence:
    def test_state_survives_new_instance(self, tmp_path: Path):
        state = tmp_path / "state.json"
        FakeCloud(state).create_compute_pool(_compute("a"))

        [pool] = FakeCloud(state).get_compute_pools("prod")
        assert pool == _compute("a")

    def test_master_pool_roundtrip(self, tmp_path: Path):
        state = tmp_path / "state.json"
        master = MasterPool(name="master", cluster_name="prod", kube_api_networks=("subnet-a",))
        FakeCloud(state).create_master_pool(master)
        assert FakeCloud(state).get_master_pools("prod") == [master]

    def test_empty_file_means_no_pools(self, tmp_path: Path):
        state = tmp_path / "state.json"
        state.write_text("")
        assert FakeCloud(state).get_compute_pools("") == []

    def test_invalid_state(self, tmp_path: Path):
        state = tmp_path / "state.json"
        state.write_text("{not json")
        with pytest.raises(ConfigurationError, match="invalid state file"):
            FakeCloud(state)

    def test_state_file_from_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        state = tmp_path / "env.json"
        monkeypatch.setenv(STATE_FILE_ENV, str(state))
        assert FakeCloud.create().state_file == state
        assert FakeCloud.create(Fake(state_file=str(tmp_path / "cfg.json"))).state_file == tmp_path / "cfg.json"
