from __future__ import annotations

import threading

import pytest

from kubestack.exceptions import (
    NotImplementedCapabilityError,
    ProviderAlreadyRegisteredError,
    UnknownProviderError,
)
from kubestack.providers import Capability, ProviderRegistry, default_registry, require
from kubestack.providers.fake import Fake, FakeCloud

pytestmark = [pytest.mark.xdist_group("unit")]


class TestProviderRegistry:
    def test_register_and_init(self):
        registry = ProviderRegistry()
        registry.register("fake", lambda config: FakeCloud())
        provider = registry.init("fake")
        assert provider.name == "fake"

    def test_factory_receives_config(self):
        seen = []
        registry = ProviderRegistry()
        registry.register("fake", lambda config: seen.append(config) or FakeCloud())
        registry.init("fake", {"key": "value"})
        assert seen == [{"key": "value"}]

    def test_unknown_provider_lists_available(self):
        registry = ProviderRegistry()
        registry.register("b", lambda config: FakeCloud())
        registry.register("a", lambda config: FakeCloud())
        with pytest.raises(UnknownProviderError, match=r"available: a, b"):
            registry.init("gce")

    def test_duplicate_registration(self):
        registry = ProviderRegistry()
        registry.register("fake", lambda config: FakeCloud())
        with pytest.raises(ProviderAlreadyRegisteredError):
            registry.register("fake", lambda config: FakeCloud())

    def test_none_factory(self):
        with pytest.raises(ValueError, match="None factory"):
            ProviderRegistry().register("fake", None)  # type: ignore[arg-type]

    def test_list_is_sorted(self):
        registry = ProviderRegistry()
        for name in ("c", "a", "b"):
            registry.register(name, lambda config: FakeCloud())
        assert registry.list() == ["a", "b", "c"]
        assert registry.is_registered("a")
        assert not registry.is_registered("z")

    def test_concurrent_registration(self):
        registry = ProviderRegistry()

        def register(i: int) -> None:
            registry.register(f"p{i}", lambda config: FakeCloud())

        threads = [threading.Thread(target=register, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(registry.list()) == 20


class TestDefaultRegistry:
    def test_builtin_providers(self):
        assert default_registry().list() == ["aws", "fake"]

    def test_fake_from_config(self, tmp_path):
        state = tmp_path / "state.json"
        provider = default_registry().init("fake", Fake(state_file=str(state)))
        assert isinstance(provider, FakeCloud)
        assert provider.state_file == state


class TestRequire:
    def test_returns_capability(self):
        cloud = FakeCloud()
        assert require(cloud, Capability.NODE_POOLER) is cloud

    @pytest.mark.parametrize("capability", [Capability.CLUSTERS, Capability.NODE])
    def test_missing_capability(self, capability: Capability):
        with pytest.raises(NotImplementedCapabilityError) as exc_info:
            require(FakeCloud(), capability)
        assert exc_info.value.provider == "fake"
        assert exc_info.value.capability == capability.value

    def test_undeclared_capability_is_refused(self):
        cloud = FakeCloud()
        cloud.capabilities = frozenset()  # type: ignore[misc]
        with pytest.raises(NotImplementedCapabilityError):
            require(cloud, Capability.NODE_POOLER)

    def test_declared_capability_without_implementation(self):
        cloud = FakeCloud()
        cloud.capabilities = frozenset(Capability)  # type: ignore[misc]
        with pytest.raises(NotImplementedCapabilityError, match="clusters"):
            require(cloud, Capability.CLUSTERS)
