from __future__ import annotations

import threading

import pytest

from kubestack.constants import StackType
from kubestack.exceptions import (
    OperationCancelledError,
    StackOperationError,
    StackOperationFailedError,
    StackTimeoutError,
    TemplateValidationError,
    UpstreamError,
)
from kubestack.providers.aws.stacks import (
    StackNames,
    StackRecord,
    Stacks,
    StackSpec,
    stack_labels,
    stack_tags,
)

from tests.conftest import FakeCloudFormation, client_error

pytestmark = [pytest.mark.xdist_group("unit")]

MANAGED = {"managed-by-keto": "true"}


def _stacks(cf: FakeCloudFormation, **kwargs) -> Stacks:
    kwargs.setdefault("poll_interval", 0)
    kwargs.setdefault("timeout", 5)
    return Stacks(cf, **kwargs)  # type: ignore[arg-type]


class TestStackNames:
    def test_default_prefix(self):
        names = StackNames()
        assert names.infra("prod") == "keto-prod-infra"
        assert names.elb("prod") == "keto-prod-elb"
        assert names.master_pool("prod") == "keto-prod-masterpool-blue"
        assert names.compute_pool("prod", "workers") == "keto-prod-workers-blue"

    def test_custom_prefix(self):
        assert StackNames("acme").infra("prod") == "acme-prod-infra"


class TestStackTags:
    def test_required_tags_always_set(self):
        tags = stack_tags("prod", StackType.INFRA)
        assert tags == {"managed-by-keto": "true", "cluster-name": "prod", "stack-type": "infra"}

    def test_optional_tags_only_when_set(self):
        tags = stack_tags("prod", StackType.COMPUTE_POOL, pool_name="workers", disk_size=20)
        assert tags["pool-name"] == "workers"
        assert tags["disk-size"] == "20"
        assert "kube-version" not in tags
        assert "machine-type" not in tags


class TestStackRecord:
    def test_outputs_win_over_tags(self):
        record = StackRecord("id", "s", "CREATE_COMPLETE", tags={"k": "tag"}, outputs={"k": "output"})
        assert record.attributes["k"] == "output"

    def test_stack_type_falls_back_to_output(self):
        record = StackRecord("id", "s", "CREATE_COMPLETE", outputs={"StackType": "elb"})
        assert record.stack_type == "elb"

    def test_get_returns_first_non_empty(self):
        record = StackRecord("id", "s", "CREATE_COMPLETE", tags={"a": "", "b": "2"})
        assert record.get("a", "b") == "2"
        assert record.get("missing", default="x") == "x"

    def test_from_boto(self, cloudformation: FakeCloudFormation):
        raw = cloudformation.add_stack("s", tags={**MANAGED, "cluster-name": "prod"}, outputs={"VpcID": "vpc-1"})
        record = StackRecord.from_boto(raw)
        assert record.managed
        assert record.cluster_name == "prod"
        assert record.outputs == {"VpcID": "vpc-1"}
        assert record.created > 0
        assert record.status_view().state == "CREATE_COMPLETE"


class TestStackLabels:
    def test_reserved_attributes_are_hidden(self):
        record = StackRecord(
            "id", "s", "CREATE_COMPLETE",
            tags={**MANAGED, "stack-type": "infra", "kube-version": "v1", "cluster-name": "prod", "team": "a"},
            outputs={"VpcID": "vpc-1", "InternalCluster": "false"},
        )
        assert stack_labels(record) == {"cluster-name": "prod", "team": "a"}

    def test_encoded_labels_output_is_merged(self):
        record = StackRecord("id", "s", "CREATE_COMPLETE", outputs={"Labels": "env=prod,tier=web"})
        assert stack_labels(record) == {"env": "prod", "tier": "web"}


class TestDiscovery:
    def test_missing_stack_yields_empty_list(self, cloudformation: FakeCloudFormation):
        assert _stacks(cloudformation).describe("nope") == []

    def test_exists_requires_managed_tag(self, cloudformation: FakeCloudFormation):
        cloudformation.add_stack("managed", tags=MANAGED)
        cloudformation.add_stack("foreign")
        stacks = _stacks(cloudformation)
        assert stacks.exists("managed")
        assert not stacks.exists("foreign")
        assert not stacks.exists("missing")

    def test_listing_follows_pagination(self, cloudformation: FakeCloudFormation):
        for i in range(5):
            cloudformation.add_stack(f"s{i}", tags={**MANAGED, "stack-type": "infra"})
        assert len(_stacks(cloudformation).describe()) == 5

    def test_by_type_filters_managed_stacks(self, cloudformation: FakeCloudFormation):
        cloudformation.add_stack("a", tags={**MANAGED, "stack-type": "infra"})
        cloudformation.add_stack("b", tags={**MANAGED, "stack-type": "elb"})
        cloudformation.add_stack("c", tags={"stack-type": "infra"})
        names = [s.name for s in _stacks(cloudformation).by_type(StackType.INFRA)]
        assert names == ["a"]

    def test_other_client_errors_are_upstream_errors(self, cloudformation: FakeCloudFormation, monkeypatch):
        def fail(**kwargs):
            raise client_error("Throttling", "Rate exceeded", "DescribeStacks")

        monkeypatch.setattr(cloudformation, "describe_stacks", fail)
        with pytest.raises(UpstreamError, match="Rate exceeded"):
            _stacks(cloudformation).get("s")

    def test_resource_id(self, cloudformation: FakeCloudFormation):
        cloudformation.resources["s"] = [
            {"LogicalResourceId": "B", "PhysicalResourceId": "bucket-1", "ResourceType": "AWS::S3::Bucket"},
        ]
        cloudformation.add_stack("s")
        stacks = _stacks(cloudformation)
        assert stacks.resource_id("s", "AWS::S3::Bucket") == "bucket-1"
        assert stacks.resource_id("s", "AWS::EC2::Volume") == ""


class TestLifecycle:
    def test_create_returns_stack_id(self, cloudformation: FakeCloudFormation):
        spec = StackSpec("s", '{"Resources": {}}', {"managed-by-keto": "true"}, ("CAPABILITY_IAM",))
        stack_id = _stacks(cloudformation).create(spec)
        assert stack_id == cloudformation.stacks["s"]["StackId"]
        assert cloudformation.stacks["s"]["Capabilities"] == ["CAPABILITY_IAM"]
        assert cloudformation.tags("s") == {"managed-by-keto": "true"}

    def test_invalid_template_is_not_created(self, cloudformation: FakeCloudFormation):
        cloudformation.invalid_templates = True
        with pytest.raises(TemplateValidationError, match="Template format error"):
            _stacks(cloudformation).create(StackSpec("s", "{}", {}))
        assert cloudformation.created == []

    def test_missing_stack_id_fails(self, cloudformation: FakeCloudFormation, monkeypatch):
        monkeypatch.setattr(cloudformation, "create_stack", lambda **kwargs: {})
        with pytest.raises(StackOperationError, match="no stack id"):
            _stacks(cloudformation).create(StackSpec("s", "{}", {}))

    def test_delete_waits_until_gone(self, cloudformation: FakeCloudFormation):
        cloudformation.add_stack("s", tags=MANAGED)
        _stacks(cloudformation).delete("s")
        assert "s" not in cloudformation.stacks
        assert cloudformation.deleted == ["s"]


class TestWait:
    def test_in_progress_then_complete(self, cloudformation: FakeCloudFormation):
        cloudformation.add_stack("s")
        cloudformation.script("s", "CREATE_IN_PROGRESS", "CREATE_IN_PROGRESS", "CREATE_COMPLETE")
        _stacks(cloudformation).wait("s")
        assert cloudformation.scripts["s"] == []

    def test_unknown_status_keeps_polling(self, cloudformation: FakeCloudFormation):
        cloudformation.add_stack("s")
        cloudformation.script("s", "REVIEW_IN_PROGRESS", "SOMETHING_NEW", "CREATE_COMPLETE")
        _stacks(cloudformation).wait("s")

    @pytest.mark.parametrize("status", ["CREATE_FAILED", "ROLLBACK_COMPLETE", "UPDATE_ROLLBACK_COMPLETE"])
    def test_failed_or_rolled_back(self, cloudformation: FakeCloudFormation, status: str):
        cloudformation.add_stack("s", status=status)
        with pytest.raises(StackOperationFailedError) as exc_info:
            _stacks(cloudformation).wait("s")
        assert exc_info.value.status == status

    def test_rollback_in_progress_keeps_polling_until_failed(self, cloudformation: FakeCloudFormation):
        cloudformation.add_stack("s")
        cloudformation.script("s", "ROLLBACK_IN_PROGRESS", "ROLLBACK_COMPLETE")
        with pytest.raises(StackOperationFailedError, match="ROLLBACK_COMPLETE"):
            _stacks(cloudformation).wait("s")

    def test_missing_stack_is_done(self, cloudformation: FakeCloudFormation):
        _stacks(cloudformation).wait("gone")

    def test_timeout(self, cloudformation: FakeCloudFormation):
        cloudformation.add_stack("s", status="CREATE_IN_PROGRESS")
        with pytest.raises(StackTimeoutError):
            _stacks(cloudformation, poll_interval=0.01, timeout=0.05).wait("s")

    def test_cancel(self, cloudformation: FakeCloudFormation):
        cloudformation.add_stack("s", status="DELETE_IN_PROGRESS")
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OperationCancelledError):
            _stacks(cloudformation, poll_interval=0.01, cancel=cancel).wait("s")

    def test_describe_error_propagates(self, cloudformation: FakeCloudFormation, monkeypatch):
        def fail(**kwargs):
            raise client_error("AccessDenied", "denied", "DescribeStacks")

        monkeypatch.setattr(cloudformation, "describe_stacks", fail)
        with pytest.raises(UpstreamError):
            _stacks(cloudformation).wait("s")
