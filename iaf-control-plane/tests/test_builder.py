"""Tests for the managed-database resource builder."""
import pytest

from iaf_contracts import ManagedService, ServicePhase
from iaf_control_plane.builder import build_database_cluster, build_network_policy, read_cluster_status


def _service(plan: str = "micro") -> ManagedService:
    return ManagedService(name="mydb", namespace="iaf-abc", type="postgres", plan=plan)


class TestBuildDatabaseCluster:
    @pytest.mark.parametrize(
        "plan,instances,cpu,memory,storage",
        [
            ("micro", 1, "250m", "256Mi", "1Gi"),
            ("small", 1, "500m", "512Mi", "5Gi"),
            ("ha", 3, "1", "1Gi", "10Gi"),
        ],
    )
    def test_plan_sizing(self, plan, instances, cpu, memory, storage):
        manifest = build_database_cluster(_service(plan))
        spec = manifest["spec"]
        assert spec["instances"] == instances
        assert spec["storage"] == {"size": storage}
        assert spec["resources"]["requests"] == {"cpu": cpu, "memory": memory}

    def test_owner_reference_and_labels(self):
        manifest = build_database_cluster(_service())
        assert manifest["apiVersion"] == "postgresql.cnpg.io/v1"
        assert manifest["kind"] == "Cluster"
        metadata = manifest["metadata"]
        assert (metadata["name"], metadata["namespace"]) == ("mydb", "iaf-abc")
        assert metadata["ownerReferences"] == [
            {"apiVersion": "iaf.io/v1alpha1", "kind": "ManagedService", "name": "mydb", "controller": True}
        ]
        assert metadata["labels"]["iaf.io/managed-service"] == "mydb"


class TestBuildNetworkPolicy:
    def test_ingress_limited_to_namespace_and_operator(self):
        policy = build_network_policy(_service(), "cnpg-system")
        assert policy["metadata"]["name"] == "mydb-netpol"
        spec = policy["spec"]
        assert spec["podSelector"] == {"matchLabels": {"cnpg.io/cluster": "mydb"}}
        assert spec["policyTypes"] == ["Ingress"]
        (rule,) = spec["ingress"]
        assert rule["from"] == [
            {"podSelector": {}},
            {"namespaceSelector": {"matchLabels": {"kubernetes.io/metadata.name": "cnpg-system"}}},
        ]
        assert rule["ports"] == [{"protocol": "TCP"}]

    def test_operator_namespace_is_configurable(self):
        policy = build_network_policy(_service(), "db-operator")
        peer = policy["spec"]["ingress"][0]["from"][1]
        assert peer["namespaceSelector"]["matchLabels"]["kubernetes.io/metadata.name"] == "db-operator"


class TestReadClusterStatus:
    def _resource(self, status=None):
        resource = {"metadata": {"name": "mydb"}}
        if status is not None:
            resource["status"] = status
        return resource

    def test_ready_condition_true(self):
        phase, ref = read_cluster_status(self._resource({"conditions": [{"type": "Ready", "status": "True"}]}))
        assert phase == ServicePhase.READY
        assert ref == "mydb-app"

    @pytest.mark.parametrize(
        "status",
        [
            None,
            {},
            {"conditions": []},
            {"conditions": [{"type": "Ready", "status": "False"}]},
            {"conditions": [{"type": "Ready", "status": "Unknown"}]},
            {"conditions": [{"type": "Ready", "status": True}]},
            {"conditions": [{"type": "ContinuousArchiving", "status": "True"}]},
            {"conditions": "Ready"},
        ],
    )
    def test_anything_else_is_provisioning(self, status):
        phase, ref = read_cluster_status(self._resource(status))
        assert phase == ServicePhase.PROVISIONING
        assert ref == "mydb-app"
