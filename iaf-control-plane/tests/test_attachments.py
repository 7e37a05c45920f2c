from __future__ import annotations

import json

import pytest

from conftest import deploy, register_source
from iaf_contracts import (
    BasicAuthPayload,
    CredentialObject,
    DataSource,
    DataSourceSecretRef,
    OpaquePayload,
    RegistryAuthPayload,
    ServiceAccountTokenPayload,
    data_source_credential_name,
    managed_labels,
)
from iaf_contracts.naming import DATA_SOURCE_LABEL
from iaf_control_plane import records
from iaf_control_plane.errors import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    PreconditionError,
    SecurityRejectionError,
    VariableCollisionError,
)
from iaf_control_plane.service import ControlPlane

ORDERS_MAPPING = {"username": "ORDERS_USER", "password": "ORDERS_PASSWORD"}


def _credential_copies(plane: ControlPlane, namespace: str):
    return plane.db.list(records.CREDENTIAL_KIND, namespace)


def _workload_attachments(plane: ControlPlane, namespace: str, name: str = "web"):
    workload, _ = records.get_workload(plane.db, namespace, name)
    return workload.attached_data_sources


class TestCatalog:
    def test_list_filters_by_kind_and_all_tags(self, plane: ControlPlane, session_id: str) -> None:
        register_source(plane, "orders", ORDERS_MAPPING, tags=["sales", "prod"])
        register_source(plane, "events", {"url": "EVENTS_URL"}, kind="kafka", tags=["prod"])
        register_source(plane, "staging", {"url": "STAGING_URL"}, tags=["sales"])

        assert plane.data_sources.list_data_sources(session_id)["total"] == 3
        by_kind = plane.data_sources.list_data_sources(session_id, kind="kafka")
        assert [d["name"] for d in by_kind["data_sources"]] == ["events"]
        by_tags = plane.data_sources.list_data_sources(session_id, tags=["sales", " prod "])
        assert [d["name"] for d in by_tags["data_sources"]] == ["orders"]

    def test_metadata_only(self, plane: ControlPlane, session_id: str) -> None:
        register_source(plane, "orders", ORDERS_MAPPING)
        detail = plane.data_sources.get_data_source(session_id, "orders")

        assert detail["env_var_names"] == ["ORDERS_PASSWORD", "ORDERS_USER"]
        assert detail["schema"] == "orders(id, total)"
        rendered = json.dumps(detail)
        assert "secret_ref" not in rendered
        assert "orders-creds" not in rendered
        assert "s3cr3t-value" not in rendered

    def test_unknown_source(self, plane: ControlPlane, session_id: str) -> None:
        with pytest.raises(NotFoundError, match="list_data_sources"):
            plane.data_sources.get_data_source(session_id, "nope")

    def test_duplicate_registration(self, plane: ControlPlane) -> None:
        register_source(plane, "orders", ORDERS_MAPPING)
        with pytest.raises(AlreadyExistsError):
            register_source(plane, "orders", ORDERS_MAPPING)

    def test_credential_outside_system_namespace_rejected(self, plane: ControlPlane, namespace: str) -> None:
        source = DataSource(
            name="orders",
            kind="postgres",
            secret_ref=DataSourceSecretRef(name="orders-creds", namespace=namespace),
            env_var_mapping=ORDERS_MAPPING,
        )

        with pytest.raises(PreconditionError, match=plane.settings.system_namespace):
            plane.data_sources.register_data_source(source, BasicAuthPayload(username="u", password="p"))

        assert plane.db.list(records.DATA_SOURCE_KIND, "") == []
        assert _credential_copies(plane, namespace) == []


class TestAttach:
    def test_attach_copies_credential_owned_by_workload(
        self, plane: ControlPlane, session_id: str, namespace: str
    ) -> None:
        register_source(plane, "orders", ORDERS_MAPPING)
        deploy(plane, session_id, "web")

        result = plane.data_sources.attach(session_id, "web", "orders")

        assert result["env_var_names"] == ["ORDERS_PASSWORD", "ORDERS_USER"]
        assert result["already_attached"] is False
        copy = records.find_credential(plane.db, namespace, "iaf-ds-orders")
        assert copy is not None
        assert copy.owner.kind == "Workload" and copy.owner.name == "web"
        assert copy.labels[DATA_SOURCE_LABEL] == "orders"
        assert copy.payload.password.get_secret_value() == "s3cr3t-value"

        workload, _ = records.get_workload(plane.db, namespace, "web")
        (attachment,) = workload.attached_data_sources
        assert attachment.credential_name == "iaf-ds-orders"

    def test_attach_twice_is_idempotent(self, plane: ControlPlane, session_id: str, namespace: str) -> None:
        register_source(plane, "orders", ORDERS_MAPPING)
        deploy(plane, session_id, "web")

        first = plane.data_sources.attach(session_id, "web", "orders")
        second = plane.data_sources.attach(session_id, "web", "orders")

        assert second["already_attached"] is True
        assert second["env_var_names"] == first["env_var_names"]
        workload, _ = records.get_workload(plane.db, namespace, "web")
        assert len(workload.attached_data_sources) == 1
        assert len(_credential_copies(plane, namespace)) == 1

    def test_collision_with_plain_variable(self, plane: ControlPlane, session_id: str, namespace: str) -> None:
        register_source(plane, "orders", ORDERS_MAPPING)
        deploy(plane, session_id, "web", env={"ORDERS_USER": "me"})

        with pytest.raises(VariableCollisionError) as excinfo:
            plane.data_sources.attach(session_id, "web", "orders")

        assert excinfo.value.variable == "ORDERS_USER"
        assert excinfo.value.origin == "workload env var"
        workload, _ = records.get_workload(plane.db, namespace, "web")
        assert workload.attached_data_sources == []
        assert _credential_copies(plane, namespace) == []

    def test_collision_with_other_source(self, plane: ControlPlane, session_id: str, namespace: str) -> None:
        register_source(plane, "orders", ORDERS_MAPPING)
        register_source(plane, "orders-replica", {"username": "ORDERS_USER", "host": "REPLICA_HOST"})
        deploy(plane, session_id, "web")
        plane.data_sources.attach(session_id, "web", "orders")

        with pytest.raises(VariableCollisionError) as excinfo:
            plane.data_sources.attach(session_id, "web", "orders-replica")

        assert "ORDERS_USER" in str(excinfo.value)
        assert excinfo.value.origin == "data source 'orders'"
        workload, _ = records.get_workload(plane.db, namespace, "web")
        assert [a.data_source for a in workload.attached_data_sources] == ["orders"]

    @pytest.mark.parametrize(
        "payload",
        [
            ServiceAccountTokenPayload(token="eyJhbGciOi-token"),
            RegistryAuthPayload(config='{"auths": {"registry": {"auth": "c2VjcmV0"}}}'),
        ],
    )
    def test_reserved_credential_types_rejected(
        self, plane: ControlPlane, session_id: str, namespace: str, payload
    ) -> None:
        register_source(plane, "cluster-admin", {"token": "ADMIN_TOKEN"}, payload=payload)
        deploy(plane, session_id, "web")

        with pytest.raises(SecurityRejectionError) as excinfo:
            plane.data_sources.attach(session_id, "web", "cluster-admin")

        assert "eyJhbGciOi-token" not in str(excinfo.value)
        assert "c2VjcmV0" not in str(excinfo.value)
        assert _credential_copies(plane, namespace) == []

    def test_mapping_key_missing_from_credential(self, plane: ControlPlane, session_id: str, namespace: str) -> None:
        register_source(plane, "orders", {"username": "ORDERS_USER", "host": "ORDERS_HOST"})
        deploy(plane, session_id, "web")

        with pytest.raises(PreconditionError, match="host") as excinfo:
            plane.data_sources.attach(session_id, "web", "orders")

        assert "platform administrator" in str(excinfo.value)
        assert _workload_attachments(plane, namespace) == []
        assert _credential_copies(plane, namespace) == []

    def test_opaque_credentials_are_copyable(self, plane: ControlPlane, session_id: str, namespace: str) -> None:
        register_source(
            plane, "s3-bucket", {"access_key": "AWS_ACCESS_KEY_ID"}, kind="s3", payload=OpaquePayload(data={"access_key": "AKIA"})
        )
        deploy(plane, session_id, "web")
        plane.data_sources.attach(session_id, "web", "s3-bucket")
        assert records.find_credential(plane.db, namespace, "iaf-ds-s3-bucket") is not None

    def test_missing_workload_or_source(self, plane: ControlPlane, session_id: str) -> None:
        register_source(plane, "orders", ORDERS_MAPPING)
        with pytest.raises(NotFoundError, match="workload 'web'"):
            plane.data_sources.attach(session_id, "web", "orders")
        deploy(plane, session_id, "web")
        with pytest.raises(NotFoundError, match="data source 'nope'"):
            plane.data_sources.attach(session_id, "web", "nope")

    def test_preexisting_copy_from_partial_attempt_is_reused(
        self, plane: ControlPlane, session_id: str, namespace: str
    ) -> None:
        register_source(plane, "orders", ORDERS_MAPPING)
        deploy(plane, session_id, "web")
        original = records.find_credential(plane.db, plane.settings.system_namespace, "orders-creds")
        records.create_credential(
            plane.db,
            CredentialObject(
                name="iaf-ds-orders",
                namespace=namespace,
                labels=managed_labels(**{DATA_SOURCE_LABEL: "orders"}),
                payload=original.payload,
            ),
        )

        plane.data_sources.attach(session_id, "web", "orders")

        assert len(_credential_copies(plane, namespace)) == 1
        workload, _ = records.get_workload(plane.db, namespace, "web")
        assert len(workload.attached_data_sources) == 1

    def test_truncated_name_collision_is_an_error(
        self, plane: ControlPlane, session_id: str, namespace: str
    ) -> None:
        stem = "warehouse-" + "x" * 50
        first, second = stem + "-alpha", stem + "-beta"
        assert data_source_credential_name(first) == data_source_credential_name(second)
        register_source(plane, first, {"username": "ALPHA_USER"})
        register_source(plane, second, {"username": "BETA_USER"})
        deploy(plane, session_id, "web")
        plane.data_sources.attach(session_id, "web", first)

        with pytest.raises(PreconditionError, match="truncated"):
            plane.data_sources.attach(session_id, "web", second)

        workload, _ = records.get_workload(plane.db, namespace, "web")
        assert [a.data_source for a in workload.attached_data_sources] == [first]
        (copy,) = _credential_copies(plane, namespace)
        assert copy.labels[DATA_SOURCE_LABEL] == first

    def test_copy_removed_when_recording_fails(
        self, plane: ControlPlane, session_id: str, namespace: str, monkeypatch
    ) -> None:
        register_source(plane, "orders", ORDERS_MAPPING)
        deploy(plane, session_id, "web")

        def conflict(*args, **kwargs):
            raise ConflictError("workload 'web' was modified concurrently")

        monkeypatch.setattr(records, "save_workload", conflict)
        with pytest.raises(ConflictError):
            plane.data_sources.attach(session_id, "web", "orders")
        assert _credential_copies(plane, namespace) == []

    def test_copy_deleted_with_workload(self, plane: ControlPlane, session_id: str, namespace: str) -> None:
        register_source(plane, "orders", ORDERS_MAPPING)
        deploy(plane, session_id, "web")
        plane.data_sources.attach(session_id, "web", "orders")

        plane.workloads.delete(session_id, "web")

        assert _credential_copies(plane, namespace) == []

    def test_attach_is_audited_without_secrets(
        self, plane: ControlPlane, session_id: str, namespace: str, caplog
    ) -> None:
        register_source(plane, "orders", ORDERS_MAPPING)
        deploy(plane, session_id, "web")

        with caplog.at_level("INFO", logger="iaf.audit"):
            plane.data_sources.attach(session_id, "web", "orders")

        (line,) = [r.getMessage() for r in caplog.records if "data_source_attached" in r.getMessage()]
        assert f"namespace={namespace}" in line
        assert "data_source=orders" in line and "workload=web" in line
        assert "s3cr3t-value" not in caplog.text
