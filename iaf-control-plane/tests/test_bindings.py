from __future__ import annotations

import pytest

from conftest import deploy, report_ready
from iaf_contracts import SERVICE_ENV_VAR_NAMES, SERVICE_ENV_VARS, CredentialKeyRef, EnvVar
from iaf_control_plane import records
from iaf_control_plane.bindings import MISSING_RESOURCE_MESSAGE, READY_MESSAGE
from iaf_control_plane.database import VersionConflict
from iaf_control_plane.errors import (
    AlreadyExistsError,
    ConflictError,
    NameUnavailableError,
    NotFoundError,
    PreconditionError,
    RetriesExhaustedError,
    VariableCollisionError,
)
from iaf_control_plane.service import ControlPlane


def _workload(plane: ControlPlane, namespace: str, name: str):
    workload, _ = records.get_workload(plane.db, namespace, name)
    return workload


def _bound(plane: ControlPlane, namespace: str, service: str):
    service_record, _ = records.get_service(plane.db, namespace, service)
    return service_record.status.bound_workloads


def test_full_lifecycle(plane: ControlPlane, session_id: str, namespace: str) -> None:
    """Provision, wait for Ready, bind, unbind and deprovision one database."""
    provisioned = plane.bindings.provision(session_id, "mydb", "postgres", "micro")
    assert provisioned["phase"] == "Provisioning"
    assert plane.db.find(records.DATABASE_CLUSTER_KIND, namespace, "mydb") is not None
    assert plane.db.find(records.NETWORK_POLICY_KIND, namespace, "mydb-netpol") is not None

    pending = plane.bindings.status(session_id, "mydb")
    assert pending["phase"] == "Provisioning"
    assert "connection_env_vars" not in pending

    report_ready(plane, namespace, "mydb")
    ready = plane.bindings.status(session_id, "mydb")
    assert ready["phase"] == "Ready"
    assert ready["message"] == READY_MESSAGE
    assert ready["connection_env_vars"] == SERVICE_ENV_VAR_NAMES
    assert "mydb-app" not in str(ready)

    deploy(plane, session_id, "myapp", env={"LOG_LEVEL": "debug"})
    before = _workload(plane, namespace, "myapp").env

    bound = plane.bindings.bind(session_id, "mydb", "myapp")
    assert bound["injected_env_vars"] == SERVICE_ENV_VAR_NAMES
    workload = _workload(plane, namespace, "myapp")
    injected = [e for e in workload.env if e.is_reference]
    assert [e.name for e in injected] == SERVICE_ENV_VAR_NAMES
    assert all(e.value is None for e in injected)
    assert {e.name: e.secret_ref for e in injected} == {
        var: CredentialKeyRef(name="mydb-app", key=key) for var, key in SERVICE_ENV_VARS.items()
    }
    assert _bound(plane, namespace, "mydb") == ["myapp"]

    unbound = plane.bindings.unbind(session_id, "mydb", "myapp")
    assert unbound["removed_env_vars"] == SERVICE_ENV_VAR_NAMES
    workload = _workload(plane, namespace, "myapp")
    assert workload.env == before
    assert workload.bound_services == []
    assert _bound(plane, namespace, "mydb") == []

    gone = plane.bindings.deprovision(session_id, "mydb")
    assert gone["phase"] == "Deleting"
    assert plane.db.find(records.MANAGED_SERVICE_KIND, namespace, "mydb") is None
    assert plane.db.find(records.DATABASE_CLUSTER_KIND, namespace, "mydb") is None
    assert plane.db.find(records.NETWORK_POLICY_KIND, namespace, "mydb-netpol") is None


class TestProvision:
    @pytest.mark.parametrize("type_,plan", [("mysql", "micro"), ("postgres", "large"), ("postgres", "")])
    def test_unsupported_type_or_plan(self, plane: ControlPlane, session_id: str, namespace: str, type_, plan) -> None:
        with pytest.raises(PreconditionError, match="supported"):
            plane.bindings.provision(session_id, "mydb", type_, plan)
        assert plane.db.list(records.MANAGED_SERVICE_KIND, namespace) == []

    def test_same_name_twice_in_session(self, plane: ControlPlane, session_id: str) -> None:
        plane.bindings.provision(session_id, "mydb", "postgres", "micro")
        with pytest.raises(AlreadyExistsError):
            plane.bindings.provision(session_id, "mydb", "postgres", "small")

    def test_name_held_by_another_session(self, plane: ControlPlane, session_id: str) -> None:
        plane.bindings.provision(session_id, "mydb", "postgres", "micro")
        other = plane.sessions.register()
        with pytest.raises(NameUnavailableError):
            plane.bindings.provision(other.id, "mydb", "postgres", "micro")

    def test_ha_plan_sizes_the_cluster(self, plane: ControlPlane, session_id: str, namespace: str) -> None:
        plane.bindings.provision(session_id, "bigdb", "postgres", "ha")
        cluster = plane.db.get(records.DATABASE_CLUSTER_KIND, namespace, "bigdb")
        assert cluster.body["spec"]["instances"] == 3
        assert cluster.owner.kind == records.MANAGED_SERVICE_KIND


class TestStatus:
    def test_missing_cluster_is_failed(self, plane: ControlPlane, session_id: str, namespace: str) -> None:
        plane.bindings.provision(session_id, "mydb", "postgres", "micro")
        plane.db.delete(records.DATABASE_CLUSTER_KIND, namespace, "mydb")

        status = plane.bindings.status(session_id, "mydb")

        assert status["phase"] == "Failed"
        assert status["message"] == MISSING_RESOURCE_MESSAGE

    def test_ready_can_regress(self, plane: ControlPlane, session_id: str, namespace: str, ready_service: str) -> None:
        report_ready(plane, namespace, ready_service, ready="False")
        status = plane.bindings.status(session_id, ready_service)
        assert status["phase"] == "Provisioning"
        service, _ = records.get_service(plane.db, namespace, ready_service)
        assert service.status.credential_ref is None

    def test_unknown_service(self, plane: ControlPlane, session_id: str) -> None:
        with pytest.raises(NotFoundError, match="list_services"):
            plane.bindings.status(session_id, "nope")

    def test_list_services(self, plane: ControlPlane, session_id: str, namespace: str, ready_service: str) -> None:
        plane.bindings.provision(session_id, "otherdb", "postgres", "small")
        deploy(plane, session_id, "web")
        plane.bindings.bind(session_id, ready_service, "web")

        listed = plane.bindings.list_services(session_id)

        assert listed["total"] == 2
        by_name = {s["name"]: s for s in listed["services"]}
        assert by_name["mydb"]["phase"] == "Ready"
        assert by_name["mydb"]["bound_workloads"] == ["web"]
        assert by_name["otherdb"] == {
            "name": "otherdb",
            "type": "postgres",
            "plan": "small",
            "phase": "Provisioning",
            "bound_workloads": [],
        }

    def test_operator_report_updates_the_listing(self, plane: ControlPlane, session_id: str, namespace: str) -> None:
        plane.bindings.provision(session_id, "mydb", "postgres", "micro")
        report_ready(plane, namespace, "mydb")

        (listed,) = plane.bindings.list_services(session_id)["services"]
        assert listed["phase"] == "Ready"
        service, _ = records.get_service(plane.db, namespace, "mydb")
        assert service.status.credential_ref == "mydb-app"


class TestBind:
    @pytest.mark.parametrize("plan", ["micro", "small", "ha"])
    def test_not_ready_is_refused(self, plane: ControlPlane, session_id: str, namespace: str, plan: str) -> None:
        plane.bindings.provision(session_id, "mydb", "postgres", plan)
        deploy(plane, session_id, "web")

        with pytest.raises(PreconditionError) as excinfo:
            plane.bindings.bind(session_id, "mydb", "web")

        assert excinfo.value.details["phase"] == "Provisioning"
        assert _workload(plane, namespace, "web").env == []

    def test_ready_after_report_without_polling_status(
        self, plane: ControlPlane, session_id: str, namespace: str
    ) -> None:
        plane.bindings.provision(session_id, "mydb", "postgres", "micro")
        report_ready(plane, namespace, "mydb")
        deploy(plane, session_id, "web")

        assert plane.bindings.bind(session_id, "mydb", "web")["bound"] is True
        assert _bound(plane, namespace, "mydb") == ["web"]

    def test_refused_once_cluster_stops_being_ready(
        self, plane: ControlPlane, session_id: str, namespace: str, ready_service
    ) -> None:
        """Bind reads the cluster itself rather than trusting the last polled phase."""
        cluster = plane.db.get(records.DATABASE_CLUSTER_KIND, namespace, ready_service)
        cluster.body["status"] = {"conditions": [{"type": "Ready", "status": "False"}]}
        plane.db.update(
            records.DATABASE_CLUSTER_KIND, namespace, ready_service, cluster.body, expected_version=cluster.version
        )
        deploy(plane, session_id, "web")

        with pytest.raises(PreconditionError) as excinfo:
            plane.bindings.bind(session_id, ready_service, "web")

        assert excinfo.value.details["phase"] == "Provisioning"
        assert _workload(plane, namespace, "web").env == []
        assert _bound(plane, namespace, ready_service) == []

    def test_duplicate_bind_is_an_error(self, plane: ControlPlane, session_id: str, namespace: str, ready_service) -> None:
        deploy(plane, session_id, "web")
        plane.bindings.bind(session_id, ready_service, "web")

        with pytest.raises(PreconditionError, match="already bound"):
            plane.bindings.bind(session_id, ready_service, "web")

        assert len(_workload(plane, namespace, "web").env) == len(SERVICE_ENV_VAR_NAMES)
        assert _bound(plane, namespace, ready_service) == ["web"]

    def test_collision_with_plain_variable(self, plane: ControlPlane, session_id: str, namespace: str, ready_service) -> None:
        deploy(plane, session_id, "web", env={"PGHOST": "localhost"})

        with pytest.raises(VariableCollisionError) as excinfo:
            plane.bindings.bind(session_id, ready_service, "web")

        assert excinfo.value.variable == "PGHOST"
        assert _workload(plane, namespace, "web").env == [EnvVar(name="PGHOST", value="localhost")]
        assert _bound(plane, namespace, ready_service) == []

    def test_two_services_cannot_both_bind(self, plane: ControlPlane, session_id: str, namespace: str, ready_service) -> None:
        plane.bindings.provision(session_id, "seconddb", "postgres", "micro")
        report_ready(plane, namespace, "seconddb")
        plane.bindings.status(session_id, "seconddb")
        deploy(plane, session_id, "web")
        plane.bindings.bind(session_id, ready_service, "web")

        with pytest.raises(VariableCollisionError) as excinfo:
            plane.bindings.bind(session_id, "seconddb", "web")
        assert excinfo.value.origin == "service 'mydb'"

    def test_bound_list_survives_a_concurrent_writer(
        self, plane: ControlPlane, session_id: str, namespace: str, ready_service, monkeypatch
    ) -> None:
        deploy(plane, session_id, "web")
        real_update = plane.db.update
        raced = {"done": False}

        def racing_update(kind, ns, name, body, *, expected_version):
            if kind == records.MANAGED_SERVICE_KIND and not raced["done"]:
                raced["done"] = True
                current = plane.db.get(kind, ns, name)
                current.body["status"]["bound_workloads"].append("api")
                real_update(kind, ns, name, current.body, expected_version=current.version)
            return real_update(kind, ns, name, body, expected_version=expected_version)

        monkeypatch.setattr(plane.db, "update", racing_update)
        plane.bindings.bind(session_id, ready_service, "web")

        assert _bound(plane, namespace, ready_service) == ["api", "web"]

    def test_exhausted_retries_revert_the_workload(
        self, plane: ControlPlane, session_id: str, namespace: str, ready_service, monkeypatch
    ) -> None:
        deploy(plane, session_id, "web", env={"LOG_LEVEL": "debug"})
        real_update = plane.db.update

        def conflicting_update(kind, ns, name, body, *, expected_version):
            if kind == records.MANAGED_SERVICE_KIND:
                raise VersionConflict(kind, ns, name, expected_version)
            return real_update(kind, ns, name, body, expected_version=expected_version)

        monkeypatch.setattr(plane.db, "update", conflicting_update)
        with pytest.raises(RetriesExhaustedError) as excinfo:
            plane.bindings.bind(session_id, ready_service, "web")
        assert excinfo.value.details["attempts"] == plane.settings.bind_retry_attempts

        workload = _workload(plane, namespace, "web")
        assert workload.env == [EnvVar(name="LOG_LEVEL", value="debug")]
        assert workload.bound_services == []
        assert _bound(plane, namespace, ready_service) == []

    def test_unknown_workload(self, plane: ControlPlane, session_id: str, ready_service) -> None:
        with pytest.raises(NotFoundError, match="list_workloads"):
            plane.bindings.bind(session_id, ready_service, "ghost")


class TestUnbind:
    def test_back_to_back_workloads(self, plane: ControlPlane, session_id: str, namespace: str, ready_service) -> None:
        deploy(plane, session_id, "api")
        deploy(plane, session_id, "web")
        plane.bindings.bind(session_id, ready_service, "api")
        plane.bindings.bind(session_id, ready_service, "web")
        assert _bound(plane, namespace, ready_service) == ["api", "web"]

        plane.bindings.unbind(session_id, ready_service, "api")
        assert _bound(plane, namespace, ready_service) == ["web"]
        assert _workload(plane, namespace, "api").env == []
        assert len(_workload(plane, namespace, "web").env) == len(SERVICE_ENV_VAR_NAMES)

        plane.bindings.unbind(session_id, ready_service, "web")
        assert _bound(plane, namespace, ready_service) == []

    def test_not_bound(self, plane: ControlPlane, session_id: str, ready_service) -> None:
        deploy(plane, session_id, "web")
        with pytest.raises(PreconditionError, match="not bound"):
            plane.bindings.unbind(session_id, ready_service, "web")

    def test_plain_variables_are_kept(self, plane: ControlPlane, session_id: str, namespace: str, ready_service) -> None:
        deploy(plane, session_id, "web", env={"FEATURE_FLAG": "on"})
        plane.bindings.bind(session_id, ready_service, "web")
        deploy(plane, session_id, "web", env={"FEATURE_FLAG": "off", "EXTRA": "1"})

        plane.bindings.unbind(session_id, ready_service, "web")

        assert _workload(plane, namespace, "web").env == [
            EnvVar(name="FEATURE_FLAG", value="off"),
            EnvVar(name="EXTRA", value="1"),
        ]


class TestDeprovision:
    def test_blocked_while_bound(self, plane: ControlPlane, session_id: str, namespace: str, ready_service) -> None:
        deploy(plane, session_id, "web")
        plane.bindings.bind(session_id, ready_service, "web")

        with pytest.raises(PreconditionError) as excinfo:
            plane.bindings.deprovision(session_id, ready_service)

        assert excinfo.value.details["bound_workloads"] == ["web"]
        assert "unbind_service" in str(excinfo.value)
        assert plane.db.find(records.MANAGED_SERVICE_KIND, namespace, ready_service) is not None

    def test_allowed_after_workload_deleted(self, plane: ControlPlane, session_id: str, namespace: str, ready_service) -> None:
        deploy(plane, session_id, "web")
        plane.bindings.bind(session_id, ready_service, "web")
        plane.workloads.delete(session_id, "web")

        assert _bound(plane, namespace, ready_service) == []
        plane.bindings.deprovision(session_id, ready_service)

    def test_bind_racing_the_guard(self, plane: ControlPlane, session_id: str, namespace: str, monkeypatch) -> None:
        """A change landing between the guard check and the delete aborts the delete."""
        plane.bindings.provision(session_id, "mydb", "postgres", "micro")
        real_get_service = records.get_service

        def racing_get_service(db, ns, name):
            service, version = real_get_service(db, ns, name)
            current = db.get(records.MANAGED_SERVICE_KIND, ns, name)
            current.body["status"]["bound_workloads"] = ["web"]
            db.update(records.MANAGED_SERVICE_KIND, ns, name, current.body, expected_version=version)
            return service, version

        monkeypatch.setattr(records, "get_service", racing_get_service)
        with pytest.raises(ConflictError):
            plane.bindings.deprovision(session_id, "mydb")
        assert plane.db.find(records.MANAGED_SERVICE_KIND, namespace, "mydb") is not None

    def test_deprovision_is_audited(self, plane: ControlPlane, session_id: str, caplog) -> None:
        plane.bindings.provision(session_id, "mydb", "postgres", "micro")
        with caplog.at_level("INFO", logger="iaf.audit"):
            plane.bindings.deprovision(session_id, "mydb")
        assert "event=service_deprovisioned" in caplog.text
