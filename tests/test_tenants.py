"""Tests for the tenant provisioning loop."""

from conftest import make_spec
from k8s_mock import MockResourceStore

from workshop_operator.driver import ConvergenceDriver
from workshop_operator.generator import ClusterLayout
from workshop_operator.policy import GroupBinding, PolicyRule
from workshop_operator.store import ResourceKind
from workshop_operator.tenants import AggregateState, build_policy, provision_tenants


class TestAggregateState:
    """Tests for AggregateState."""

    def test_namespace_list_has_no_stray_separators(self) -> None:
        aggregate = AggregateState()
        assert aggregate.namespace_list == ""

        aggregate.add_tenant("user1", "proj1", "h")
        assert aggregate.namespace_list == "proj1"

        aggregate.add_tenant("user2", "proj2", "h")
        assert aggregate.namespace_list == "proj1,proj2"


class TestProvisionTenants:
    """Tests for provision_tenants."""

    def test_three_tenants(self, store: MockResourceStore, layout: ClusterLayout) -> None:
        spec = make_spec(number_of_users=3)

        aggregate, signal = provision_tenants(spec, ConvergenceDriver(store), layout, "hash")

        assert not signal.should_requeue
        assert aggregate.namespace_list == "proj1,proj2,proj3"
        assert aggregate.secret_data == {
            "accounts.user1.password": "hash",
            "accounts.user2.password": "hash",
            "accounts.user3.password": "hash",
        }
        assert aggregate.config_data == {
            "accounts.user1": "login",
            "accounts.user2": "login",
            "accounts.user3": "login",
        }
        assert store.names(ResourceKind.APP_PROJECT) == ["proj1", "proj2", "proj3"]
        assert store.names(ResourceKind.NAMESPACE) == ["proj1", "proj2", "proj3"]

    def test_policy_has_five_lines_per_tenant_in_order(
        self, store: MockResourceStore, layout: ClusterLayout
    ) -> None:
        spec = make_spec(number_of_users=4)

        aggregate, _ = provision_tenants(spec, ConvergenceDriver(store), layout, "hash")

        lines = list(aggregate.policy)
        assert len(lines) == 20
        tenants = [
            line.role.removeprefix("role:") if isinstance(line, PolicyRule) else line.subject
            for line in lines
        ]
        assert tenants == sorted(tenants, key=lambda t: int(t.removeprefix("user")))
        assert all(isinstance(lines[i], GroupBinding) for i in range(4, 20, 5))

    def test_matches_offline_policy(self, store: MockResourceStore, layout: ClusterLayout) -> None:
        spec = make_spec(number_of_users=2)

        aggregate, _ = provision_tenants(spec, ConvergenceDriver(store), layout, "hash")

        assert aggregate.policy.render() == build_policy(spec, layout).render()

    def test_stops_at_first_failing_tenant(
        self, store: MockResourceStore, layout: ClusterLayout
    ) -> None:
        store.fail("create", ResourceKind.APP_PROJECT, name="proj2")
        spec = make_spec(number_of_users=3)

        aggregate, signal = provision_tenants(spec, ConvergenceDriver(store), layout, "hash")

        assert signal.should_requeue
        assert signal.error is not None
        assert "user2" in signal.reason
        assert aggregate.namespaces == ["proj1"]
        assert store.find(ResourceKind.APP_PROJECT, "proj3", "argocd") is None

    def test_zero_tenants(self, store: MockResourceStore, layout: ClusterLayout) -> None:
        aggregate, signal = provision_tenants(
            make_spec(number_of_users=0), ConvergenceDriver(store), layout, "hash"
        )

        assert not signal.should_requeue
        assert aggregate.namespace_list == ""
        assert len(aggregate.policy) == 0
        assert store.calls == []

    def test_rerun_makes_no_changes(self, store: MockResourceStore, layout: ClusterLayout) -> None:
        spec = make_spec(number_of_users=2)
        driver = ConvergenceDriver(store)
        provision_tenants(spec, driver, layout, "hash")
        driver.reset_stats()

        provision_tenants(spec, driver, layout, "hash")

        assert driver.stats.changed == 0
