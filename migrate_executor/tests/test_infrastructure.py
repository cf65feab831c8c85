import unittest

from migrate_executor.azure_migrate.errors import AuthError, RemoteApiError
from migrate_executor.infrastructure import InfrastructureCache, TopologyResolver
from migrate_executor.infrastructure.strategies import ResolutionContext, Strategy, first_match
from migrate_executor.tests.fakes import (
    CACHE_SA_ID,
    CONTAINER,
    FABRIC,
    POLICY_ID,
    RUN_AS_ID,
    SITE_ID,
    VAULT,
    FakeOperations,
    remote_item,
)


class FirstMatchTests(unittest.TestCase):
    def setUp(self):
        self.ctx = ResolutionContext(operations=FakeOperations())

    def test_first_non_empty_answer_wins(self):
        seen = []

        def empty(ctx):
            seen.append("empty")
            return None

        def found(ctx):
            seen.append("found")
            return "answer"

        def never(ctx):
            seen.append("never")
            return "late"

        chain = [Strategy("empty", empty), Strategy("found", found), Strategy("never", never)]
        self.assertEqual(first_match(chain, self.ctx, "test"), "answer")
        self.assertEqual(seen, ["empty", "found"])

    def test_remote_failure_moves_to_next_strategy(self):
        def broken(ctx):
            raise RemoteApiError(500, "boom")

        chain = [Strategy("broken", broken), Strategy("fallback", lambda ctx: "fallback")]
        self.assertEqual(first_match(chain, self.ctx, "test"), "fallback")

    def test_auth_failure_propagates(self):
        def unauthorized(ctx):
            raise AuthError()

        chain = [Strategy("unauthorized", unauthorized), Strategy("fallback", lambda ctx: "fallback")]
        with self.assertRaises(AuthError):
            first_match(chain, self.ctx, "test")

    def test_exhausted_chain_returns_none(self):
        self.assertIsNone(first_match([Strategy("none", lambda ctx: None)], self.ctx, "test"))


class TopologyResolverTests(unittest.TestCase):
    def setUp(self):
        self.ops = FakeOperations()

    def test_resolves_full_topology(self):
        topology = TopologyResolver(self.ops).resolve()

        self.assertEqual(topology.vault_name, VAULT)
        self.assertEqual(topology.fabric_name, FABRIC)
        self.assertEqual(topology.container_name, CONTAINER)
        self.assertEqual(topology.policy_id, POLICY_ID)
        self.assertEqual(topology.vmware_site_id, SITE_ID)
        self.assertEqual(topology.data_mover_run_as_account_id, RUN_AS_ID)
        self.assertEqual(topology.snapshot_run_as_account_id, RUN_AS_ID)
        self.assertEqual(topology.cache_storage_account_id, CACHE_SA_ID)
        self.assertEqual(topology.cache_storage_account_sas_secret_name, "migratecache01-cacheSas")
        self.assertEqual(topology.target_region, "eastus")
        self.assertTrue(topology.is_provisioning_ready)

    def test_vault_prefers_migrate_in_name(self):
        self.ops.vaults = [{"name": "backup-rsv", "location": "eastus"}, {"name": VAULT, "location": "eastus"}]
        self.assertEqual(TopologyResolver(self.ops).resolve().vault_name, VAULT)

    def test_missing_vault_or_container_yields_none(self):
        self.ops.vaults = []
        self.assertIsNone(TopologyResolver(self.ops).resolve())

        ops = FakeOperations()
        ops.containers = []
        self.assertIsNone(TopologyResolver(ops).resolve())

    def test_no_policy_is_returned_but_not_provisioning_ready(self):
        self.ops.container_mappings = []
        topology = TopologyResolver(self.ops).resolve()

        self.assertEqual(topology.policy_id, "")
        self.assertFalse(topology.is_provisioning_ready)
        self.assertEqual(self.ops.count("create_default_policy"), 1)
        # Region falls back to the vault location
        self.assertEqual(topology.target_region, "eastus")

    def test_cache_storage_from_existing_migration_item(self):
        self.ops.migration_items[VAULT] = [remote_item("vm1", "vm1", disksToInclude=[{
            "logStorageAccountId": "/subscriptions/s/storageAccounts/existingcache",
            "logStorageAccountSasSecretName": "existing-sas",
        }], targetLocation="westeurope")]

        topology = TopologyResolver(self.ops).resolve()

        self.assertEqual(topology.cache_storage_account_id, "/subscriptions/s/storageAccounts/existingcache")
        self.assertEqual(topology.cache_storage_account_sas_secret_name, "existing-sas")
        self.assertEqual(topology.target_region, "westeurope")
        # Migration items are listed once per pass
        self.assertEqual(self.ops.count("list_migration_items"), 1)

    def test_custom_chain_replaces_default(self):
        resolver = TopologyResolver(self.ops, vault_strategies=[Strategy("pinned", lambda ctx: ctx.vaults[-1])])
        self.ops.vaults = [{"name": "other-vault"}, {"name": "pinned-vault"}]
        self.assertEqual(resolver.resolve().vault_name, "pinned-vault")

    def test_staging_storage_by_region(self):
        resolver = TopologyResolver(self.ops)
        self.assertEqual(resolver.find_staging_storage("East US"), CACHE_SA_ID)
        self.assertIsNone(resolver.find_staging_storage("northeurope"))


class InfrastructureCacheTests(unittest.TestCase):
    def setUp(self):
        self.ops = FakeOperations()
        self.cache = InfrastructureCache(TopologyResolver(self.ops).resolve)

    def test_snapshot_is_reused_until_invalidated(self):
        first = self.cache.get()
        second = self.cache.get()

        self.assertIs(first, second)
        self.assertEqual(self.ops.count("list_vaults"), 1)

        self.cache.invalidate()
        self.assertFalse(self.cache.is_cached)
        self.cache.get()
        self.assertEqual(self.ops.count("list_vaults"), 2)

    def test_unresolvable_topology_is_retried(self):
        self.ops.vaults = []
        self.assertIsNone(self.cache.get())
        self.assertIsNone(self.cache.get())
        self.assertEqual(self.ops.count("list_vaults"), 2)

    def test_rebuild_replaces_snapshot(self):
        first = self.cache.get()
        rebuilt = self.cache.rebuild()
        self.assertIsNot(first, rebuilt)
        self.assertIs(self.cache.get(), rebuilt)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
