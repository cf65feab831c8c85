import unittest
from unittest import mock

from migrate_executor.azure_migrate import SiteRecoveryOperations
from migrate_executor.azure_migrate.errors import ConfigurationError
from migrate_executor.models import AzureConfig
from migrate_executor.tests.fakes import (
    CONFIGURED,
    RESOURCE_GROUP,
    SUBSCRIPTION,
    FakeExecutor,
    FakeInventory,
    FakeOperations,
    RecordingLoop,
    inventory_machine,
    make_executor,
)


class ExecutorTests(unittest.TestCase):
    def test_discover_infrastructure(self):
        executor = make_executor()

        result = executor.discover_infrastructure()

        self.assertTrue(result["configured"])
        self.assertTrue(result["provisioning_ready"])

    def test_discover_without_configuration(self):
        executor = make_executor(azure_config=AzureConfig())
        self.assertEqual(executor.discover_infrastructure(), {"configured": False, "message": "Azure not configured"})

    def test_discover_without_vault(self):
        ops = FakeOperations()
        ops.vaults = []
        result = make_executor(ops).discover_infrastructure()
        self.assertIsNone(result["infrastructure"])
        self.assertIn("not found", result["message"])

    def test_discover_job_rebuilds_cache(self):
        ops = FakeOperations()
        executor = make_executor(ops)
        executor.discover_infrastructure()

        executor.execute_job({"id": "job-1", "job_type": "discover_migration_infrastructure"})

        self.assertEqual(ops.count("list_vaults"), 2)
        self.assertEqual(executor.job_updates[-1]["status"], "completed")
        self.assertTrue(executor.job_updates[-1]["details"]["configured"])

    def test_unknown_job_type_fails(self):
        executor = make_executor()
        executor.execute_job({"id": "job-1", "job_type": "firmware_update"})
        self.assertEqual(executor.job_updates[-1]["status"], "failed")

    def test_reconcile_job(self):
        executor = make_executor()
        executor.execute_job({"id": "job-1", "job_type": "reconcile_replication"})
        update = executor.job_updates[-1]
        self.assertEqual(update["status"], "completed")
        self.assertEqual(update["details"]["items_materialized"], 0)

    def test_discovered_machines_come_from_site(self):
        executor = make_executor(inventory=FakeInventory([inventory_machine("vm1", [1])]))
        self.assertEqual([m["name"] for m in executor.list_discovered_machines()], ["vm1"])

    def test_stats(self):
        executor = make_executor(azure_config=AzureConfig())
        for name, status in (("a", "Protected"), ("b", "Enabling"), ("c", "InitialReplication"),
                             ("d", "Failed"), ("e", "FailedOver")):
            executor.add_item(f"m-{name}", name, status)

        self.assertEqual(executor.get_stats(), {"total": 5, "protected": 1, "syncing": 2, "failed": 1,
                                                "failed_over": 1})

    def test_clear_cache_keeps_injected_clients(self):
        ops = FakeOperations()
        executor = make_executor(ops)
        executor.cache.get()

        executor.clear_infrastructure_cache()

        self.assertFalse(executor.cache.is_cached)
        self.assertIs(executor.get_operations(), ops)


class AzureClientTests(unittest.TestCase):
    def test_clients_built_from_config(self):
        executor = FakeExecutor(loop=RecordingLoop(), azure_config=CONFIGURED)

        with mock.patch("migrate_executor.executor.ClientSecretCredential") as credential:
            operations = executor.get_operations()

        credential.assert_called_once_with("tenant", "client", "secret")
        self.assertIsInstance(operations, SiteRecoveryOperations)
        self.assertEqual((operations.subscription_id, operations.resource_group), (SUBSCRIPTION, RESOURCE_GROUP))
        self.assertIs(executor.get_inventory().adapter, operations.adapter)

        executor.clear_infrastructure_cache()
        self.assertIsNone(executor._operations)

    def test_unconfigured_clients(self):
        executor = FakeExecutor(loop=RecordingLoop(), azure_config=AzureConfig())
        with self.assertRaises(ConfigurationError):
            executor.get_operations()


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
