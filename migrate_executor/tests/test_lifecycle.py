import unittest
from unittest import mock

from migrate_executor.azure_migrate.errors import ConfigurationError, ItemNotFoundError, PreconditionError, RemoteApiError
from migrate_executor.tests.fakes import VAULT, FakeOperations, make_executor, remote_item


class LifecycleTests(unittest.TestCase):
    def setUp(self):
        self.ops = FakeOperations()
        self.executor = make_executor(self.ops)
        self.lifecycle = self.executor.lifecycle

    def _replicating(self, name="vm1", **remote):
        item = self.executor.add_item(f"m-{name}", name, "Replicating", remote_name=name)
        self.ops.migration_items[VAULT].append(remote_item(name, name, "Replicating", **remote))
        return item

    def test_migrate_from_terminal_status_is_rejected_without_remote_call(self):
        item = self.executor.add_item("m1", "vm1", "Cancelled", remote_name="vm1")

        with self.assertRaises(PreconditionError) as ctx:
            self.lifecycle.migrate(item["id"])

        self.assertEqual(ctx.exception.current_status, "Cancelled")
        self.assertIn("Replicating", ctx.exception.required_statuses)
        self.assertEqual(self.ops.calls, [])

    def test_guard_sees_fresh_remote_state(self):
        item = self.executor.add_item("m1", "vm1", "Enabling", remote_name="vm1")
        self.ops.migration_items[VAULT].append(remote_item("vm1", "vm1", "Replicating"))

        result = self.lifecycle.migrate(item["id"], perform_shutdown=False)

        self.assertEqual(result, {"job_id": f"mig-{item['id']}"})
        self.assertIn(("migrate", "vm1", False), self.ops.calls)
        self.assertEqual(self.executor.items[item["id"]]["status"], "MigrationInProgress")

    def test_test_migrate_uses_latest_recovery_point_and_subnet(self):
        item = self._replicating()

        result = self.lifecycle.test_migrate(item["id"], subnet_name="test-subnet")

        call = next(c for c in self.ops.calls if c[0] == "test_migrate")
        _, item_name, network_id, recovery_point_id, vm_nics = call
        self.assertEqual(item_name, "vm1")
        self.assertEqual(network_id, "/subscriptions/sub-1/resourceGroups/rg-target"
                                     "/providers/Microsoft.Network/virtualNetworks/vnet-target")
        self.assertEqual(recovery_point_id, "rp-new")
        self.assertEqual(vm_nics, [{"nicId": "nic-0", "isPrimaryNic": "true",
                                    "targetSubnetName": "test-subnet", "isSelectedForMigration": "true"}])
        self.assertEqual(result["job_id"], f"tm-{item['id']}")
        self.assertEqual(self.executor.items[item["id"]]["test_migrate_status"], "InProgress")

    def test_test_migrate_requires_recovery_point(self):
        item = self._replicating()
        self.ops.recovery_points = []

        with self.assertRaises(ValueError):
            self.lifecycle.test_migrate(item["id"], network_id="vnet-test")
        self.assertEqual(self.ops.count("test_migrate"), 0)

    def test_item_without_remote_correlation(self):
        item = self.executor.add_item("m1", "vm1", "Replicating")
        with self.assertRaises(ValueError):
            self.lifecycle.migrate(item["id"])

    def test_cleanup_requires_successful_test_migration(self):
        item = self._replicating()
        with self.assertRaises(PreconditionError):
            self.lifecycle.test_migrate_cleanup(item["id"])

    def test_cleanup_after_successful_test_migration(self):
        item = self._replicating(test_migrate_state="TestMigrationSucceeded")

        result = self.lifecycle.test_migrate_cleanup(item["id"], comments="done")

        self.assertEqual(result["job_id"], f"tmc-{item['id']}")
        self.assertIn(("test_migrate_cleanup", "vm1", "done"), self.ops.calls)
        self.assertEqual(self.executor.items[item["id"]]["test_migrate_status"], "CleanupInProgress")

    def test_complete_migration_removes_remote_item(self):
        item = self._replicating()

        self.assertTrue(self.lifecycle.complete_migration(item["id"])["success"])

        self.assertEqual(self.ops.migration_items[VAULT], [])
        self.assertEqual(self.executor.items[item["id"]]["status"], "MigrationCompleted")

    def test_resync(self):
        item = self._replicating()

        self.assertEqual(self.lifecycle.resync(item["id"]), {"job_id": "resync-started"})

        stored = self.executor.items[item["id"]]
        self.assertEqual(stored["status"], "Resyncing")
        self.assertEqual(stored["health_status"], "None")

    def test_cancel(self):
        item = self._replicating()

        self.assertEqual(self.lifecycle.cancel(item["id"]), {"cancelled": True})
        self.assertEqual(self.executor.items[item["id"]]["status"], "Cancelled")
        self.assertEqual(self.ops.count("delete_migration_item"), 1)

        with self.assertRaises(PreconditionError):
            self.lifecycle.cancel(item["id"])

    def test_cancel_survives_remote_failure(self):
        item = self._replicating()
        with mock.patch.object(self.ops, "delete_migration_item", side_effect=RemoteApiError(500, "boom")):
            self.lifecycle.cancel(item["id"])
        self.assertEqual(self.executor.items[item["id"]]["status"], "Cancelled")

    def test_delete(self):
        kept_remote = self._replicating("vm1")
        removed_remote = self._replicating("vm2")

        self.assertEqual(self.lifecycle.delete(kept_remote["id"], disable_remote=False), {"deleted": True})
        self.assertEqual(self.lifecycle.delete(removed_remote["id"]), {"deleted": True})

        self.assertEqual(self.executor.items, {})
        self.assertEqual([raw["name"] for raw in self.ops.migration_items[VAULT]], ["vm1"])

    def test_missing_item(self):
        with self.assertRaises(ItemNotFoundError) as ctx:
            self.lifecycle.get_by_id("missing")
        self.assertEqual(ctx.exception.item_id, "missing")

    def test_get_by_id_overlays_remote(self):
        item = self._replicating()
        fetched = self.lifecycle.get_by_id(item["id"])
        self.assertEqual(fetched["remote_status"]["migration_state"], "Replicating")

    def test_refresh_failure_falls_back_to_local(self):
        item = self._replicating()
        with mock.patch.object(self.ops, "get_migration_item", side_effect=RemoteApiError(503, "busy")):
            fetched = self.lifecycle.get_by_id(item["id"])
        self.assertEqual(fetched["status"], "Replicating")
        self.assertIsNone(fetched["remote_status"])

    def test_detailed_status_filters_events(self):
        item = self._replicating(targetVmSize="Standard_D2s_v3",
                                 protectedDisks=[{"capacityInBytes": 1024 ** 3}])
        self.ops.events = [
            {"properties": {"affectedObjectFriendlyName": "vm1", "eventType": "AgentHealth",
                            "description": "Replication delayed", "severity": "Warning"}},
            {"properties": {"affectedObjectFriendlyName": "other", "eventType": "AgentHealth"}},
        ]

        status = self.lifecycle.get_detailed_status(item["id"])

        self.assertEqual(status["local_item"]["machine_name"], "vm1")
        details = status["azure_details"]
        self.assertEqual(details["migration_status"]["migration_state"], "Replicating")
        self.assertEqual(details["target_settings"]["target_vm_size"], "Standard_D2s_v3")
        self.assertEqual(details["server_details"]["total_disk_size_gb"], 1.0)
        self.assertEqual([e["description"] for e in details["events"]], ["Replication delayed"])
        self.assertTrue(details["vm_nics"][0]["is_primary_nic"])

    def test_jobs(self):
        self.ops.jobs = [{"id": "j1", "name": "job-1", "properties": {"state": "Failed", "scenarioName": "TestMigrate"}}]

        jobs = self.lifecycle.get_jobs()

        self.assertEqual(jobs[0]["state"], "Failed")
        self.assertEqual(self.lifecycle.restart_job("job-1"), {"job_id": "job-1-restarted"})
        self.assertIn(("restart_job", VAULT, "job-1"), self.ops.calls)

    def test_restart_job_without_infrastructure(self):
        self.ops.vaults = []
        with self.assertRaises(ConfigurationError):
            self.lifecycle.restart_job("job-1")

    def test_job_wrapper_reports_precondition(self):
        item = self.executor.add_item("m1", "vm1", "Cancelled", remote_name="vm1")

        self.executor.execute_job({"id": "job-1", "job_type": "migrate", "details": {"item_id": item["id"]}})

        update = self.executor.job_updates[-1]
        self.assertEqual(update["status"], "failed")
        self.assertEqual(update["details"]["current_status"], "Cancelled")

    def test_job_wrapper_passes_arguments(self):
        item = self._replicating()

        self.executor.execute_job({"id": "job-2", "job_type": "migrate",
                                   "details": {"item_id": item["id"], "perform_shutdown": False}})

        self.assertEqual(self.executor.job_updates[-1]["status"], "completed")
        self.assertIn(("migrate", "vm1", False), self.ops.calls)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
