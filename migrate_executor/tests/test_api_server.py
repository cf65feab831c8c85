import unittest
from unittest import mock

from fastapi.testclient import TestClient

from migrate_executor.api_server import create_app
from migrate_executor.azure_migrate.errors import RemoteApiError
from migrate_executor.models import AzureConfig
from migrate_executor.tests.fakes import (
    VAULT,
    FakeInventory,
    FakeOperations,
    gib,
    inventory_machine,
    make_executor,
    remote_item,
)

TARGET = {
    "target_region": "eastus",
    "target_resource_group": "rg-target",
    "target_vnet_id": "vnet-target",
    "target_subnet_name": "default",
    "target_vm_size": "Standard_D2s_v3",
}


class ReplicationApiTests(unittest.TestCase):
    def setUp(self):
        self.ops = FakeOperations()
        machine = inventory_machine("vm1", [gib(40)])
        self.executor = make_executor(self.ops, FakeInventory([machine]))
        self.executor.add_machine("m-vm1", "vm1", machine["id"])
        self.executor.add_group("g1", ["m-vm1"])
        self.client = TestClient(create_app(self.executor))

    def _replicating(self, name="vm2"):
        item = self.executor.add_item(f"m-{name}", name, "Replicating", remote_name=name)
        self.ops.migration_items[VAULT].append(remote_item(name, name, "Replicating"))
        return item

    def test_health(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")

    def test_infrastructure(self):
        body = self.client.get("/api/replication/infrastructure").json()

        self.assertTrue(body["configured"])
        self.assertTrue(body["provisioning_ready"])
        self.assertEqual(body["infrastructure"]["vault_name"], VAULT)

        self.assertEqual(self.client.post("/api/replication/infrastructure/clear-cache").json(), {"success": True})
        self.assertFalse(self.executor.cache.is_cached)

    def test_enable_and_list(self):
        response = self.client.post("/api/replication/enable", json={"group_id": "g1", "target_config": TARGET})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["errors"], [])
        self.assertEqual(body["items"][0]["status"], "Enabling")

        items = self.client.get("/api/replication/items").json()
        self.assertEqual([i["machine_name"] for i in items], ["vm1"])
        self.assertEqual(items[0]["remote_status"]["migration_state"], "EnableMigrationInProgress")

    def test_enable_validation(self):
        response = self.client.post("/api/replication/enable", json={"group_id": "g1"})
        self.assertEqual(response.status_code, 422)

    def test_enable_unknown_group(self):
        response = self.client.post("/api/replication/enable", json={"group_id": "nope", "target_config": TARGET})
        self.assertEqual(response.status_code, 400)

    def test_enable_without_azure_config(self):
        self.executor.azure_config = AzureConfig()
        response = self.client.post("/api/replication/enable", json={"group_id": "g1", "target_config": TARGET})

        self.assertEqual(response.status_code, 412)
        self.assertEqual(response.json()["error_code"], "NOT_CONFIGURED")

    def test_missing_item(self):
        response = self.client.get("/api/replication/items/missing")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["detail"], "Replication item missing not found")

    def test_internal_key_error_is_server_error(self):
        client = TestClient(create_app(self.executor), raise_server_exceptions=False)
        with mock.patch.object(self.executor, "get_by_id", side_effect=KeyError("status")):
            response = client.get("/api/replication/items/item-1")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["detail"], "Internal server error")

    def test_precondition_failure(self):
        item = self.executor.add_item("m-x", "vmx", "Cancelled", remote_name="vmx")

        response = self.client.post(f"/api/replication/items/{item['id']}/migrate", json={})

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["current_status"], "Cancelled")

    def test_remote_failure(self):
        item = self._replicating()
        with mock.patch.object(self.ops, "migrate", side_effect=RemoteApiError(500, "InternalError")):
            response = self.client.post(f"/api/replication/items/{item['id']}/migrate")

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["remote_status"], 500)

    def test_lifecycle_routes(self):
        item = self._replicating()
        base = f"/api/replication/items/{item['id']}"

        self.assertEqual(self.client.post(f"{base}/test-migrate", json={"network_id": "vnet-test"}).status_code, 200)
        self.assertEqual(self.client.get(f"{base}/details").json()["local_item"]["machine_name"], "vm2")
        self.assertEqual(self.client.post(f"{base}/resync").json(), {"job_id": "resync-started"})
        self.assertEqual(self.client.post(f"{base}/cancel").json(), {"cancelled": True})
        self.assertEqual(self.client.delete(f"{base}?disable_remote=false").json(), {"deleted": True})
        self.assertEqual(self.client.get(base).status_code, 404)

    def test_stats(self):
        self._replicating("vm2")
        self.executor.add_item("m-vm3", "vm3", "AzureEnableFailed")

        stats = self.client.get("/api/replication/stats").json()

        self.assertEqual(stats["total"], 2)
        self.assertEqual(stats["failed"], 1)

    def test_jobs(self):
        self.ops.jobs = [{"id": "j1", "name": "job-1", "properties": {"state": "Succeeded"}}]

        self.assertEqual(self.client.get("/api/replication/jobs").json()[0]["name"], "job-1")
        response = self.client.post("/api/replication/jobs/job-1/restart")
        self.assertEqual(response.json(), {"job_id": "job-1-restarted"})

    def test_discovered_machines(self):
        machines = self.client.get("/api/replication/discovered-machines").json()
        self.assertEqual([m["name"] for m in machines], ["vm1"])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
