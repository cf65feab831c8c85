"""In-memory stand-ins for the dashboard store and the Azure management APIs."""

import copy
import threading
from typing import Dict, List, Optional

from migrate_executor.azure_migrate import endpoints
from migrate_executor.executor import MigrateExecutor
from migrate_executor.models import AzureConfig
from migrate_executor.status import is_terminal
from migrate_executor.utils import GIB

SUBSCRIPTION = "sub-1"
RESOURCE_GROUP = "rg-migrate"
VAULT = "proj-MigrateVault-123"
FABRIC = "proj-vmwarefabric"
CONTAINER = "proj-container"
SITE_ID = (f"/subscriptions/{SUBSCRIPTION}/resourceGroups/{RESOURCE_GROUP}"
           f"/providers/Microsoft.OffAzure/VMwareSites/proj-site")
POLICY_ID = (f"{endpoints.vault(SUBSCRIPTION, RESOURCE_GROUP, VAULT)}"
             f"/replicationPolicies/migrateproj-policy")
RUN_AS_ID = f"{SITE_ID}/runasaccounts/vcenter-account"
CACHE_SA_ID = (f"/subscriptions/{SUBSCRIPTION}/resourceGroups/{RESOURCE_GROUP}"
               f"/providers/Microsoft.Storage/storageAccounts/migratecache01")
WEST_SA_ID = (f"/subscriptions/{SUBSCRIPTION}/resourceGroups/{RESOURCE_GROUP}"
              f"/providers/Microsoft.Storage/storageAccounts/westdata")

CONFIGURED = AzureConfig(
    tenant_id="tenant",
    client_id="client",
    client_secret="secret",
    subscription_id=SUBSCRIPTION,
    resource_group=RESOURCE_GROUP,
)


def remote_item(name: str, machine_name: str, migration_state: str = "Replicating",
                vault: str = VAULT, test_migrate_state: str = "None", **provider_details) -> Dict:
    """A raw replicationMigrationItems entry as ARM returns it."""
    return {
        "id": endpoints.migration_item(SUBSCRIPTION, RESOURCE_GROUP, vault, FABRIC, CONTAINER, name),
        "name": name,
        "properties": {
            "machineName": machine_name,
            "migrationState": migration_state,
            "health": "Normal",
            "testMigrateState": test_migrate_state,
            "allowedOperations": ["TestMigrate", "Migrate", "DisableMigration"],
            "providerSpecificDetails": {
                "instanceType": "VMwareCbt",
                "targetLocation": "eastus",
                "vmNics": [{"nicId": "nic-0", "isPrimaryNic": "true"}],
                **provider_details,
            },
        },
    }


def inventory_machine(name: str, disk_sizes: List) -> Dict:
    machine_id = f"{SITE_ID}/machines/{name}"
    return {
        "id": machine_id,
        "name": name,
        "display_name": name,
        "os_type": "windowsguest",
        "ip_addresses": [],
        "disks": [
            {"disk_id": f"{name}-disk-{i}", "name": f"Hard disk {i + 1}",
             "size_bytes": int(size) if size else None}
            for i, size in enumerate(disk_sizes)
        ],
    }


class FakeOperations:
    """Site Recovery world with one vault, one VMware fabric and one container."""

    def __init__(self):
        self.adapter = None
        self.subscription_id = SUBSCRIPTION
        self.resource_group = RESOURCE_GROUP
        self.migrate_project_name = None
        self.calls: List[tuple] = []

        self.vaults = [{"name": VAULT, "location": "eastus", "id": endpoints.vault(SUBSCRIPTION, RESOURCE_GROUP, VAULT)}]
        self.fabrics = [{
            "name": FABRIC,
            "properties": {"customDetails": {"instanceType": "VMwareV2", "vmwareSiteId": SITE_ID}},
        }]
        self.containers = [{"name": CONTAINER}]
        self.container_mappings = [{
            "name": "mapping",
            "properties": {"policyId": POLICY_ID, "providerSpecificDetails": {"targetLocation": "eastus"}},
        }]
        self.run_as_accounts = [{
            "id": RUN_AS_ID,
            "name": "vcenter-account",
            "properties": {"credentialType": "VMwareFabric", "displayName": "vcenter"},
        }]
        self.storage_accounts = [
            {"id": CACHE_SA_ID, "name": "migratecache01", "location": "eastus"},
            {"id": WEST_SA_ID, "name": "westdata", "location": "westus"},
        ]
        self.migration_items: Dict[str, List[Dict]] = {VAULT: []}
        self.recovery_points = [{"id": "rp-new", "properties": {"recoveryPointTime": "2026-01-02T00:00:00Z"}}]
        self.jobs = []
        self.events = []
        self.fail_enable: Dict[str, Exception] = {}

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def _record(self, name: str, *args):
        self.calls.append((name,) + args)

    # Topology

    def list_vaults(self):
        self._record("list_vaults")
        return list(self.vaults)

    def list_fabrics(self, vault_name):
        self._record("list_fabrics", vault_name)
        return list(self.fabrics)

    def list_containers(self, vault_name, fabric_name):
        self._record("list_containers", vault_name, fabric_name)
        return list(self.containers)

    def list_container_mappings(self, vault_name, fabric_name, container_name):
        self._record("list_container_mappings", vault_name, fabric_name, container_name)
        return list(self.container_mappings)

    def list_vault_container_mappings(self, vault_name):
        self._record("list_vault_container_mappings", vault_name)
        return list(self.container_mappings)

    def list_policies(self, vault_name):
        self._record("list_policies", vault_name)
        return []

    def create_default_policy(self, vault_name):
        self._record("create_default_policy", vault_name)
        return None

    def create_policy_mapping(self, vault_name, fabric_name, container_name, policy_id):
        self._record("create_policy_mapping", vault_name, fabric_name, container_name, policy_id)
        return None

    def list_run_as_accounts(self, vmware_site_id):
        self._record("list_run_as_accounts", vmware_site_id)
        return list(self.run_as_accounts)

    def list_migrate_projects(self):
        self._record("list_migrate_projects")
        return []

    def list_solutions(self, project_name):
        self._record("list_solutions", project_name)
        return []

    def list_storage_accounts(self):
        self._record("list_storage_accounts")
        return list(self.storage_accounts)

    def get_storage_account_region(self, storage_account_id):
        self._record("get_storage_account_region", storage_account_id)
        for account in self.storage_accounts:
            if account["id"].lower() == storage_account_id.lower():
                return account["location"]
        return None

    def get_resource_group_region(self, resource_group_id):
        self._record("get_resource_group_region", resource_group_id)
        return "eastus"

    # Migration items

    def list_migration_items(self, vault_name):
        self._record("list_migration_items", vault_name)
        return copy.deepcopy(self.migration_items.get(vault_name, []))

    def _find(self, vault_name, item_name) -> Optional[Dict]:
        for raw in self.migration_items.get(vault_name, []):
            if raw["name"] == item_name:
                return raw
        return None

    def get_migration_item(self, vault_name, fabric_name, container_name, item_name):
        self._record("get_migration_item", vault_name, item_name)
        raw = self._find(vault_name, item_name)
        return copy.deepcopy(raw) if raw else None

    def enable_migration(self, vault_name, fabric_name, container_name, item_name, policy_id, provider_details):
        self._record("enable_migration", vault_name, item_name, policy_id, provider_details)
        if item_name in self.fail_enable:
            raise self.fail_enable[item_name]
        raw = remote_item(item_name, provider_details["targetVmName"], "EnableMigrationInProgress", vault_name)
        self.migration_items.setdefault(vault_name, []).append(raw)
        return copy.deepcopy(raw)

    def list_recovery_points(self, vault_name, fabric_name, container_name, item_name):
        self._record("list_recovery_points", vault_name, item_name)
        return list(self.recovery_points)

    def test_migrate(self, vault_name, fabric_name, container_name, item_name, network_id, recovery_point_id,
                     vm_nics=None, os_upgrade_version=None):
        self._record("test_migrate", item_name, network_id, recovery_point_id, vm_nics)
        return None

    def test_migrate_cleanup(self, vault_name, fabric_name, container_name, item_name, comments=None):
        self._record("test_migrate_cleanup", item_name, comments)
        return None

    def migrate(self, vault_name, fabric_name, container_name, item_name, perform_shutdown=True):
        self._record("migrate", item_name, perform_shutdown)
        return None

    def delete_migration_item(self, vault_name, fabric_name, container_name, item_name):
        self._record("delete_migration_item", vault_name, item_name)
        raw = self._find(vault_name, item_name)
        if raw:
            self.migration_items[vault_name].remove(raw)
        return None

    def resync(self, vault_name, fabric_name, container_name, item_name):
        self._record("resync", item_name)
        return None

    # Jobs and events

    def list_jobs(self, vault_name):
        self._record("list_jobs", vault_name)
        return list(self.jobs)

    def restart_job(self, vault_name, job_id):
        self._record("restart_job", vault_name, job_id)
        return {"name": f"{job_id}-restarted"}

    def list_events(self, vault_name, since_iso):
        self._record("list_events", vault_name, since_iso)
        return list(self.events)


class FakeInventory:
    def __init__(self, machines: Optional[List[Dict]] = None):
        self.machines = {m["id"]: m for m in machines or []}

    def list_discovered_machines(self, vmware_site_id):
        return [{"id": m["id"], "name": m["name"], "display_name": m["display_name"]}
                for m in self.machines.values()]

    def get_machine_details(self, machine_id):
        return copy.deepcopy(self.machines.get(machine_id))


class RecordingLoop:
    """Reconciliation loop that only counts start requests."""

    def __init__(self):
        self.starts = 0

    def start(self) -> bool:
        self.starts += 1
        return True

    def stop(self, timeout=None):
        pass

    def is_running(self) -> bool:
        return False


class InMemoryStore:
    """Dashboard tables held in dicts, replacing the PostgREST calls."""

    def __init__(self, *args, azure_config: AzureConfig = CONFIGURED, **kwargs):
        self.items: Dict[str, Dict] = {}
        self.groups: Dict[str, Dict] = {}
        self.machines: Dict[str, Dict] = {}
        self.activities: List[Dict] = []
        self.job_updates: List[Dict] = []
        self.azure_config = azure_config
        self._sequence = 0
        self._store_lock = threading.RLock()
        super().__init__(*args, **kwargs)

    def log(self, message, level="INFO"):
        pass

    def get_azure_config(self):
        return self.azure_config

    def get_pending_jobs(self, job_types=None):
        return []

    def update_job_status(self, job_id, status, details=None, error=None):
        self.job_updates.append({"id": job_id, "status": status, "details": details, "error": error})
        return True

    def _rows(self, active_only=False):
        with self._store_lock:
            rows = [copy.deepcopy(r) for r in self.items.values()
                    if not (active_only and is_terminal(r.get("status")))]
        return sorted(rows, key=lambda r: r["created_at"], reverse=True)

    def get_replication_items(self, active_only=False):
        return self._rows(active_only)

    def get_replication_item(self, item_id):
        row = self.items.get(item_id)
        return copy.deepcopy(row) if row else None

    def find_active_item(self, machine_id, source_server_id=None):
        for row in self._rows(active_only=True):
            if row["machine_id"] == machine_id:
                return row
            if source_server_id and row.get("source_server_id") == source_server_id:
                return row
        return None

    def find_items_by_remote_id(self, remote_id):
        rows = [r for r in self._rows(active_only=True)
                if (r.get("azure_protected_item_id") or "").lower() == remote_id.lower()]
        return sorted(rows, key=lambda r: (r["created_at"], r["id"]))

    def create_replication_item(self, row):
        with self._store_lock:
            self._sequence += 1
            item_id = f"item-{self._sequence}"
            stamp = f"2026-01-01T00:00:{self._sequence:02d}+00:00"
            self.items[item_id] = {**copy.deepcopy(row), "id": item_id, "created_at": stamp, "updated_at": stamp}
            return copy.deepcopy(self.items[item_id])

    def update_replication_item(self, item_id, fields):
        with self._store_lock:
            if item_id not in self.items:
                return False
            self.items[item_id].update(copy.deepcopy(fields))
            return True

    def delete_replication_item(self, item_id):
        with self._store_lock:
            return self.items.pop(item_id, None) is not None

    def get_group(self, group_id):
        return copy.deepcopy(self.groups.get(group_id))

    def get_group_machines(self, group):
        return [copy.deepcopy(self.machines[mid]) for mid in group.get("machine_ids") or [] if mid in self.machines]

    def update_group_status(self, group_id, status):
        self.groups[group_id]["status"] = status
        return True

    def log_activity(self, activity_type, action, title, description="", status="success",
                     entity_type=None, entity_id=None, metadata=None):
        self.activities.append({"type": activity_type, "action": action, "title": title, "status": status,
                                "entity_id": entity_id, "metadata": metadata})
        return True

    # Test setup helpers

    def add_machine(self, machine_id: str, name: str, azure_migrate_id: Optional[str] = None) -> Dict:
        self.machines[machine_id] = {"id": machine_id, "name": name, "display_name": name,
                                     "azure_migrate_id": azure_migrate_id}
        return self.machines[machine_id]

    def add_group(self, group_id: str, machine_ids: List[str]) -> Dict:
        self.groups[group_id] = {"id": group_id, "name": f"Group {group_id}", "machine_ids": list(machine_ids),
                                 "status": "assessed"}
        return self.groups[group_id]

    def add_item(self, machine_id: str, machine_name: str, status: str, remote_name: Optional[str] = None,
                 **fields) -> Dict:
        row = {
            "machine_id": machine_id,
            "machine_name": machine_name,
            "status": status,
            "health_status": "None",
            "test_migrate_status": "None",
            "target_resource_group": "rg-target",
            "target_vnet_id": "vnet-target",
            "target_subnet_name": "default",
        }
        if remote_name:
            row.update({
                "vault_name": VAULT,
                "fabric_name": FABRIC,
                "container_name": CONTAINER,
                "azure_protected_item_id": endpoints.migration_item(SUBSCRIPTION, RESOURCE_GROUP, VAULT, FABRIC,
                                                                    CONTAINER, remote_name),
            })
        row.update(fields)
        return self.create_replication_item(row)


class FakeExecutor(InMemoryStore, MigrateExecutor):
    """MigrateExecutor wired to the in-memory store and fake Azure clients."""


def make_executor(operations: FakeOperations = None, inventory: FakeInventory = None,
                  azure_config: AzureConfig = CONFIGURED) -> FakeExecutor:
    return FakeExecutor(
        operations=operations or FakeOperations(),
        inventory=inventory or FakeInventory(),
        loop=RecordingLoop(),
        azure_config=azure_config,
    )


def gib(count: int) -> int:
    return count * GIB

