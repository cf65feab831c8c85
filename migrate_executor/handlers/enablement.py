"""
Enablement Handler

Turns a group of inventory machines plus a target configuration into
VMwareCbt migration items:
- enable_replication: enable replication for every machine in a group
"""

from typing import Any, Dict, List, Optional, Tuple

from migrate_executor.azure_migrate import endpoints
from migrate_executor.azure_migrate.errors import ConfigurationError
from migrate_executor.handlers.base import BaseHandler
from migrate_executor.handlers.disks import resolve_disks
from migrate_executor.models import (
    AzureConfig,
    DiskConfig,
    EnablementResult,
    GroupStatus,
    HealthStatus,
    MachineDiskOverrides,
    ReplicationItem,
    ReplicationStatus,
    TargetConfig,
    TopologyCache,
)
from migrate_executor.utils import arm_name, normalize_region

NOT_DISCOVERED_MESSAGE = (
    "Machine {name} is not discovered in Azure Migrate. "
    "Only Azure Migrate discovered machines can be replicated."
)


def build_network_id(network: str, subscription_id: str, resource_group: str) -> str:
    """Expand a bare virtual network name into a full ARM id."""
    if network.startswith("/subscriptions/"):
        return network
    return (f"{endpoints.resource_group_id(subscription_id, resource_group)}"
            f"/providers/Microsoft.Network/virtualNetworks/{network}")


def build_provider_details(
    topology: TopologyCache,
    target: TargetConfig,
    subscription_id: str,
    machine_name: str,
    inventory_machine_id: str,
    disks: List[DiskConfig],
    storage_account_id: str,
    sas_secret_name: str,
) -> Dict[str, Any]:
    """VMwareCbt providerSpecificDetails for an enable-migration PUT."""
    details: Dict[str, Any] = {
        "instanceType": "VMwareCbt",
        "vmwareMachineId": inventory_machine_id,
        "targetResourceGroupId": endpoints.resource_group_id(subscription_id, target.target_resource_group),
        "targetNetworkId": build_network_id(target.target_vnet_id, subscription_id, target.target_resource_group),
        "targetSubnetName": target.target_subnet_name,
        "targetVmName": machine_name,
        "targetVmSize": target.target_vm_size,
        "licenseType": target.license_type or "NoLicenseType",
        "linuxLicenseType": "NoLicenseType",
        "disksToInclude": [
            disk.to_payload(machine_name, index, storage_account_id, sas_secret_name)
            for index, disk in enumerate(disks)
        ],
        "performAutoResync": "true",
        "performSqlBulkRegistration": "true",
        "targetBootDiagnosticsStorageAccountId": storage_account_id,
        "targetDiskTags": {},
        "targetNicTags": {},
        "targetVmTags": dict(target.tags),
        "targetVmSecurityProfile": {
            "targetVmSecurityType": "None",
            "isTargetVmSecureBootEnabled": "false",
            "isTargetVmTpmEnabled": "false",
        },
        "testNetworkId": "",
        "testSubnetName": "",
    }
    if topology.data_mover_run_as_account_id:
        details["dataMoverRunAsAccountId"] = topology.data_mover_run_as_account_id
    if topology.snapshot_run_as_account_id:
        details["snapshotRunAsAccountId"] = topology.snapshot_run_as_account_id
    if target.availability_zone:
        details["targetAvailabilityZone"] = target.availability_zone
    if target.availability_set_id:
        details["targetAvailabilitySetId"] = target.availability_set_id
    return details


class StagingStorageResolver:
    """
    Picks the cache/staging storage account for one enablement batch.

    Cross-region staging is rejected by the service, so every candidate must
    sit in the target region. Region lookups are memoized for the batch.
    """

    def __init__(self, operations, resolver, topology: TopologyCache, target_region: Optional[str]):
        self.operations = operations
        self.resolver = resolver
        self.topology = topology
        self.target_region = target_region
        self._regions: Dict[str, Optional[str]] = {}
        self._scanned: Optional[str] = None
        self._scan_done = False

    def _in_target_region(self, account_id: str) -> bool:
        if not self.target_region:
            return True
        if account_id not in self._regions:
            self._regions[account_id] = self.operations.get_storage_account_region(account_id)
        return normalize_region(self._regions[account_id]) == normalize_region(self.target_region)

    def _sas_name(self, account_id: str) -> str:
        if account_id == self.topology.cache_storage_account_id and self.topology.cache_storage_account_sas_secret_name:
            return self.topology.cache_storage_account_sas_secret_name
        return f"{arm_name(account_id)}-cacheSas"

    def resolve(self, requested_account_id: Optional[str] = None) -> Tuple[str, str]:
        """
        Returns:
            (storage_account_id, sas_secret_name)

        Raises:
            ValueError: No storage account exists in the target region
        """
        for candidate in (requested_account_id, self.topology.cache_storage_account_id):
            if candidate and self._in_target_region(candidate):
                return candidate, self._sas_name(candidate)

        if not self._scan_done:
            self._scanned = self.resolver.find_staging_storage(self.target_region) if self.target_region else None
            self._scan_done = True
        if self._scanned:
            return self._scanned, self._sas_name(self._scanned)

        raise ValueError(
            f"No cache storage account found in the target region ({self.target_region}). "
            "Create a storage account in the target region or initialize replication infrastructure."
        )


class EnablementHandler(BaseHandler):
    """Handler for enable-replication jobs and requests"""

    def enable_for_group(
        self,
        group_id: str,
        target: TargetConfig,
        machine_disks: Optional[List[MachineDiskOverrides]] = None,
    ) -> EnablementResult:
        """
        Enable replication for every machine in a group.

        Machines are processed one at a time against one topology snapshot;
        a failure on one machine is recorded and the batch continues.

        Raises:
            ValueError: Group missing or empty
            ConfigurationError: Azure not configured or infrastructure not ready
        """
        ex = self.executor

        # Stale run-as account references cause authorization failures on enable
        ex.cache.invalidate()

        group = ex.get_group(group_id)
        if not group:
            raise ValueError(f"Group {group_id} not found")
        machines = ex.get_group_machines(group)
        if not machines:
            raise ValueError("Group has no machines to replicate")

        azure_config = ex.get_azure_config()
        if not azure_config.is_configured:
            raise ConfigurationError("Azure not configured. Please configure Azure settings first.")

        topology = self.require_topology(ready=True)
        operations = ex.get_operations()
        inventory = ex.get_inventory()
        target_region = target.target_region or topology.target_region
        storage = StagingStorageResolver(operations, ex.get_resolver(), topology, target_region)
        overrides = {m.machine_id: m.disks for m in machine_disks or []}

        self.log(f"Enabling replication for group {group.get('name')} ({len(machines)} machines) "
                 f"in vault {topology.vault_name}, target region {target_region}")

        items: List[Dict] = []
        errors: List[str] = []
        success_count = 0
        failed_count = 0

        for machine in machines:
            name = machine.get("display_name") or machine.get("name") or machine["id"]

            try:
                existing = ex.find_active_item(machine["id"], machine.get("azure_migrate_id"))
            except PermissionError:
                raise
            except Exception as e:
                self.log(f"Could not check existing replication for {name}: {e}", "ERROR")
                errors.append(f"{name}: {e}")
                failed_count += 1
                continue
            if existing:
                self.log(f"{name} already has active replication ({existing.get('status')}), skipping")
                items.append(existing)
                continue

            if not machine.get("azure_migrate_id"):
                errors.append(NOT_DISCOVERED_MESSAGE.format(name=name))
                failed_count += 1
                continue

            try:
                item = self._enable_machine(machine, name, target, topology, azure_config, operations, inventory,
                                            storage, overrides.get(machine["id"]))
                items.append(item)
                success_count += 1
            except Exception as e:
                message = str(e)
                self.log(f"Failed to enable replication for {name}: {message}", "ERROR")
                errors.append(f"{name}: {message}")
                failed_count += 1
                failed_item = self._record_failure(machine, name, target, topology, message)
                if failed_item:
                    items.append(failed_item)

        ex.update_group_status(
            group_id,
            GroupStatus.REPLICATING.value if success_count > 0 else GroupStatus.ASSESSED.value,
        )

        description = f"{success_count} machines started replicating"
        if failed_count:
            description += f", {failed_count} failed"
        ex.log_activity(
            "replication",
            "enabled",
            f'Enabled replication for group "{group.get("name")}"',
            description=description + ".",
            status="error" if success_count == 0 else ("warning" if failed_count else "success"),
            entity_type="group",
            entity_id=group_id,
            metadata={
                "machineCount": len(machines),
                "successCount": success_count,
                "failedCount": failed_count,
                "errors": errors or None,
            },
        )

        ex.start_reconciliation()

        message = f"Replication started for {success_count} machine(s)."
        if errors:
            message += f" {len(errors)} failed: {'; '.join(errors)}"
        return EnablementResult(items=items, errors=errors, message=message)

    def _enable_machine(self, machine: Dict, name: str, target: TargetConfig, topology: TopologyCache,
                        azure_config: AzureConfig, operations, inventory, storage: StagingStorageResolver,
                        overrides) -> Dict:
        inventory_id = machine["azure_migrate_id"]
        details = inventory.get_machine_details(inventory_id)
        if details is None:
            raise ValueError(f"Machine not found in Azure Migrate inventory: {arm_name(inventory_id)}")

        disks = resolve_disks(details["disks"], overrides)
        storage_account_id, sas_secret_name = storage.resolve(target.target_storage_account_id)

        provider_details = build_provider_details(
            topology, target, azure_config.subscription_id, name, inventory_id, disks,
            storage_account_id, sas_secret_name,
        )
        item_name = arm_name(inventory_id)
        self.log(f"Submitting VMwareCbt enable for {name} with {len(disks)} disk(s)")
        result = operations.enable_migration(topology.vault_name, topology.fabric_name, topology.container_name,
                                             item_name, topology.policy_id, provider_details)

        remote_id = result.get("id") if isinstance(result, dict) else None
        if not remote_id:
            # Accepted asynchronously; the item id is deterministic
            remote_id = endpoints.migration_item(operations.subscription_id, operations.resource_group,
                                                 topology.vault_name, topology.fabric_name,
                                                 topology.container_name, item_name)

        row = self._item_row(machine, name, target, topology, storage_account_id,
                             azure_protected_item_id=remote_id,
                             status=ReplicationStatus.ENABLING.value,
                             health_status=HealthStatus.NONE.value)
        created = self.executor.create_replication_item(row)
        self.log(f"Replication enabled for {name}")
        return created or row

    def _record_failure(self, machine: Dict, name: str, target: TargetConfig, topology: TopologyCache,
                        message: str) -> Optional[Dict]:
        row = self._item_row(machine, name, target, topology, target.target_storage_account_id or "",
                             status=ReplicationStatus.AZURE_ENABLE_FAILED.value,
                             health_status=HealthStatus.CRITICAL.value,
                             health_errors=[message])
        return self.executor.create_replication_item(row)

    @staticmethod
    def _item_row(machine: Dict, name: str, target: TargetConfig, topology: TopologyCache,
                  storage_account_id: str, **status_fields) -> Dict:
        return ReplicationItem(
            machine_id=machine["id"],
            machine_name=name,
            source_server_id=machine.get("azure_migrate_id") or "",
            vault_name=topology.vault_name,
            fabric_name=topology.fabric_name,
            container_name=topology.container_name,
            target_resource_group=target.target_resource_group,
            target_vnet_id=target.target_vnet_id,
            target_subnet_name=target.target_subnet_name,
            target_vm_size=target.target_vm_size,
            target_storage_account_id=storage_account_id,
            availability_zone=target.availability_zone,
            availability_set_id=target.availability_set_id,
            license_type=target.license_type or "NoLicenseType",
            tags=target.tags,
            replication_progress=0,
            **status_fields,
        ).to_row()

    def execute_enable_replication(self, job: Dict):
        """Job wrapper: details = {group_id, target_config, machine_disks?}"""
        details = job.get('details') or {}
        group_id = details.get('group_id')
        if not group_id or not details.get('target_config'):
            self.mark_job_failed(job, "Missing group_id or target_config")
            return

        self.mark_job_running(job)
        try:
            target = TargetConfig(**details['target_config'])
            machine_disks = [MachineDiskOverrides(**m) for m in details.get('machine_disks') or []]
            result = self.enable_for_group(group_id, target, machine_disks)
            self.mark_job_completed(job, details={
                'message': result.message,
                'item_ids': [item.get('id') for item in result.items if item.get('id')],
                'errors': result.errors,
            })
        except Exception as e:
            self.handle_error(job, e, "Enable replication")
