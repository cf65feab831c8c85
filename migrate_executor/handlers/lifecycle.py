"""
Lifecycle Handler

Guarded state transitions for a replication item after enablement:
- test_migrate / test_migrate_cleanup: create and remove a test VM
- migrate / complete_migration: cut over and finalize
- resync, cancel, delete
- replication jobs, events and detailed status from the vault
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from migrate_executor import config
from migrate_executor.azure_migrate.errors import ConfigurationError, ItemNotFoundError, MigrateError, PreconditionError
from migrate_executor.azure_migrate.operations import job_reference
from migrate_executor.handlers.base import BaseHandler
from migrate_executor.handlers.enablement import build_network_id
from migrate_executor.models import HealthStatus, RemoteMigrationItem, ReplicationStatus, TestMigrateStatus
from migrate_executor.status import MIGRATABLE_STATUSES, TERMINAL_STATUSES, is_terminal
from migrate_executor.utils import GIB, arm_name

NOT_CONFIGURED_MESSAGE = "Machine does not have Azure replication configured"


class LifecycleHandler(BaseHandler):
    """Handler for per-item migration lifecycle operations"""

    # Lookup and guards

    def _load(self, item_id: str) -> Dict:
        item = self.executor.get_replication_item(item_id)
        if not item:
            raise ItemNotFoundError(item_id)
        return item

    @staticmethod
    def _coordinates(item: Dict) -> Optional[Tuple[str, str, str, str]]:
        if not (item.get("vault_name") and item.get("fabric_name") and item.get("container_name")
                and item.get("azure_protected_item_id")):
            return None
        return (item["vault_name"], item["fabric_name"], item["container_name"],
                arm_name(item["azure_protected_item_id"]))

    def _require_coordinates(self, item: Dict) -> Tuple[str, str, str, str]:
        coords = self._coordinates(item)
        if coords is None:
            raise ValueError(NOT_CONFIGURED_MESSAGE)
        return coords

    def _refresh(self, item: Dict) -> Tuple[Dict, Optional[Dict]]:
        """
        Pull the latest remote state for a non-terminal item.

        Terminal items and items without remote correlation are returned
        unchanged; a failed refresh falls back to the stored record.

        Returns:
            (item, overlay) where overlay is the remote snapshot or None
        """
        coords = self._coordinates(item)
        if is_terminal(item.get("status")) or coords is None:
            return item, None
        try:
            raw = self.executor.get_operations().get_migration_item(*coords)
        except MigrateError as e:
            self.log(f"Could not refresh {item.get('machine_name')} from Azure: {e}", "WARN")
            return item, None
        if not raw:
            return item, None
        remote = RemoteMigrationItem.from_arm(raw)
        return self.executor.reconciliation.apply_remote(item, remote), remote.overlay()

    @staticmethod
    def _guard(operation: str, item: Dict, allowed: Sequence[str]):
        if item.get("status") not in allowed:
            raise PreconditionError(operation, item.get("status"), allowed)

    def _activity(self, item: Dict, action: str, title: str, description: str = "", status: str = "info"):
        self.executor.log_activity("replication", action, title, description=description, status=status,
                                   entity_type="replication", entity_id=item.get("id"))

    # Read operations

    def get_by_id(self, item_id: str) -> Dict:
        item, overlay = self._refresh(self._load(item_id))
        return {**item, "remote_status": overlay}

    def get_detailed_status(self, item_id: str) -> Dict:
        """Local summary plus the migration item details and recent events Azure Migrate shows."""
        item = self._load(item_id)
        local = {
            "id": item.get("id"),
            "machine_name": item.get("machine_name"),
            "source_server_id": item.get("source_server_id"),
            "status": item.get("status"),
            "health_status": item.get("health_status"),
            "health_errors": item.get("health_errors") or [],
            "replication_progress": item.get("replication_progress"),
            "last_sync_time": item.get("last_sync_time"),
            "target_config": {
                "target_resource_group": item.get("target_resource_group"),
                "target_vnet_id": item.get("target_vnet_id"),
                "target_subnet_name": item.get("target_subnet_name"),
                "target_vm_size": item.get("target_vm_size"),
                "target_storage_account_id": item.get("target_storage_account_id"),
                "availability_zone": item.get("availability_zone"),
                "license_type": item.get("license_type"),
            },
            "azure_site_recovery": {
                "vault_name": item.get("vault_name"),
                "fabric_name": item.get("fabric_name"),
                "container_name": item.get("container_name"),
                "protected_item_id": item.get("azure_protected_item_id"),
            },
            "created_at": item.get("created_at"),
            "updated_at": item.get("updated_at"),
        }

        coords = self._coordinates(item)
        if coords is None:
            topology = self.executor.cache.get()
            if topology is None:
                return {"local_item": local, "azure_details": None,
                        "message": "Azure Site Recovery infrastructure not available"}
            coords = (topology.vault_name, topology.fabric_name, topology.container_name,
                      item.get("machine_name", ""))

        operations = self.executor.get_operations()
        raw = operations.get_migration_item(*coords)
        if not raw:
            return {"local_item": local, "azure_details": None, "message": "Migration item not found in Azure"}

        events = self._events(coords[0], raw.get("name") or coords[3], item.get("machine_name"))
        return {"local_item": local, "azure_details": self._details(raw, events)}

    def _events(self, vault_name: str, item_name: str, machine_name: Optional[str]) -> List[Dict]:
        since = (datetime.now(timezone.utc) - timedelta(hours=config.EVENTS_LOOKBACK_HOURS))
        since_iso = since.strftime("%Y-%m-%dT%H:%M:%SZ")
        try:
            raw_events = self.executor.get_operations().list_events(vault_name, since_iso)
        except MigrateError as e:
            self.log(f"Could not fetch replication events: {e}", "WARN")
            return []

        names = {n for n in (item_name, machine_name) if n}
        events = []
        for event in raw_events:
            props = event.get("properties") or {}
            if props.get("affectedObjectFriendlyName") not in names:
                continue
            health_errors = props.get("healthErrors") or [{}]
            events.append({
                "event_name": props.get("eventType"),
                "description": props.get("description") or health_errors[0].get("errorMessage") or "No description",
                "timestamp": props.get("timeOfOccurrence"),
                "severity": props.get("severity"),
            })
            if len(events) >= config.EVENTS_LIMIT:
                break
        return events

    @staticmethod
    def _details(raw: Dict, events: List[Dict]) -> Dict:
        props = raw.get("properties") or {}
        provider = props.get("providerSpecificDetails") or {}
        disks = provider.get("protectedDisks") or []
        total_bytes = sum(d.get("capacityInBytes") or 0 for d in disks)
        machine_path = (provider.get("vmwareMachineId") or "").split("/")
        current_job = props.get("currentJob")

        return {
            "migration_status": {
                "migration_state": props.get("migrationState"),
                "migration_state_description": props.get("migrationStateDescription"),
                "replication_health": props.get("health"),
                "test_migrate_state": props.get("testMigrateState") or "None",
                "test_migrate_state_description": (props.get("testMigrateStateDescription")
                                                   or "Test migration not performed"),
                "configuration_issues": props.get("healthErrors") or [],
                "last_sync_time": provider.get("lastRecoveryPointReceived"),
                "resync_required": str(provider.get("resyncRequired", "")).lower() == "true",
                "resync_progress_percentage": provider.get("resyncProgressPercentage"),
                "initial_replication_progress_percentage": provider.get("initialSeedingProgressPercentage"),
                "allowed_operations": props.get("allowedOperations") or [],
            },
            "server_details": {
                "site": machine_path[-3] if len(machine_path) >= 3 else "Unknown",
                "vm_id": machine_path[-1] or "Unknown",
                "operating_system": provider.get("osType") or "Unknown",
                "firmware_type": provider.get("firmwareType") or "BIOS",
                "disk_count": len(disks),
                "total_disk_size_gb": round(total_bytes / GIB, 2),
            },
            "target_settings": {
                "target_resource_group": arm_name(provider.get("targetResourceGroupId")),
                "target_vm_name": provider.get("targetVmName"),
                "target_vm_size": provider.get("targetVmSize"),
                "target_network": arm_name(provider.get("targetNetworkId")),
                "target_subnet": provider.get("targetSubnetName"),
                "target_availability_zone": provider.get("targetAvailabilityZone") or "None",
                "license_type": provider.get("licenseType"),
                "boot_diagnostics_storage_account": arm_name(provider.get("targetBootDiagnosticsStorageAccountId")),
            },
            "current_job": {
                "job_id": current_job.get("jobId"),
                "job_name": current_job.get("jobName"),
                "state": current_job.get("state"),
                "start_time": current_job.get("startTime"),
            } if current_job else None,
            "events": events,
            "allowed_operations": props.get("allowedOperations") or [],
            "vm_nics": [
                {
                    "nic_id": nic.get("nicId"),
                    "is_primary_nic": str(nic.get("isPrimaryNic")).lower() == "true",
                    "target_nic_name": nic.get("targetNicName"),
                    "target_subnet_name": nic.get("targetSubnetName"),
                    "is_selected_for_migration": str(nic.get("isSelectedForMigration")).lower() == "true",
                }
                for nic in provider.get("vmNics") or []
            ],
        }

    def get_jobs(self) -> List[Dict]:
        topology = self.executor.cache.get()
        if topology is None:
            return []
        jobs = []
        for job in self.executor.get_operations().list_jobs(topology.vault_name):
            props = job.get("properties") or {}
            jobs.append({
                "id": job.get("id"),
                "name": job.get("name"),
                "scenario_name": props.get("scenarioName"),
                "friendly_name": props.get("friendlyName"),
                "state": props.get("state"),
                "state_description": props.get("stateDescription"),
                "start_time": props.get("startTime"),
                "end_time": props.get("endTime"),
                "target_object_id": props.get("targetObjectId"),
                "target_object_name": props.get("targetObjectName"),
            })
        return jobs

    def restart_job(self, job_id: str) -> Dict:
        topology = self.executor.cache.get()
        if topology is None:
            raise ConfigurationError("Azure Site Recovery infrastructure not configured")
        result = self.executor.get_operations().restart_job(topology.vault_name, job_id)
        self.executor.log_activity("replication", "job_restarted", f"Restarted replication job {job_id}",
                                   status="info", entity_type="job", entity_id=job_id)
        return {"job_id": job_reference(result) or job_id}

    # Transitions

    def test_migrate(self, item_id: str, network_id: Optional[str] = None,
                     subnet_name: Optional[str] = None) -> Dict:
        item, _ = self._refresh(self._load(item_id))
        self._guard("test migrate", item, MIGRATABLE_STATUSES)
        coords = self._require_coordinates(item)

        network = network_id or item.get("target_vnet_id")
        if not network:
            raise ValueError("No test network specified and no target VNet configured")
        operations = self.executor.get_operations()
        network = build_network_id(network, operations.subscription_id, item.get("target_resource_group") or "")

        points = operations.list_recovery_points(*coords)
        if not points:
            raise ValueError("No recovery points available for test migration. "
                             "Wait for initial replication to complete.")

        vm_nics = None
        if subnet_name:
            raw = operations.get_migration_item(*coords)
            nics = RemoteMigrationItem.from_arm(raw).vm_nics if raw else []
            vm_nics = [
                {
                    "nicId": nic.get("nicId"),
                    "isPrimaryNic": "true" if str(nic.get("isPrimaryNic")).lower() == "true" else "false",
                    "targetSubnetName": subnet_name,
                    "isSelectedForMigration": "true",
                }
                for nic in nics
            ] or None

        result = operations.test_migrate(*coords, network_id=network, recovery_point_id=points[0]["id"],
                                         vm_nics=vm_nics)
        self.executor.update_replication_item(item_id, {"test_migrate_status": TestMigrateStatus.IN_PROGRESS.value})
        self._activity(item, "test_migrate_started", f"Test migration started for {item.get('machine_name')}",
                       "Creating test VM in Azure...")
        return {"job_id": job_reference(result) or f"tm-{item_id}"}

    def test_migrate_cleanup(self, item_id: str, comments: Optional[str] = None) -> Dict:
        item, _ = self._refresh(self._load(item_id))
        if item.get("test_migrate_status") != TestMigrateStatus.SUCCEEDED.value:
            raise PreconditionError("clean up test migration", item.get("test_migrate_status"),
                                    [TestMigrateStatus.SUCCEEDED.value])
        coords = self._require_coordinates(item)

        result = self.executor.get_operations().test_migrate_cleanup(*coords, comments=comments)
        self.executor.update_replication_item(
            item_id, {"test_migrate_status": TestMigrateStatus.CLEANUP_IN_PROGRESS.value})
        self._activity(item, "test_migrate_cleanup_started",
                       f"Test migration cleanup started for {item.get('machine_name')}",
                       "Cleaning up test VM resources...")
        return {"job_id": job_reference(result) or f"tmc-{item_id}"}

    def migrate(self, item_id: str, perform_shutdown: bool = True) -> Dict:
        item, _ = self._refresh(self._load(item_id))
        self._guard("migrate", item, MIGRATABLE_STATUSES)
        coords = self._require_coordinates(item)

        result = self.executor.get_operations().migrate(*coords, perform_shutdown=perform_shutdown)
        self.executor.update_replication_item(item_id, {"status": ReplicationStatus.MIGRATION_IN_PROGRESS.value})
        self._activity(
            item, "migration_started", f"Migration started for {item.get('machine_name')}",
            "Shutting down source VM and migrating to Azure..." if perform_shutdown
            else "Migrating to Azure without shutting down source...",
        )
        return {"job_id": job_reference(result) or f"mig-{item_id}"}

    def complete_migration(self, item_id: str) -> Dict:
        item, _ = self._refresh(self._load(item_id))
        coords = self._require_coordinates(item)

        result = self.executor.get_operations().delete_migration_item(*coords)
        self.executor.update_replication_item(item_id, {"status": ReplicationStatus.MIGRATION_COMPLETED.value})
        self._activity(item, "migration_completed", f"Migration completed for {item.get('machine_name')}",
                       "VM is now running in Azure", status="success")
        return {"success": True, "job_id": job_reference(result)}

    def resync(self, item_id: str) -> Dict:
        item, _ = self._refresh(self._load(item_id))
        coords = self._require_coordinates(item)

        result = self.executor.get_operations().resync(*coords)
        self.executor.update_replication_item(item_id, {
            "status": ReplicationStatus.RESYNCING.value,
            "health_status": HealthStatus.NONE.value,
        })
        self._activity(item, "resync", f"Resync started for {item.get('machine_name')}",
                       "Resynchronizing replication with Azure...")
        return {"job_id": job_reference(result) or "resync-started"}

    def cancel(self, item_id: str) -> Dict:
        item = self._load(item_id)
        if is_terminal(item.get("status")):
            # Unmapped pass-through statuses count as non-terminal and stay cancellable
            raise PreconditionError("cancel", item.get("status"),
                                    [s.value for s in ReplicationStatus if s.value not in TERMINAL_STATUSES])

        coords = self._coordinates(item)
        if coords:
            try:
                self.executor.get_operations().delete_migration_item(*coords)
            except MigrateError as e:
                self.log(f"Failed to disable Azure migration for {item.get('machine_name')}: {e}", "WARN")

        self.executor.update_replication_item(item_id, {"status": ReplicationStatus.CANCELLED.value})
        self._activity(item, "cancelled", f"Cancelled replication for {item.get('machine_name')}",
                       status="warning")
        return {"cancelled": True}

    def delete(self, item_id: str, disable_remote: bool = True) -> Dict:
        """Remove the local record, disabling the remote migration item first when asked."""
        item = self._load(item_id)
        coords = self._coordinates(item)
        if disable_remote and coords:
            try:
                self.log(f"Disabling Azure migration for {item.get('machine_name')}")
                self.executor.get_operations().delete_migration_item(*coords)
            except MigrateError as e:
                # The local record is removed regardless; remote cleanup can be finished in the portal
                self.log(f"Failed to disable Azure migration: {e}", "WARN")

        deleted = self.executor.delete_replication_item(item_id)
        if deleted:
            self.log(f"Deleted local replication record for {item.get('machine_name')}")
        return {"deleted": deleted}

    # Job wrappers

    def _run_item_job(self, job: Dict, label: str, operation, *arg_keys: str):
        details = job.get('details') or {}
        item_id = details.get('item_id')
        if not item_id:
            self.mark_job_failed(job, "Missing item_id")
            return

        self.mark_job_running(job)
        try:
            kwargs: Dict[str, Any] = {key: details[key] for key in arg_keys if key in details}
            result = operation(item_id, **kwargs)
            self.mark_job_completed(job, details=result)
        except Exception as e:
            self.handle_error(job, e, label)

    def execute_test_migrate(self, job: Dict):
        self._run_item_job(job, "Test migrate", self.test_migrate, "network_id", "subnet_name")

    def execute_test_migrate_cleanup(self, job: Dict):
        self._run_item_job(job, "Test migrate cleanup", self.test_migrate_cleanup, "comments")

    def execute_migrate(self, job: Dict):
        self._run_item_job(job, "Migrate", self.migrate, "perform_shutdown")

    def execute_complete_migration(self, job: Dict):
        self._run_item_job(job, "Complete migration", self.complete_migration)

    def execute_resync(self, job: Dict):
        self._run_item_job(job, "Resync", self.resync)

    def execute_cancel(self, job: Dict):
        self._run_item_job(job, "Cancel replication", self.cancel)

    def execute_restart_job(self, job: Dict):
        details = job.get('details') or {}
        if not details.get('replication_job_id'):
            self.mark_job_failed(job, "Missing replication_job_id")
            return
        self.mark_job_running(job)
        try:
            self.mark_job_completed(job, details=self.restart_job(details['replication_job_id']))
        except Exception as e:
            self.handle_error(job, e, "Restart replication job")
