"""
Pydantic models for replication orchestration.

Local rows are exchanged with PostgREST as plain dicts; these models give
them a typed shape at the edges (creation, API payloads, remote snapshots).
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from migrate_executor.utils import GIB, arm_name


class ReplicationStatus(str, Enum):
    ENABLING = "Enabling"
    INITIAL_REPLICATION = "InitialReplication"
    REPLICATING = "Replicating"
    PROTECTED = "Protected"
    PLANNED_FAILOVER_IN_PROGRESS = "PlannedFailoverInProgress"
    FAILED_OVER = "FailedOver"
    FAILED = "Failed"
    AZURE_ENABLE_FAILED = "AzureEnableFailed"
    CANCELLED = "Cancelled"
    RESYNCING = "Resyncing"
    MIGRATION_IN_PROGRESS = "MigrationInProgress"
    MIGRATION_COMPLETED = "MigrationCompleted"


class TestMigrateStatus(str, Enum):
    __test__ = False  # not a pytest test class

    NONE = "None"
    IN_PROGRESS = "InProgress"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    CLEANUP_IN_PROGRESS = "CleanupInProgress"


class HealthStatus(str, Enum):
    NORMAL = "Normal"
    WARNING = "Warning"
    CRITICAL = "Critical"
    NONE = "None"


class GroupStatus(str, Enum):
    CREATED = "created"
    ASSESSING = "assessing"
    ASSESSED = "assessed"
    REPLICATING = "replicating"


class TargetConfig(BaseModel):
    """Target placement for a batch of machines."""
    target_region: Optional[str] = None
    target_resource_group: str
    target_vnet_id: str
    target_subnet_name: str
    target_vm_size: str
    target_storage_account_id: Optional[str] = None
    availability_zone: Optional[str] = None
    availability_set_id: Optional[str] = None
    license_type: Optional[str] = None
    tags: Dict[str, str] = {}


class DiskOverride(BaseModel):
    """Caller-supplied disk settings; paired with inventory disks by position."""
    disk_id: Optional[str] = None  # informational only, may be a placeholder
    is_os_disk: Optional[bool] = None
    disk_type: Optional[str] = None
    target_disk_size_gb: Optional[int] = None


class MachineDiskOverrides(BaseModel):
    machine_id: str
    disks: List[DiskOverride] = []


class DiskConfig(BaseModel):
    """A resolved disk ready for the enable request."""
    source_disk_id: str
    is_os_disk: bool
    disk_type: str = "Standard_LRS"
    source_size_bytes: int
    target_size_gb: int

    @property
    def target_size_bytes(self) -> int:
        return self.target_size_gb * GIB

    def target_disk_name(self, machine_name: str, index: int) -> str:
        if self.is_os_disk:
            return f"{machine_name}-OSDisk-00"
        return f"{machine_name}-DataDisk-{index:02d}"

    def to_payload(self, machine_name: str, index: int, log_storage_account_id: str,
                   sas_secret_name: str) -> Dict[str, Any]:
        # The remote schema types booleans and sizes as strings
        return {
            "diskId": self.source_disk_id,
            "isOSDisk": "true" if self.is_os_disk else "false",
            "diskType": self.disk_type,
            "logStorageAccountId": log_storage_account_id,
            "logStorageAccountSasSecretName": sas_secret_name,
            "targetDiskName": self.target_disk_name(machine_name, index),
            "targetDiskSizeInBytes": str(self.target_size_bytes),
        }


class TopologyCache(BaseModel):
    """Resolved remote coordinates needed to submit replication requests."""
    vault_name: str
    vault_location: Optional[str] = None
    fabric_name: str
    container_name: str
    policy_id: str = ""
    data_mover_run_as_account_id: str = ""
    snapshot_run_as_account_id: str = ""
    vmware_site_id: str = ""
    cache_storage_account_id: str = ""
    cache_storage_account_sas_secret_name: str = ""
    target_region: Optional[str] = None

    @property
    def is_provisioning_ready(self) -> bool:
        """Infrastructure is present but enablement needs a policy id."""
        return bool(self.policy_id)


class AzureConfig(BaseModel):
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    subscription_id: str = ""
    resource_group: str = ""
    migrate_project_name: Optional[str] = None
    location: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return all([self.tenant_id, self.client_id, self.client_secret,
                    self.subscription_id, self.resource_group])


class ReplicationItem(BaseModel):
    """Local tracking record for one migration attempt of one machine."""
    id: Optional[str] = None
    machine_id: str
    machine_name: str
    source_server_id: str = ""
    vault_name: Optional[str] = None
    fabric_name: Optional[str] = None
    container_name: Optional[str] = None
    azure_protected_item_id: Optional[str] = None
    target_resource_group: str = ""
    target_vnet_id: str = ""
    target_subnet_name: str = ""
    target_vm_size: str = ""
    target_storage_account_id: str = ""
    availability_zone: Optional[str] = None
    availability_set_id: Optional[str] = None
    license_type: str = "NoLicenseType"
    tags: Dict[str, str] = {}
    status: str = ReplicationStatus.ENABLING.value
    health_status: str = HealthStatus.NONE.value
    health_errors: List[str] = []
    replication_progress: int = 0
    last_sync_time: Optional[str] = None
    test_migrate_status: str = TestMigrateStatus.NONE.value

    def to_row(self) -> Dict[str, Any]:
        """Insert payload; the store assigns id and timestamps."""
        return self.model_dump(exclude_none=True, exclude={"id"})


class RemoteMigrationItem(BaseModel):
    """Normalized view of a remote replicationMigrationItems entry."""
    id: str
    name: str
    machine_name: str = ""
    migration_state: Optional[str] = None
    migration_state_description: Optional[str] = None
    protection_state: Optional[str] = None
    health: Optional[str] = None
    health_errors: List[Dict[str, Any]] = []
    test_migrate_state: Optional[str] = None
    test_migrate_state_description: Optional[str] = None
    allowed_operations: List[str] = []
    last_recovery_point_received: Optional[str] = None
    initial_seeding_progress: Optional[float] = None
    delta_sync_progress: Optional[float] = None
    resync_required: bool = False
    resync_progress: Optional[float] = None
    os_type: Optional[str] = None
    firmware_type: Optional[str] = None
    target_vm_name: Optional[str] = None
    target_vm_size: Optional[str] = None
    target_resource_group_id: Optional[str] = None
    target_location: Optional[str] = None
    vmware_machine_id: Optional[str] = None
    disks: List[Dict[str, Any]] = []
    vm_nics: List[Dict[str, Any]] = []

    @classmethod
    def from_arm(cls, raw: Dict[str, Any]) -> "RemoteMigrationItem":
        props = raw.get("properties") or {}
        details = props.get("providerSpecificDetails") or {}
        return cls(
            id=raw.get("id", ""),
            name=raw.get("name") or arm_name(raw.get("id")),
            machine_name=props.get("machineName") or props.get("friendlyName") or "",
            migration_state=props.get("migrationState"),
            migration_state_description=props.get("migrationStateDescription"),
            protection_state=props.get("protectionState"),
            health=props.get("health") or props.get("replicationHealth"),
            health_errors=props.get("healthErrors") or [],
            test_migrate_state=props.get("testMigrateState"),
            test_migrate_state_description=props.get("testMigrateStateDescription"),
            allowed_operations=props.get("allowedOperations") or [],
            last_recovery_point_received=details.get("lastRecoveryPointReceived"),
            initial_seeding_progress=details.get("initialSeedingProgressPercentage"),
            delta_sync_progress=details.get("deltaSyncProgressPercentage"),
            resync_required=str(details.get("resyncRequired", "")).lower() == "true",
            resync_progress=details.get("resyncProgressPercentage"),
            os_type=details.get("osType"),
            firmware_type=details.get("firmwareType"),
            target_vm_name=details.get("targetVmName"),
            target_vm_size=details.get("targetVmSize"),
            target_resource_group_id=details.get("targetResourceGroupId"),
            target_location=details.get("targetLocation"),
            vmware_machine_id=details.get("vmwareMachineId"),
            disks=details.get("protectedDisks") or details.get("disksToInclude") or [],
            vm_nics=details.get("vmNics") or [],
        )

    @property
    def progress(self) -> int:
        for value in (self.initial_seeding_progress, self.delta_sync_progress, self.resync_progress):
            if value:
                return int(value)
        return 0

    @property
    def health_error_messages(self) -> List[str]:
        messages = []
        for err in self.health_errors:
            code = err.get("errorCode")
            message = err.get("errorMessage") or err.get("summaryMessage") or ""
            messages.append(f"{code}: {message}" if code else message)
        return messages

    def overlay(self) -> Dict[str, Any]:
        """Live remote snapshot returned beside the authoritative local record."""
        return {
            "migration_state": self.migration_state,
            "migration_state_description": self.migration_state_description,
            "initial_seeding_progress": self.initial_seeding_progress,
            "delta_sync_progress": self.delta_sync_progress,
            "resync_required": self.resync_required,
            "resync_progress": self.resync_progress,
            "last_recovery_point_time": self.last_recovery_point_received,
            "allowed_operations": self.allowed_operations,
            "test_migrate_state": self.test_migrate_state,
            "test_migrate_state_description": self.test_migrate_state_description,
            "os_type": self.os_type,
            "firmware_type": self.firmware_type,
            "health": self.health,
            "health_errors": self.health_errors,
        }


class EnablementResult(BaseModel):
    items: List[Dict[str, Any]] = []
    errors: List[str] = []
    message: str = ""


class ReconciliationResult(BaseModel):
    vaults_checked: List[str] = []
    items_updated: int = 0
    items_materialized: int = 0
    protected_transitions: List[str] = []
    unmapped_states: List[str] = []
    errors: List[str] = []
