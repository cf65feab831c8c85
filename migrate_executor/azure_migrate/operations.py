"""
Azure Site Recovery Operations Module

High-level calls for the VMwareCbt (agentless) migration scenario.
All calls go through AzureManagementAdapter for auth and error handling.
"""

import logging
from typing import Any, Dict, List, Optional

from . import endpoints
from .adapter import AcceptedOperation, AzureManagementAdapter

logger = logging.getLogger(__name__)

# Policy settings used when a vault has no InMageRcm policy yet
DEFAULT_POLICY_SETTINGS = {
    "instanceType": "InMageRcm",
    "recoveryPointHistoryInMinutes": 1440,
    "crashConsistentFrequencyInMinutes": 5,
    "appConsistentFrequencyInMinutes": 60,
    "enableMultiVmSync": "True",
}


def job_reference(result: Any) -> Optional[str]:
    """Best-effort replication job name from a POST/PUT/DELETE result."""
    if isinstance(result, AcceptedOperation):
        return result.job_name
    if isinstance(result, dict):
        return result.get("name") or result.get("id")
    return None


class SiteRecoveryOperations:
    """
    Site Recovery, Migrate project and Storage calls scoped to one
    subscription and resource group.
    """

    def __init__(self, adapter: AzureManagementAdapter, subscription_id: str, resource_group: str,
                 migrate_project_name: Optional[str] = None):
        """
        Initialize operations with adapter.

        Args:
            adapter: AzureManagementAdapter instance for making API calls
            subscription_id: Azure subscription
            resource_group: Resource group holding the vault and migrate project
            migrate_project_name: Optional project to prefer when reading solution config
        """
        self.adapter = adapter
        self.subscription_id = subscription_id
        self.resource_group = resource_group
        self.migrate_project_name = migrate_project_name

    # Helpers

    def _list(self, path: str) -> List[Dict[str, Any]]:
        """GET a collection, following nextLink pages."""
        items: List[Dict[str, Any]] = []
        next_path: Optional[str] = path
        while next_path:
            response = self.adapter.call("GET", next_path)
            if not isinstance(response, dict):
                break
            items.extend(response.get("value") or [])
            next_path = response.get("nextLink")
        return items

    def _vault(self, vault_name: str) -> str:
        return endpoints.vault(self.subscription_id, self.resource_group, vault_name)

    def _container(self, vault_name: str, fabric_name: str, container_name: str) -> str:
        return endpoints.container(self.subscription_id, self.resource_group, vault_name, fabric_name,
                                   container_name)

    def _item(self, vault_name: str, fabric_name: str, container_name: str, item_name: str) -> str:
        return endpoints.migration_item(self.subscription_id, self.resource_group, vault_name, fabric_name,
                                        container_name, item_name)

    # Topology

    def list_vaults(self) -> List[Dict[str, Any]]:
        path = endpoints.vaults(self.subscription_id, self.resource_group)
        return self._list(endpoints.with_version(path, endpoints.API_VERSION_VAULTS))

    def list_fabrics(self, vault_name: str) -> List[Dict[str, Any]]:
        path = f"{self._vault(vault_name)}/replicationFabrics"
        return self._list(endpoints.with_version(path, endpoints.API_VERSION_ASR))

    def list_containers(self, vault_name: str, fabric_name: str) -> List[Dict[str, Any]]:
        path = endpoints.fabric(self.subscription_id, self.resource_group, vault_name, fabric_name)
        return self._list(endpoints.with_version(f"{path}/replicationProtectionContainers",
                                                 endpoints.API_VERSION_ASR))

    def list_vault_container_mappings(self, vault_name: str) -> List[Dict[str, Any]]:
        path = f"{self._vault(vault_name)}/replicationProtectionContainerMappings"
        return self._list(endpoints.with_version(path, endpoints.API_VERSION_ASR))

    def list_container_mappings(self, vault_name: str, fabric_name: str, container_name: str) -> List[Dict[str, Any]]:
        path = f"{self._container(vault_name, fabric_name, container_name)}/replicationProtectionContainerMappings"
        return self._list(endpoints.with_version(path, endpoints.API_VERSION_ASR))

    def list_policies(self, vault_name: str) -> List[Dict[str, Any]]:
        path = f"{self._vault(vault_name)}/replicationPolicies"
        return self._list(endpoints.with_version(path, endpoints.API_VERSION_ASR))

    def create_default_policy(self, vault_name: str) -> Optional[str]:
        """Create the default InMageRcm policy and return its id."""
        name = endpoints.DEFAULT_POLICY_NAME
        path = f"{self._vault(vault_name)}/replicationPolicies/{name}"
        body = {"properties": {"providerSpecificInput": dict(DEFAULT_POLICY_SETTINGS)}}
        logger.info(f"Creating replication policy {name} in vault {vault_name}")
        result = self.adapter.call("PUT", endpoints.with_version(path, endpoints.API_VERSION_ASR), body)
        if isinstance(result, dict) and result.get("id"):
            return result["id"]
        # Creation is asynchronous; the id is deterministic
        return path

    def create_policy_mapping(self, vault_name: str, fabric_name: str, container_name: str,
                              policy_id: str) -> Any:
        name = endpoints.DEFAULT_POLICY_MAPPING_NAME
        path = f"{self._container(vault_name, fabric_name, container_name)}/replicationProtectionContainerMappings/{name}"
        body = {
            "properties": {
                "policyId": policy_id,
                "targetProtectionContainerId": "Microsoft Azure",
                "providerSpecificInput": {"instanceType": "InMageRcm"},
            }
        }
        logger.info(f"Mapping policy {policy_id.split('/')[-1]} to container {container_name}")
        return self.adapter.call("PUT", endpoints.with_version(path, endpoints.API_VERSION_ASR), body)

    def list_run_as_accounts(self, vmware_site_id: str) -> List[Dict[str, Any]]:
        return self._list(endpoints.with_version(f"{vmware_site_id}/runasaccounts",
                                                 endpoints.API_VERSION_OFFAZURE))

    # Migrate project / storage

    def list_migrate_projects(self) -> List[Dict[str, Any]]:
        path = endpoints.migrate_projects(self.subscription_id, self.resource_group)
        return self._list(endpoints.with_version(path, endpoints.API_VERSION_MIGRATE_PROJECTS))

    def list_solutions(self, project_name: str) -> List[Dict[str, Any]]:
        path = f"{endpoints.migrate_projects(self.subscription_id, self.resource_group)}/{project_name}/solutions"
        return self._list(endpoints.with_version(path, endpoints.API_VERSION_MIGRATE_PROJECTS))

    def list_storage_accounts(self) -> List[Dict[str, Any]]:
        path = endpoints.storage_accounts(self.subscription_id)
        return self._list(endpoints.with_version(path, endpoints.API_VERSION_STORAGE))

    def get_resource_location(self, resource_id: str, api_version: str) -> Optional[str]:
        result = self.adapter.call("GET", endpoints.with_version(resource_id, api_version))
        if isinstance(result, dict):
            return result.get("location")
        return None

    def get_storage_account_region(self, storage_account_id: str) -> Optional[str]:
        return self.get_resource_location(storage_account_id, endpoints.API_VERSION_STORAGE)

    def get_resource_group_region(self, resource_group_id: str) -> Optional[str]:
        return self.get_resource_location(resource_group_id, endpoints.API_VERSION_RESOURCE_GROUPS)

    # Migration items

    def list_migration_items(self, vault_name: str) -> List[Dict[str, Any]]:
        """All migration items in the vault, with detailed status."""
        path = f"{self._vault(vault_name)}/replicationMigrationItems"
        return self._list(endpoints.with_version(path, endpoints.API_VERSION_MIGRATION_ITEMS))

    def get_migration_item(self, vault_name: str, fabric_name: str, container_name: str,
                           item_name: str) -> Optional[Dict[str, Any]]:
        path = self._item(vault_name, fabric_name, container_name, item_name)
        result = self.adapter.call("GET", endpoints.with_version(path, endpoints.API_VERSION_MIGRATION_ITEMS))
        return result if isinstance(result, dict) else None

    def enable_migration(self, vault_name: str, fabric_name: str, container_name: str, item_name: str,
                         policy_id: str, provider_details: Dict[str, Any]) -> Any:
        """PUT a VMwareCbt migration item. Returns the created item or an AcceptedOperation."""
        path = self._item(vault_name, fabric_name, container_name, item_name)
        body = {"properties": {"policyId": policy_id, "providerSpecificDetails": provider_details}}
        return self.adapter.call("PUT", endpoints.with_version(path, endpoints.API_VERSION_MIGRATION_ITEMS), body)

    def list_recovery_points(self, vault_name: str, fabric_name: str, container_name: str,
                             item_name: str) -> List[Dict[str, Any]]:
        path = f"{self._item(vault_name, fabric_name, container_name, item_name)}/migrationRecoveryPoints"
        points = self._list(endpoints.with_version(path, endpoints.API_VERSION_MIGRATION_ITEMS))
        # Newest first
        return sorted(points, key=lambda p: (p.get("properties") or {}).get("recoveryPointTime") or "",
                      reverse=True)

    def test_migrate(self, vault_name: str, fabric_name: str, container_name: str, item_name: str,
                     network_id: str, recovery_point_id: str, vm_nics: Optional[List[Dict]] = None,
                     os_upgrade_version: Optional[str] = None) -> Any:
        details: Dict[str, Any] = {
            "instanceType": "VMwareCbt",
            "networkId": network_id,
            "recoveryPointId": recovery_point_id,
        }
        if vm_nics:
            details["vmNics"] = vm_nics
        if os_upgrade_version:
            details["osUpgradeVersion"] = os_upgrade_version
        path = f"{self._item(vault_name, fabric_name, container_name, item_name)}/testMigrate"
        return self.adapter.call("POST", endpoints.with_version(path, endpoints.API_VERSION_MIGRATION_ITEMS),
                                 {"properties": {"providerSpecificDetails": details}})

    def test_migrate_cleanup(self, vault_name: str, fabric_name: str, container_name: str, item_name: str,
                             comments: Optional[str] = None) -> Any:
        path = f"{self._item(vault_name, fabric_name, container_name, item_name)}/testMigrateCleanup"
        return self.adapter.call("POST", endpoints.with_version(path, endpoints.API_VERSION_ASR),
                                 {"properties": {"comments": comments or "Test migration cleanup"}})

    def migrate(self, vault_name: str, fabric_name: str, container_name: str, item_name: str,
                perform_shutdown: bool = True) -> Any:
        path = f"{self._item(vault_name, fabric_name, container_name, item_name)}/migrate"
        body = {
            "properties": {
                "providerSpecificDetails": {
                    "instanceType": "VMwareCbt",
                    "performShutdown": "true" if perform_shutdown else "false",
                }
            }
        }
        return self.adapter.call("POST", endpoints.with_version(path, endpoints.API_VERSION_MIGRATION_ITEMS), body)

    def delete_migration_item(self, vault_name: str, fabric_name: str, container_name: str,
                              item_name: str) -> Any:
        """Complete migration / disable migration: both delete the migration item."""
        path = self._item(vault_name, fabric_name, container_name, item_name)
        return self.adapter.call("DELETE", endpoints.with_version(path, endpoints.API_VERSION_ASR))

    def resync(self, vault_name: str, fabric_name: str, container_name: str, item_name: str) -> Any:
        path = f"{self._item(vault_name, fabric_name, container_name, item_name)}/resync"
        body = {"properties": {"skipCbtReset": "false"}}
        return self.adapter.call("POST", endpoints.with_version(path, endpoints.API_VERSION_ASR), body)

    # Jobs and events

    def list_jobs(self, vault_name: str) -> List[Dict[str, Any]]:
        path = f"{self._vault(vault_name)}/replicationJobs"
        return self._list(endpoints.with_version(path, endpoints.API_VERSION_ASR))

    def restart_job(self, vault_name: str, job_id: str) -> Any:
        path = f"{self._vault(vault_name)}/replicationJobs/{job_id}/restart"
        return self.adapter.call("POST", endpoints.with_version(path, endpoints.API_VERSION_ASR), {})

    def list_events(self, vault_name: str, since_iso: str) -> List[Dict[str, Any]]:
        path = f"{self._vault(vault_name)}/replicationEvents"
        return self._list(endpoints.with_version(path, endpoints.API_VERSION_ASR,
                                                 **{"$filter": f"timeOfOccurrence ge {since_iso}"}))
