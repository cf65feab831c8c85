"""
ARM path catalog for Azure Site Recovery / Azure Migrate.

Every path carries its api-version; builders take the subscription and
resource group explicitly so one process can address several tenants.
"""

API_VERSION_VAULTS = "2023-04-01"
API_VERSION_ASR = "2023-06-01"
API_VERSION_MIGRATION_ITEMS = "2025-08-01"
API_VERSION_OFFAZURE = "2023-06-06"
API_VERSION_MIGRATE_PROJECTS = "2020-05-01"
API_VERSION_STORAGE = "2023-01-01"
API_VERSION_RESOURCE_GROUPS = "2021-04-01"

DEFAULT_POLICY_NAME = "DefaultInMageRcmPolicy"
DEFAULT_POLICY_MAPPING_NAME = "DefaultPolicyMapping"


def resource_group_id(subscription_id: str, resource_group: str) -> str:
    return f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}"


def vaults(subscription_id: str, resource_group: str) -> str:
    return (f"{resource_group_id(subscription_id, resource_group)}"
            f"/providers/Microsoft.RecoveryServices/vaults")


def vault(subscription_id: str, resource_group: str, vault_name: str) -> str:
    return f"{vaults(subscription_id, resource_group)}/{vault_name}"


def fabric(subscription_id: str, resource_group: str, vault_name: str, fabric_name: str) -> str:
    return f"{vault(subscription_id, resource_group, vault_name)}/replicationFabrics/{fabric_name}"


def container(subscription_id: str, resource_group: str, vault_name: str, fabric_name: str,
              container_name: str) -> str:
    return (f"{fabric(subscription_id, resource_group, vault_name, fabric_name)}"
            f"/replicationProtectionContainers/{container_name}")


def migration_item(subscription_id: str, resource_group: str, vault_name: str, fabric_name: str,
                   container_name: str, item_name: str) -> str:
    return (f"{container(subscription_id, resource_group, vault_name, fabric_name, container_name)}"
            f"/replicationMigrationItems/{item_name}")


def migrate_projects(subscription_id: str, resource_group: str) -> str:
    return (f"{resource_group_id(subscription_id, resource_group)}"
            f"/providers/Microsoft.Migrate/migrateProjects")


def storage_accounts(subscription_id: str) -> str:
    return f"/subscriptions/{subscription_id}/providers/Microsoft.Storage/storageAccounts"


def with_version(path: str, api_version: str, **query) -> str:
    """Append api-version (and any extra query parameters) to a path."""
    parts = [f"api-version={api_version}"]
    parts.extend(f"{key}={value}" for key, value in query.items())
    return f"{path}?{'&'.join(parts)}"
