"""
Named, ordered fallback strategies for topology discovery.

Azure Migrate does not expose a single "which vault/fabric/policy does the
portal use" answer, so each step walks a short chain of heuristics. Each
strategy is a plain function of a ResolutionContext returning a value or
None; first_match() returns the first non-empty answer. Chains are module
lists so callers can reorder or replace them.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from migrate_executor.azure_migrate.errors import AuthError, MigrateError
from migrate_executor.azure_migrate.operations import SiteRecoveryOperations
from migrate_executor.utils import arm_name, normalize_region

logger = logging.getLogger(__name__)

VMWARE_FABRIC_INSTANCE_TYPES = ("InMageRcm", "VMware", "VMwareV2")
SITE_MANAGEMENT_CREDENTIAL = "VMwareFabric"
CACHE_STORAGE_NAME_MARKERS = ("cache", "migrate", "asr")
STAGING_STORAGE_NAME_MARKERS = ("cache", "migrate")
SAS_SECRET_SUFFIX = "-cacheSas"


@dataclass
class Strategy:
    name: str
    fn: Callable[["ResolutionContext"], Any]


@dataclass
class ResolutionContext:
    """Everything a strategy may look at during one resolve() pass."""
    operations: SiteRecoveryOperations
    vaults: List[Dict[str, Any]] = field(default_factory=list)
    vault: Optional[Dict[str, Any]] = None
    fabrics: List[Dict[str, Any]] = field(default_factory=list)
    fabric: Optional[Dict[str, Any]] = None
    container: Optional[Dict[str, Any]] = None
    vmware_site_id: str = ""
    target_region: Optional[str] = None
    _migration_items: Optional[List[Dict[str, Any]]] = None

    @property
    def vault_name(self) -> str:
        return (self.vault or {}).get("name", "")

    @property
    def fabric_name(self) -> str:
        return (self.fabric or {}).get("name", "")

    @property
    def container_name(self) -> str:
        return (self.container or {}).get("name", "")

    def migration_items(self) -> List[Dict[str, Any]]:
        """Vault migration items, fetched once per pass."""
        if self._migration_items is None:
            self._migration_items = self.operations.list_migration_items(self.vault_name)
        return self._migration_items


def first_match(strategies: Sequence[Strategy], ctx: ResolutionContext, label: str) -> Any:
    """
    Run strategies in order and return the first non-empty result.

    Remote failures inside one strategy are logged and the chain moves on;
    authentication failures are not strategy-specific and propagate.
    """
    for strategy in strategies:
        try:
            result = strategy.fn(ctx)
        except AuthError:
            raise
        except MigrateError as e:
            logger.warning(f"{label}: strategy '{strategy.name}' failed: {e}")
            continue
        if result:
            logger.debug(f"{label}: resolved by '{strategy.name}'")
            return result
    return None


def _props(resource: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return (resource or {}).get("properties") or {}


def _name_contains(resource: Dict[str, Any], marker: str) -> bool:
    return marker in (resource.get("name") or "").lower()


# Vault

def vault_named_migrate(ctx):
    return next((v for v in ctx.vaults if _name_contains(v, "migrate")), None)


def vault_named_vault(ctx):
    return next((v for v in ctx.vaults if _name_contains(v, "vault")), None)


def first_vault(ctx):
    return ctx.vaults[0] if ctx.vaults else None


VAULT_STRATEGIES = [
    Strategy("name-contains-migrate", vault_named_migrate),
    Strategy("name-contains-vault", vault_named_vault),
    Strategy("first-vault", first_vault),
]


# Fabric

def _custom_details(fabric: Dict[str, Any]) -> Dict[str, Any]:
    return _props(fabric).get("customDetails") or {}


def fabric_instance_type(ctx):
    return next((f for f in ctx.fabrics
                 if _custom_details(f).get("instanceType") in VMWARE_FABRIC_INSTANCE_TYPES), None)


def fabric_vmware_site(ctx):
    return next((f for f in ctx.fabrics if _custom_details(f).get("vmwareSiteId")), None)


def fabric_named_vmware(ctx):
    return next((f for f in ctx.fabrics if _name_contains(f, "vmware")), None)


def first_fabric(ctx):
    return ctx.fabrics[0] if ctx.fabrics else None


FABRIC_STRATEGIES = [
    Strategy("instance-type-marker", fabric_instance_type),
    Strategy("vmware-site-id", fabric_vmware_site),
    Strategy("name-contains-vmware", fabric_named_vmware),
    Strategy("first-fabric", first_fabric),
]


# Policy

def policy_from_container_mapping(ctx):
    mappings = ctx.operations.list_container_mappings(ctx.vault_name, ctx.fabric_name, ctx.container_name)
    return next((_props(m).get("policyId") for m in mappings if _props(m).get("policyId")), None)


def policy_from_vault_mapping(ctx):
    mappings = ctx.operations.list_vault_container_mappings(ctx.vault_name)
    return next((_props(m).get("policyId") for m in mappings if _props(m).get("policyId")), None)


def policy_create_default(ctx):
    """Reuse an unmapped InMageRcm policy or create the default one, then map it."""
    ops = ctx.operations
    policy_id = next(
        (p.get("id") for p in ops.list_policies(ctx.vault_name)
         if (_props(p).get("providerSpecificDetails") or {}).get("instanceType") == "InMageRcm"),
        None,
    )
    if not policy_id:
        logger.info("No InMageRcm policy found, creating the default policy")
        policy_id = ops.create_default_policy(ctx.vault_name)
    if not policy_id:
        return None
    try:
        ops.create_policy_mapping(ctx.vault_name, ctx.fabric_name, ctx.container_name, policy_id)
    except MigrateError as e:
        # The policy is still usable once the portal maps it
        logger.warning(f"Failed to create policy mapping: {e}")
    return policy_id


POLICY_STRATEGIES = [
    Strategy("container-mapping", policy_from_container_mapping),
    Strategy("vault-mapping", policy_from_vault_mapping),
    Strategy("create-default-policy", policy_create_default),
]


# Credentials

def site_management_credential(ctx):
    """First VMwareFabric run-as account; used for both data-mover and snapshot roles."""
    if not ctx.vmware_site_id:
        return None
    accounts = ctx.operations.list_run_as_accounts(ctx.vmware_site_id)
    fabric_accounts = [a for a in accounts if _props(a).get("credentialType") == SITE_MANAGEMENT_CREDENTIAL]
    if len(fabric_accounts) > 1:
        names = ", ".join(_props(a).get("displayName") or a.get("name", "") for a in fabric_accounts)
        logger.info(f"Found {len(fabric_accounts)} vCenter run-as accounts ({names}); using the first")
    return fabric_accounts[0] if fabric_accounts else None


CREDENTIAL_STRATEGIES = [
    Strategy("site-management-credential", site_management_credential),
]


# Cache storage

def _storage_ref(account_id: str, sas_secret_name: Optional[str] = None) -> Dict[str, str]:
    name = arm_name(account_id)
    return {"id": account_id, "name": name, "sas_secret_name": sas_secret_name or f"{name}{SAS_SECRET_SUFFIX}"}


def storage_from_migration_item(ctx):
    for item in ctx.migration_items():
        disks = (_props(item).get("providerSpecificDetails") or {}).get("disksToInclude") or []
        if disks and disks[0].get("logStorageAccountId"):
            return _storage_ref(disks[0]["logStorageAccountId"], disks[0].get("logStorageAccountSasSecretName"))
    return None


def storage_from_project_solution(ctx):
    ops = ctx.operations
    projects = ops.list_migrate_projects()
    if ops.migrate_project_name:
        projects = [p for p in projects if p.get("name") == ops.migrate_project_name] or projects
    if not projects:
        return None
    for solution in ops.list_solutions(projects[0]["name"]):
        props = _props(solution)
        if "Servers-Migration" in (solution.get("name") or "") or props.get("tool") == "ServerMigration":
            account_id = ((props.get("details") or {}).get("extendedDetails") or {}).get("cacheStorageAccountId")
            if account_id:
                return _storage_ref(account_id)
    return None


def storage_from_name_scan(ctx):
    for account in ctx.operations.list_storage_accounts():
        if any(_name_contains(account, marker) for marker in CACHE_STORAGE_NAME_MARKERS):
            return _storage_ref(account["id"])
    return None


CACHE_STORAGE_STRATEGIES = [
    Strategy("existing-migration-item", storage_from_migration_item),
    Strategy("migrate-project-solution", storage_from_project_solution),
    Strategy("storage-name-scan", storage_from_name_scan),
]


# Target region

def region_from_migration_items(ctx):
    for item in ctx.migration_items():
        location = (_props(item).get("providerSpecificDetails") or {}).get("targetLocation")
        if location:
            return location
    return None


def region_from_target_resource_group(ctx):
    for item in ctx.migration_items():
        rg_id = (_props(item).get("providerSpecificDetails") or {}).get("targetResourceGroupId")
        if rg_id:
            return ctx.operations.get_resource_group_region(rg_id)
    return None


def region_from_container_mapping(ctx):
    for mapping in ctx.operations.list_vault_container_mappings(ctx.vault_name):
        location = (_props(mapping).get("providerSpecificDetails") or {}).get("targetLocation")
        if location:
            return location
    return None


TARGET_REGION_STRATEGIES = [
    Strategy("migration-item-target-location", region_from_migration_items),
    Strategy("migration-item-resource-group", region_from_target_resource_group),
    Strategy("container-mapping-target-location", region_from_container_mapping),
]


# Staging storage in a given region (enablement)

def _accounts_in_region(ctx) -> List[Dict[str, Any]]:
    region = normalize_region(ctx.target_region)
    return [a for a in ctx.operations.list_storage_accounts() if normalize_region(a.get("location")) == region]


def staging_named_in_region(ctx):
    return next((a["id"] for a in _accounts_in_region(ctx)
                 if any(_name_contains(a, m) for m in STAGING_STORAGE_NAME_MARKERS)), None)


def staging_any_in_region(ctx):
    return next((a["id"] for a in _accounts_in_region(ctx)), None)


STAGING_STORAGE_STRATEGIES = [
    Strategy("cache-name-in-region", staging_named_in_region),
    Strategy("any-account-in-region", staging_any_in_region),
]
