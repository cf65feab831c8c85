"""
Topology Resolver

Walks vault -> fabric -> container -> policy -> credentials -> cache
storage -> target region and produces a TopologyCache snapshot.
"""

import logging
from typing import Optional, Sequence

from migrate_executor.azure_migrate.operations import SiteRecoveryOperations
from migrate_executor.models import TopologyCache
from . import strategies as s
from .strategies import ResolutionContext, Strategy, first_match

logger = logging.getLogger(__name__)


class TopologyResolver:
    """
    Resolve the remote resource graph needed to submit replication requests.

    The strategy chains default to the module lists in strategies.py and can
    be replaced per instance.
    """

    def __init__(self, operations: SiteRecoveryOperations,
                 vault_strategies: Sequence[Strategy] = None,
                 fabric_strategies: Sequence[Strategy] = None,
                 policy_strategies: Sequence[Strategy] = None,
                 credential_strategies: Sequence[Strategy] = None,
                 cache_storage_strategies: Sequence[Strategy] = None,
                 target_region_strategies: Sequence[Strategy] = None):
        self.operations = operations
        self.vault_strategies = vault_strategies or s.VAULT_STRATEGIES
        self.fabric_strategies = fabric_strategies or s.FABRIC_STRATEGIES
        self.policy_strategies = policy_strategies or s.POLICY_STRATEGIES
        self.credential_strategies = credential_strategies or s.CREDENTIAL_STRATEGIES
        self.cache_storage_strategies = cache_storage_strategies or s.CACHE_STORAGE_STRATEGIES
        self.target_region_strategies = target_region_strategies or s.TARGET_REGION_STRATEGIES

    def resolve(self) -> Optional[TopologyCache]:
        """
        Build a topology snapshot.

        Returns:
            TopologyCache, or None when vault, fabric or container is missing.
            A snapshot with an empty policy_id is returned as-is; callers
            decide whether that is provisioning-ready.
        """
        ops = self.operations
        ctx = ResolutionContext(operations=ops)

        ctx.vaults = ops.list_vaults()
        ctx.vault = first_match(self.vault_strategies, ctx, "vault")
        if not ctx.vault:
            logger.warning(f"No Recovery Services vault found in resource group {ops.resource_group}")
            return None
        logger.info(f"Using vault: {ctx.vault_name}")

        ctx.fabrics = ops.list_fabrics(ctx.vault_name)
        ctx.fabric = first_match(self.fabric_strategies, ctx, "fabric")
        if not ctx.fabric:
            logger.warning(f"No replication fabric found in vault {ctx.vault_name}")
            return None
        custom_details = (ctx.fabric.get("properties") or {}).get("customDetails") or {}
        ctx.vmware_site_id = custom_details.get("vmwareSiteId") or ""
        logger.info(f"Using fabric: {ctx.fabric_name}")

        containers = ops.list_containers(ctx.vault_name, ctx.fabric_name)
        if not containers:
            logger.warning(f"No protection container found in fabric {ctx.fabric_name}")
            return None
        ctx.container = containers[0]

        policy_id = first_match(self.policy_strategies, ctx, "policy") or ""
        if not policy_id:
            logger.warning("No replication policy could be found or created")

        run_as_id = ""
        account = first_match(self.credential_strategies, ctx, "credentials")
        if account:
            run_as_id = account.get("id", "")
        elif ctx.vmware_site_id:
            logger.warning(f"No VMwareFabric run-as account found for site {ctx.vmware_site_id}")

        storage = first_match(self.cache_storage_strategies, ctx, "cache storage") or {}
        if not storage:
            logger.warning("No cache storage account discovered")

        vault_location = ctx.vault.get("location")
        target_region = first_match(self.target_region_strategies, ctx, "target region")
        if not target_region:
            target_region = vault_location
            logger.warning(f"Target region not discoverable, falling back to vault location {vault_location}")

        topology = TopologyCache(
            vault_name=ctx.vault_name,
            vault_location=vault_location,
            fabric_name=ctx.fabric_name,
            container_name=ctx.container_name,
            policy_id=policy_id,
            data_mover_run_as_account_id=run_as_id,
            snapshot_run_as_account_id=run_as_id,
            vmware_site_id=ctx.vmware_site_id,
            cache_storage_account_id=storage.get("id", ""),
            cache_storage_account_sas_secret_name=storage.get("sas_secret_name", ""),
            target_region=target_region,
        )
        logger.info(f"Resolved topology: vault={topology.vault_name} fabric={topology.fabric_name} "
                    f"container={topology.container_name} region={topology.target_region}")
        return topology

    def find_staging_storage(self, region: str) -> Optional[str]:
        """Storage account id in the given region, name heuristics first."""
        ctx = ResolutionContext(operations=self.operations, target_region=region)
        return first_match(s.STAGING_STORAGE_STRATEGIES, ctx, "staging storage")
