"""
Migrate Executor
================

Runs next to the migration dashboard and drives Azure Migrate server
migration (VMware agentless / VMwareCbt) on its behalf:

- discovers and caches the Site Recovery topology behind the migrate project
- enables replication for groups of discovered machines
- keeps local replication items in step with Azure
- runs test migration, migration, resync and cancel operations

Long-running work arrives as jobs in the `jobs` table; interactive
operations are served by the API server (see api_server.py).

Usage:
    migrate-executor            (or: python migrate-executor.py)
"""

import logging
import time
from datetime import datetime
from typing import Dict, List, Optional

from azure.identity import ClientSecretCredential

from migrate_executor.azure_migrate import AzureManagementAdapter, MigrateInventory, SiteRecoveryOperations
from migrate_executor.azure_migrate.errors import ConfigurationError
from migrate_executor.config import (
    API_SERVER_ENABLED,
    API_SERVER_PORT,
    DSM_URL,
    LOG_LEVEL,
    POLL_INTERVAL,
    SERVICE_ROLE_KEY,
    VERIFY_SSL,
)
from migrate_executor.handlers import EnablementHandler, LifecycleHandler, ReconciliationHandler, ReconciliationLoop
from migrate_executor.infrastructure import InfrastructureCache, TopologyResolver
from migrate_executor.mixins import CredentialsMixin, DatabaseMixin
from migrate_executor.models import MachineDiskOverrides, ReplicationStatus, TargetConfig, TopologyCache
from migrate_executor.utils import _normalize_unicode, _safe_to_stdout, utc_now_iso


class MigrateExecutor(DatabaseMixin, CredentialsMixin):

    def __init__(self, operations: SiteRecoveryOperations = None, inventory: MigrateInventory = None,
                 cache: InfrastructureCache = None, loop: ReconciliationLoop = None):
        """
        Args:
            operations: Pre-built Site Recovery operations (default: built from azure_config on first use)
            inventory: Pre-built inventory client (default: shares the operations' adapter)
            cache: Topology cache (default: backed by TopologyResolver)
            loop: Reconciliation loop (default: runs ReconciliationHandler.reconcile)
        """
        self.running = True
        self.encryption_key = None  # Will be fetched on first use
        self.api_server = None

        self._operations = operations
        self._inventory = inventory
        self._owns_clients = operations is None

        # Heartbeat tracking for the status endpoint
        self.poll_count = 0
        self.jobs_processed = 0
        self.last_poll_time = None
        self.last_poll_error = None
        self.startup_time = datetime.now()

        # Initialize job handlers
        self.enablement = EnablementHandler(self)
        self.reconciliation = ReconciliationHandler(self)
        self.lifecycle = LifecycleHandler(self)

        self.cache = cache or InfrastructureCache(self._resolve_topology)
        self.loop = loop or ReconciliationLoop(self.reconciliation.reconcile, self.reconciliation.has_active_items)

    def _validate_service_role_key(self):
        """Ensure SERVICE_ROLE_KEY is present before making Supabase requests"""
        if not SERVICE_ROLE_KEY or not SERVICE_ROLE_KEY.strip():
            self.log("ERROR: SERVICE_ROLE_KEY not set!", "ERROR")
            self.log("Set via: export SERVICE_ROLE_KEY='your-key-here'", "ERROR")
            raise SystemExit(1)

    def _handle_supabase_auth_error(self, response, context: str):
        """Raise with helpful log message on Supabase authorization failures"""
        if response.status_code in (401, 403):
            self.log(
                f"Authorization failed while {context} (HTTP {response.status_code}). "
                "Verify SERVICE_ROLE_KEY and DSM_URL before retrying.",
                "ERROR",
            )
            raise PermissionError(f"Supabase authorization failed during {context}")

    def log(self, message: str, level: str = "INFO"):
        """Log with timestamp"""
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        msg = _safe_to_stdout(_normalize_unicode(message))
        line = f"[{timestamp}] [{level}] {msg}"
        print(_safe_to_stdout(line))

    # Azure clients

    def get_operations(self) -> SiteRecoveryOperations:
        """
        Site Recovery operations for the configured subscription

        Raises:
            ConfigurationError: Azure service principal not configured
        """
        if self._operations is None:
            azure_config = self.get_azure_config()
            if not azure_config.is_configured:
                raise ConfigurationError("Azure not configured. Please configure Azure settings first.")
            credential = ClientSecretCredential(azure_config.tenant_id, azure_config.client_id,
                                                azure_config.client_secret)
            adapter = AzureManagementAdapter(credential)
            self._operations = SiteRecoveryOperations(adapter, azure_config.subscription_id,
                                                      azure_config.resource_group,
                                                      azure_config.migrate_project_name)
            self._inventory = MigrateInventory(adapter)
            self.log(f"Azure clients initialized for resource group {azure_config.resource_group}")
        return self._operations

    def get_inventory(self) -> MigrateInventory:
        if self._inventory is None:
            self._inventory = MigrateInventory(self.get_operations().adapter)
        return self._inventory

    def get_resolver(self) -> TopologyResolver:
        return TopologyResolver(self.get_operations())

    def _resolve_topology(self) -> Optional[TopologyCache]:
        return self.get_resolver().resolve()

    def start_reconciliation(self) -> bool:
        return self.loop.start()

    # Operations exposed to the dashboard

    def discover_infrastructure(self) -> Dict:
        """Resolved topology (cached), or why it is unavailable"""
        if not self.get_azure_config().is_configured:
            return {"configured": False, "message": "Azure not configured"}
        topology = self.cache.get()
        if topology is None:
            return {
                "configured": True,
                "infrastructure": None,
                "message": "Azure Migrate replication infrastructure not found. "
                           "Set up replication in the Azure Migrate portal first.",
            }
        return {
            "configured": True,
            "infrastructure": topology.model_dump(),
            "provisioning_ready": topology.is_provisioning_ready,
        }

    def clear_infrastructure_cache(self):
        """Drop the topology snapshot; Azure clients are rebuilt too so config changes take effect"""
        self.cache.invalidate()
        if self._owns_clients:
            self._operations = None
            self._inventory = None

    def list_discovered_machines(self) -> List[Dict]:
        topology = self.cache.get()
        if topology is None or not topology.vmware_site_id:
            return []
        return self.get_inventory().list_discovered_machines(topology.vmware_site_id)

    def enable_for_group(self, group_id: str, target: TargetConfig,
                         machine_disks: Optional[List[MachineDiskOverrides]] = None):
        return self.enablement.enable_for_group(group_id, target, machine_disks)

    def get_all(self) -> List[Dict]:
        return self.reconciliation.get_all()

    def get_by_id(self, item_id: str) -> Dict:
        return self.lifecycle.get_by_id(item_id)

    def get_stats(self) -> Dict:
        items = self.get_all()
        statuses = [i.get("status") for i in items]
        return {
            "total": len(items),
            "protected": statuses.count(ReplicationStatus.PROTECTED.value),
            "syncing": sum(1 for s in statuses if s in (ReplicationStatus.ENABLING.value,
                                                        ReplicationStatus.INITIAL_REPLICATION.value)),
            "failed": sum(1 for s in statuses if s in (ReplicationStatus.FAILED.value,
                                                       ReplicationStatus.AZURE_ENABLE_FAILED.value)),
            "failed_over": statuses.count(ReplicationStatus.FAILED_OVER.value),
        }

    # Job queue

    def execute_discover_infrastructure(self, job: Dict):
        self.update_job_status(job['id'], 'running')
        try:
            self.cache.invalidate()
            self.update_job_status(job['id'], 'completed', details=self.discover_infrastructure())
        except Exception as e:
            self.log(f"Job {job['id']} failed: Discover infrastructure: {e}", "ERROR")
            self.update_job_status(job['id'], 'failed', error=str(e))

    def _handler_map(self) -> Dict:
        return {
            'discover_migration_infrastructure': self.execute_discover_infrastructure,
            'enable_replication': self.enablement.execute_enable_replication,
            'reconcile_replication': self.reconciliation.execute_reconcile_replication,
            'test_migrate': self.lifecycle.execute_test_migrate,
            'test_migrate_cleanup': self.lifecycle.execute_test_migrate_cleanup,
            'migrate': self.lifecycle.execute_migrate,
            'complete_migration': self.lifecycle.execute_complete_migration,
            'resync_replication': self.lifecycle.execute_resync,
            'cancel_replication': self.lifecycle.execute_cancel,
            'restart_replication_job': self.lifecycle.execute_restart_job,
        }

    def execute_job(self, job: Dict):
        """Execute a job based on its type"""
        job_type = job['job_type']
        handler = self._handler_map().get(job_type)
        if handler:
            handler(job)
        else:
            self.log(f"Unknown job type: {job_type}", "ERROR")
            self.update_job_status(
                job['id'],
                'failed',
                details={"error": f"Unsupported job type: {job_type}", "failed_at": utc_now_iso()}
            )

    def run(self):
        """Main execution loop"""
        self.log("=" * 70)
        self.log("Migrate Executor - Azure Migrate replication")
        self.log("=" * 70)
        self.log(f"DSM_URL: {DSM_URL}")
        self.log(f"Polling interval: {POLL_INTERVAL} seconds")
        self.log(f"SSL Verification: {VERIFY_SSL}")
        self.log("=" * 70)

        self._validate_service_role_key()
        self.log("[OK] Configuration validated", "INFO")

        if API_SERVER_ENABLED:
            try:
                from migrate_executor.api_server import APIServer
                self.api_server = APIServer(self, API_SERVER_PORT)
                self.api_server.start()
                self.log(f"API SERVER STARTED on port {API_SERVER_PORT} (/api/replication)")
            except Exception as e:
                self.log(f"Warning: Could not start API server: {e}", "WARN")

        # Resume tracking of anything left in flight by a previous run
        if self.get_replication_items(active_only=True):
            self.start_reconciliation()

        self.log("Migrate executor started. Polling for jobs...")
        job_types = list(self._handler_map())

        try:
            while self.running:
                try:
                    self.poll_count += 1
                    self.last_poll_time = datetime.now()
                    self.last_poll_error = None

                    jobs = self.get_pending_jobs(job_types)
                    if jobs:
                        job = jobs[0]  # Process one job per cycle
                        self.log(f"Executing job {job['id']} ({job['job_type']})")
                        self.execute_job(job)
                        self.jobs_processed += 1

                    time.sleep(POLL_INTERVAL)

                except KeyboardInterrupt:
                    raise
                except Exception as e:
                    self.log(f"Error in main loop: {e}", "ERROR")
                    self.last_poll_error = str(e)
                    time.sleep(POLL_INTERVAL)

        except KeyboardInterrupt:
            self.log("\nShutting down migrate executor...")
            self.running = False
        finally:
            self.loop.stop(timeout=5)
            if self.api_server:
                self.api_server.stop()


def main():
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    executor = MigrateExecutor()
    executor.run()


if __name__ == "__main__":
    main()
