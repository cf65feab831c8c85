"""
Reconciliation Handler

Pulls migration items from every vault that holds local work, overwrites
local status from remote truth, materializes local records for items
created outside this system, and runs that pass periodically in a
background thread while anything is still in flight.
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from migrate_executor import config
from migrate_executor.azure_migrate.errors import ConfigurationError, MigrateError
from migrate_executor.handlers.base import BaseHandler
from migrate_executor.models import HealthStatus, ReconciliationResult, RemoteMigrationItem, ReplicationItem
from migrate_executor.status import STEADY_STATUSES, is_terminal, map_remote_state, map_test_migrate_state
from migrate_executor.utils import arm_name, parse_arm_segments

logger = logging.getLogger(__name__)


def remote_fields(remote: RemoteMigrationItem) -> Tuple[Dict, bool]:
    """
    Local columns derived from a remote migration item.

    Returns:
        (fields, mapped) where mapped is False when the remote state was passed through
    """
    status, mapped = map_remote_state(remote.migration_state, remote.protection_state)
    segments = parse_arm_segments(remote.id)
    fields = {
        "status": status,
        "health_status": remote.health or HealthStatus.NONE.value,
        "health_errors": remote.health_error_messages,
        "replication_progress": remote.progress,
        "test_migrate_status": map_test_migrate_state(remote.test_migrate_state),
        "azure_protected_item_id": remote.id,
    }
    if remote.last_recovery_point_received:
        fields["last_sync_time"] = remote.last_recovery_point_received
    for column, segment in (("vault_name", "vaults"),
                            ("fabric_name", "replicationfabrics"),
                            ("container_name", "replicationprotectioncontainers")):
        if segments.get(segment):
            fields[column] = segments[segment]
    return fields, mapped


def materialized_row(remote: RemoteMigrationItem) -> Dict:
    """Local record for a remote item this system did not create."""
    fields, _ = remote_fields(remote)
    return ReplicationItem(
        machine_id=remote.name,
        machine_name=remote.machine_name or remote.name,
        source_server_id=remote.vmware_machine_id or "",
        target_resource_group=arm_name(remote.target_resource_group_id),
        target_vm_size=remote.target_vm_size or "",
        license_type="NoLicenseType",
        **fields,
    ).to_row()


def _age(row: Dict) -> Tuple[str, str]:
    return row.get("created_at") or "", row.get("id") or ""


class ReconciliationHandler(BaseHandler):
    """Merges remote migration item state into local replication items"""

    def _vaults_to_check(self, active: List[Dict]) -> List[str]:
        vaults = []
        try:
            topology = self.executor.cache.get()
            if topology:
                vaults.append(topology.vault_name)
        except MigrateError as e:
            self.log(f"Could not resolve infrastructure for reconciliation: {e}", "WARN")
        for item in active:
            if item.get("vault_name") and item["vault_name"] not in vaults:
                vaults.append(item["vault_name"])
        return vaults

    def apply_remote(self, item: Dict, remote: RemoteMigrationItem,
                     result: Optional[ReconciliationResult] = None) -> Dict:
        """
        Overwrite one local item from its remote counterpart.

        The store write is best-effort; the returned row reflects remote
        truth either way.
        """
        fields, mapped = remote_fields(remote)
        if not mapped and result is not None:
            result.unmapped_states.append(remote.migration_state or remote.protection_state)

        previous = item.get("status")
        if not self.executor.update_replication_item(item["id"], fields):
            self.log(f"Could not update local item {item.get('machine_name')}", "WARN")
        elif result is not None:
            result.items_updated += 1

        if fields["status"] in STEADY_STATUSES and previous not in STEADY_STATUSES:
            name = item.get("machine_name") or remote.machine_name
            self.executor.log_activity(
                "replication",
                "protected",
                f"{name} is now protected",
                description="Initial replication completed. Machine is now being continuously replicated.",
                status="success",
                entity_type="machine",
                entity_id=item.get("machine_id"),
            )
            if result is not None:
                result.protected_transitions.append(name)
        return {**item, **fields}

    def run_pass(self) -> Tuple[ReconciliationResult, List[Dict], Dict[str, Dict]]:
        """
        One reconciliation pass.

        Returns:
            (result, rows, overlays): rows are all local items after the pass,
            overlays maps local item id to the live remote snapshot
        """
        ex = self.executor
        result = ReconciliationResult()
        rows = ex.get_replication_items()
        overlays: Dict[str, Dict] = {}

        if not ex.get_azure_config().is_configured:
            return result, rows, overlays

        try:
            operations = ex.get_operations()
        except ConfigurationError as e:
            self.log(f"Skipping reconciliation: {e}", "WARN")
            return result, rows, overlays

        rows = self._collapse_duplicates(rows)
        active = [r for r in rows if not is_terminal(r.get("status"))]
        # Terminal items keep their remote id claimed so their remote items are not re-materialized
        claimed_ids = {r["azure_protected_item_id"].lower() for r in rows
                       if is_terminal(r.get("status")) and r.get("azure_protected_item_id")}
        by_id = {r["id"]: r for r in rows}

        for vault_name in self._vaults_to_check(active):
            result.vaults_checked.append(vault_name)
            try:
                remote_items = [RemoteMigrationItem.from_arm(raw)
                                for raw in operations.list_migration_items(vault_name)]
            except MigrateError as e:
                self.log(f"Reconciliation failed for vault {vault_name}: {e}", "ERROR")
                result.errors.append(f"{vault_name}: {e}")
                continue

            candidates = [r for r in active if not r.get("vault_name") or r.get("vault_name") == vault_name]
            matched_local = set()
            for remote in remote_items:
                local = self._match(remote, candidates, matched_local)
                if local is not None:
                    matched_local.add(local["id"])
                    by_id[local["id"]] = self.apply_remote(local, remote, result)
                    overlays[local["id"]] = remote.overlay()
                    continue
                if remote.id.lower() in claimed_ids:
                    continue

                name = remote.machine_name or remote.name
                try:
                    local, created = self._materialize(remote, by_id, result)
                except PermissionError:
                    raise
                except Exception as e:
                    self.log(f"Could not materialize {name}: {e}", "ERROR")
                    result.errors.append(f"{name}: {e}")
                    continue
                if local is None:
                    self.log(f"Could not create local record for {name}", "WARN")
                    continue
                if created:
                    result.items_materialized += 1
                by_id[local["id"]] = local
                overlays[local["id"]] = remote.overlay()
                # Later vaults must not materialize it again
                claimed_ids.add(remote.id.lower())

        if result.items_updated or result.items_materialized:
            self.log(f"Reconciliation: {result.items_updated} updated, {result.items_materialized} materialized "
                     f"across {len(result.vaults_checked)} vault(s)")
        return result, list(by_id.values()), overlays

    def _collapse_duplicates(self, rows: List[Dict]) -> List[Dict]:
        """Keep the oldest non-terminal row per remote item and delete the others."""
        kept = set()
        survivors = []
        for row in sorted(rows, key=_age):
            remote_id = (row.get("azure_protected_item_id") or "").lower()
            if not remote_id or is_terminal(row.get("status")):
                survivors.append(row)
                continue
            if remote_id in kept:
                self.log(f"Removing duplicate local record {row['id']} for {row.get('machine_name')}", "WARN")
                if self.executor.delete_replication_item(row["id"]):
                    continue
            kept.add(remote_id)
            survivors.append(row)
        return survivors

    def _materialize(self, remote: RemoteMigrationItem, by_id: Dict[str, Dict],
                     result: ReconciliationResult) -> Tuple[Optional[Dict], bool]:
        """
        Create the local record for an untracked remote item.

        Passes may overlap (background loop and on-demand getAll), so the
        store is checked again right before the insert and any rows another
        pass inserted meanwhile are collapsed onto the oldest.

        Returns:
            (row, created) where created is False when another pass owns the row
        """
        ex = self.executor
        existing = ex.find_items_by_remote_id(remote.id)
        if existing:
            return self.apply_remote(existing[0], remote, result), False

        self.log(f"Found remote migration item not tracked locally: {remote.machine_name or remote.name}")
        created = ex.create_replication_item(materialized_row(remote))
        if not created:
            return None, False

        rows = ex.find_items_by_remote_id(remote.id) or [created]
        for duplicate in rows[1:]:
            if ex.delete_replication_item(duplicate["id"]):
                by_id.pop(duplicate["id"], None)
        keeper = rows[0]
        return keeper, keeper["id"] == created["id"]

    @staticmethod
    def _match(remote: RemoteMigrationItem, candidates: List[Dict], matched: set) -> Optional[Dict]:
        remote_id = remote.id.lower()
        for item in candidates:
            if item["id"] not in matched and (item.get("azure_protected_item_id") or "").lower() == remote_id:
                return item
        if remote.machine_name:
            for item in candidates:
                if (item["id"] not in matched and not item.get("azure_protected_item_id")
                        and item.get("machine_name") == remote.machine_name):
                    return item
        return None

    def reconcile(self) -> ReconciliationResult:
        return self.run_pass()[0]

    def get_all(self) -> List[Dict]:
        """All local items, each with its live remote overlay (or None)."""
        _, rows, overlays = self.run_pass()
        rows.sort(key=lambda r: r.get("created_at") or "", reverse=True)
        return [{**row, "remote_status": overlays.get(row.get("id"))} for row in rows]

    def has_active_items(self) -> bool:
        return bool(self.executor.get_replication_items(active_only=True))

    def execute_reconcile_replication(self, job: Dict):
        self.mark_job_running(job)
        try:
            result = self.reconcile()
            self.mark_job_completed(job, details=result.model_dump())
        except Exception as e:
            self.handle_error(job, e, "Reconcile replication")


class ReconciliationLoop:
    """
    Background thread that runs reconciliation passes until nothing is in
    flight, the maximum runtime elapses, or stop() is called.
    """

    def __init__(self, reconcile: Callable[[], ReconciliationResult], has_active: Callable[[], bool],
                 interval: float = None, max_runtime: float = None):
        self._reconcile = reconcile
        self._has_active = has_active
        self.interval = config.RECONCILE_INTERVAL_SECONDS if interval is None else interval
        self.max_runtime = config.RECONCILE_MAX_RUNTIME_SECONDS if max_runtime is None else max_runtime
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._rearm = False

    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self) -> bool:
        """
        Start the loop; returns False if it is already running.

        A running loop that is about to exit is re-armed instead, so work
        registered while it winds down is still picked up.
        """
        with self._lock:
            if self._thread is not None:
                self._rearm = True
                return False
            self._rearm = False
            self._stop_event = threading.Event()
            self._thread = threading.Thread(target=self._run, args=(self._stop_event,),
                                            name="replication-reconcile", daemon=True)
            self._thread.start()
        logger.info(f"Replication reconciliation started (every {self.interval}s)")
        return True

    def stop(self, timeout: float = None):
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self, stop_event: threading.Event):
        try:
            while True:
                self._passes(stop_event)
                with self._lock:
                    # Exit decision and release happen under the lock start() takes
                    if not self._rearm or stop_event.is_set():
                        self._release_thread()
                        return
                    self._rearm = False
                logger.info("Replication reconciliation re-armed by a new request")
        finally:
            with self._lock:
                self._release_thread()

    def _release_thread(self):
        if self._thread is threading.current_thread():
            self._thread = None

    def _passes(self, stop_event: threading.Event):
        started = time.monotonic()
        while not stop_event.is_set():
            if time.monotonic() - started >= self.max_runtime:
                logger.info("Replication reconciliation reached maximum runtime, stopping")
                return
            try:
                result = self._reconcile()
                for error in result.errors:
                    logger.warning(f"Reconciliation error: {error}")
                if not self._has_active():
                    logger.info("No active replications remain, stopping reconciliation")
                    return
            except Exception as e:
                logger.error(f"Reconciliation pass failed: {e}")
            stop_event.wait(self.interval)
