"""
Remote state vocabulary -> canonical replication status.

Azure exposes two vocabularies: the older protection-state names from
replicationProtectedItems and the migration-state names from
replicationMigrationItems. Both collapse onto ReplicationStatus.
Unknown values pass through unchanged so new remote states stay visible.
"""

import logging
from typing import Optional, Tuple

from migrate_executor.models import ReplicationStatus, TestMigrateStatus

logger = logging.getLogger(__name__)

S = ReplicationStatus

PROTECTION_STATE_MAP = {
    "UnprotectedStatesBegin": S.ENABLING,
    "EnableProtectionInProgress": S.ENABLING,
    "EnableProtectionFailed": S.FAILED,
    "InitialReplicationInProgress": S.INITIAL_REPLICATION,
    "InitialReplicationCompletedOnPrimary": S.INITIAL_REPLICATION,
    "InitialReplicationCompletedOnRecovery": S.PROTECTED,
    "Protected": S.PROTECTED,
    "ProtectedStatesEnd": S.PROTECTED,
    # Planned and unplanned failover collapse onto the same canonical status
    "PlannedFailoverInProgress": S.PLANNED_FAILOVER_IN_PROGRESS,
    "PlannedFailoverCompleted": S.FAILED_OVER,
    "UnplannedFailoverInProgress": S.PLANNED_FAILOVER_IN_PROGRESS,
    "UnplannedFailoverCompleted": S.FAILED_OVER,
    "TestFailoverInProgress": S.PROTECTED,
    "TestFailoverCompleted": S.PROTECTED,
    "DisableProtectionInProgress": S.CANCELLED,
    "DisableProtectionCompleted": S.CANCELLED,
    "Invalid": S.FAILED,
}

MIGRATION_STATE_MAP = {
    "None": S.ENABLING,
    "EnableMigrationInProgress": S.ENABLING,
    "EnableMigrationFailed": S.FAILED,
    "InitialSeedingInProgress": S.INITIAL_REPLICATION,
    "InitialSeedingFailed": S.FAILED,
    "Replicating": S.REPLICATING,
    "MigrationInProgress": S.MIGRATION_IN_PROGRESS,
    "MigrationSucceeded": S.FAILED_OVER,
    "MigrationFailed": S.FAILED,
    "DisableMigrationInProgress": S.CANCELLED,
    "DisableMigrationFailed": S.FAILED,
}

TEST_MIGRATE_STATE_MAP = {
    "None": TestMigrateStatus.NONE,
    "TestMigrationInProgress": TestMigrateStatus.IN_PROGRESS,
    "TestMigrationSucceeded": TestMigrateStatus.SUCCEEDED,
    "TestMigrationFailed": TestMigrateStatus.FAILED,
    "TestMigrationCleanupInProgress": TestMigrateStatus.CLEANUP_IN_PROGRESS,
}

TERMINAL_STATUSES = frozenset({
    S.FAILED_OVER.value,
    S.FAILED.value,
    S.AZURE_ENABLE_FAILED.value,
    S.CANCELLED.value,
    S.MIGRATION_COMPLETED.value,
})

# Statuses that count as "now protected" when entered
STEADY_STATUSES = frozenset({S.REPLICATING.value, S.PROTECTED.value})

# Valid source statuses for test migrate / migrate
MIGRATABLE_STATUSES = (S.REPLICATING.value, S.PROTECTED.value, S.INITIAL_REPLICATION.value)


def is_terminal(status: Optional[str]) -> bool:
    return status in TERMINAL_STATUSES


def _map(table: dict, state: Optional[str], vocabulary: str) -> Tuple[str, bool]:
    if not state:
        return S.ENABLING.value, True
    mapped = table.get(state)
    if mapped is None:
        logger.warning(f"Unmapped {vocabulary} state '{state}' passed through unchanged")
        return state, False
    return mapped.value, True


def map_remote_state(migration_state: Optional[str], protection_state: Optional[str] = None) -> Tuple[str, bool]:
    """
    Map a remote item's state to a canonical status.

    The migration vocabulary wins when present; otherwise the protection
    vocabulary is used.

    Returns:
        (status, mapped) where mapped is False for pass-through values
    """
    if migration_state or not protection_state:
        return _map(MIGRATION_STATE_MAP, migration_state, "migration")
    return _map(PROTECTION_STATE_MAP, protection_state, "protection")


def map_test_migrate_state(state: Optional[str]) -> str:
    if not state:
        return TestMigrateStatus.NONE.value
    mapped = TEST_MIGRATE_STATE_MAP.get(state)
    return mapped.value if mapped else state
