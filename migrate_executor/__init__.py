"""
Migrate Executor - Azure Migrate replication orchestration.

Provides:
- Site Recovery topology discovery and caching
- Replication enablement for machine groups
- Status reconciliation against Azure
- Test migration, migration, resync and cancel operations
"""

__version__ = "1.0.0"
