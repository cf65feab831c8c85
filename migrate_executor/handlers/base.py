"""Base handler class for replication jobs"""

from typing import Dict, Optional

from migrate_executor.azure_migrate.errors import ConfigurationError, PreconditionError
from migrate_executor.models import TopologyCache


class BaseHandler:
    """Base class for all job handlers with shared utilities"""

    def __init__(self, executor):
        """
        Initialize handler with reference to main executor

        Args:
            executor: MigrateExecutor instance providing the store, Azure clients and topology cache
        """
        self.executor = executor

    def log(self, message: str, level: str = "INFO"):
        """
        Log message with timestamp

        Args:
            message: Log message
            level: Log level (INFO, WARN, ERROR, DEBUG)
        """
        self.executor.log(message, level)

    def update_job_status(self, job_id: str, status: str, **kwargs) -> bool:
        return self.executor.update_job_status(job_id, status, **kwargs)

    def require_topology(self, ready: bool = False) -> TopologyCache:
        """
        Current topology snapshot, or raise

        Args:
            ready: Also require a replication policy (provisioning-ready)

        Raises:
            ConfigurationError: Topology cannot be resolved (or has no policy when ready=True)
        """
        topology = self.executor.cache.get()
        if topology is None:
            raise ConfigurationError(
                "Azure Migrate infrastructure not found. Ensure the Azure Migrate appliance is "
                "configured and replication infrastructure is set up in the portal."
            )
        if ready and not topology.is_provisioning_ready:
            raise ConfigurationError(
                "No replication policy found. Initialize replication infrastructure in Azure Migrate first."
            )
        return topology

    def handle_error(self, job: Dict, error: Exception, context: str = ""):
        """
        Standard error handling pattern for job execution

        Args:
            job: Job dict
            error: Exception that occurred
            context: Context description for error message
        """
        error_msg = f"{context}: {str(error)}" if context else str(error)
        self.log(f"Job {job['id']} failed: {error_msg}", "ERROR")
        details = None
        if isinstance(error, PreconditionError):
            details = {
                "current_status": error.current_status,
                "required_statuses": error.required_statuses,
            }
        self.update_job_status(job['id'], "failed", details=details, error=error_msg)

    def mark_job_running(self, job: Dict) -> bool:
        return self.update_job_status(job['id'], "running")

    def mark_job_completed(self, job: Dict, details: Optional[Dict] = None) -> bool:
        """
        Mark job as completed with optional result details

        Args:
            job: Job dict
            details: Optional result details

        Returns:
            True if successful
        """
        return self.update_job_status(job['id'], "completed", details=details)

    def mark_job_failed(self, job: Dict, error: str, details: Optional[Dict] = None) -> bool:
        return self.update_job_status(job['id'], "failed", details=details, error=error)
