"""
Azure Migrate / Site Recovery Integration Module

Gateway and typed operations for the VMwareCbt (agentless) server
migration scenario. All management calls go through
AzureManagementAdapter for authentication and error translation.
"""

__version__ = "1.0.0"

from .adapter import AzureManagementAdapter, AcceptedOperation
from .operations import SiteRecoveryOperations, job_reference
from .inventory import MigrateInventory, normalize_disks
from .errors import (
    MigrateError,
    AuthError,
    ConfigurationError,
    NotFoundError,
    TransientQueryError,
    RemoteApiError,
    PreconditionError,
    ItemNotFoundError,
    parse_arm_error,
)

__all__ = [
    "AzureManagementAdapter",
    "AcceptedOperation",
    "SiteRecoveryOperations",
    "job_reference",
    "MigrateInventory",
    "normalize_disks",
    "MigrateError",
    "AuthError",
    "ConfigurationError",
    "NotFoundError",
    "TransientQueryError",
    "RemoteApiError",
    "PreconditionError",
    "ItemNotFoundError",
    "parse_arm_error",
]
