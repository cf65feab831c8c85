"""Disk resolution for enable-replication requests"""

from typing import Dict, List, Optional, Sequence

from migrate_executor.config import DEFAULT_DISK_SIZE_GB
from migrate_executor.models import DiskConfig, DiskOverride
from migrate_executor.utils import GIB, bytes_to_gb_ceil

DEFAULT_DISK_TYPE = "Standard_LRS"


class DiskResolutionError(ValueError):
    pass


def resolve_disks(inventory_disks: Sequence[Dict], overrides: Optional[Sequence[DiskOverride]] = None) -> List[DiskConfig]:
    """
    Build the disk list for one machine.

    Disk identity and size come from the inventory record. Caller overrides
    are matched by position only (caller disk ids may be placeholders), and
    index 0 is always the OS disk.

    Args:
        inventory_disks: normalize_disks() output for the machine
        overrides: Optional caller-supplied settings, same order as the inventory

    Returns:
        List of DiskConfig with target_size_gb >= source size

    Raises:
        DiskResolutionError: The inventory reports no disks
    """
    if not inventory_disks:
        raise DiskResolutionError("No disks found in Azure Migrate inventory for this machine")

    overrides = overrides or []
    disks = []
    for index, disk in enumerate(inventory_disks):
        override = overrides[index] if index < len(overrides) else None

        source_bytes = disk.get("size_bytes") or DEFAULT_DISK_SIZE_GB * GIB
        source_gb = bytes_to_gb_ceil(source_bytes)

        target_gb = source_gb
        if override and override.target_disk_size_gb and override.target_disk_size_gb >= source_gb:
            target_gb = override.target_disk_size_gb

        disks.append(DiskConfig(
            source_disk_id=disk["disk_id"],
            is_os_disk=index == 0,
            disk_type=(override.disk_type if override and override.disk_type else DEFAULT_DISK_TYPE),
            source_size_bytes=source_bytes,
            target_size_gb=target_gb,
        ))
    return disks
