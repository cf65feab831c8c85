"""
Azure Migrate discovered-machine inventory (Microsoft.OffAzure VMware sites).

The inventory is the source of truth for disk identity and size; callers'
disk lists are only ever used as positional overrides.
"""

from typing import Any, Dict, List, Optional

from . import endpoints
from .adapter import AzureManagementAdapter


def normalize_disks(raw_disks: Any) -> List[Dict[str, Any]]:
    """
    Flatten OffAzure disk records into an ordered list.

    OffAzure returns disks either as a list or as a dict keyed by disk key;
    both keep the hypervisor's order, which puts the OS disk first.

    Returns:
        List of {disk_id, name, size_bytes} dicts; size_bytes is None when unknown
    """
    if isinstance(raw_disks, dict):
        records = list(raw_disks.values())
    elif isinstance(raw_disks, list):
        records = raw_disks
    else:
        return []

    disks = []
    for record in records:
        if not isinstance(record, dict):
            continue
        disk_id = record.get("uuid") or record.get("diskId")
        if not disk_id:
            continue
        size_bytes = record.get("maxSizeInBytes")
        if not size_bytes and record.get("megabytesOfSize"):
            size_bytes = int(record["megabytesOfSize"]) * 1024 * 1024
        disks.append({
            "disk_id": disk_id,
            "name": record.get("displayName") or record.get("name") or record.get("label") or disk_id,
            "size_bytes": int(size_bytes) if size_bytes else None,
        })
    return disks


class MigrateInventory:
    """Reads discovered machines from an Azure Migrate VMware site."""

    def __init__(self, adapter: AzureManagementAdapter):
        self.adapter = adapter

    def list_discovered_machines(self, vmware_site_id: str) -> List[Dict[str, Any]]:
        """
        List machines discovered by the appliance for a VMware site.

        Args:
            vmware_site_id: Full ARM id of the Microsoft.OffAzure/VMwareSites resource

        Returns:
            List of {id, name, display_name, os_type, power_status} dicts
        """
        machines = []
        next_path: Optional[str] = endpoints.with_version(f"{vmware_site_id}/machines",
                                                          endpoints.API_VERSION_OFFAZURE)
        while next_path:
            response = self.adapter.call("GET", next_path)
            if not isinstance(response, dict):
                break
            for raw in response.get("value") or []:
                props = raw.get("properties") or {}
                machines.append({
                    "id": raw.get("id"),
                    "name": raw.get("name"),
                    "display_name": props.get("displayName") or raw.get("name"),
                    "os_type": (props.get("operatingSystemDetails") or {}).get("osType") or props.get("osType"),
                    "power_status": props.get("powerStatus"),
                })
            next_path = response.get("nextLink")
        return machines

    def get_machine_details(self, machine_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch one discovered machine with its disks.

        Args:
            machine_id: Full ARM id of the discovered machine

        Returns:
            {id, name, display_name, os_type, ip_addresses, disks} or None if not found
        """
        raw = self.adapter.call("GET", endpoints.with_version(machine_id, endpoints.API_VERSION_OFFAZURE))
        if not isinstance(raw, dict):
            return None

        props = raw.get("properties") or {}
        ip_addresses = list(props.get("ipAddresses") or [])
        for nic in props.get("networkAdapters") or []:
            for ip in nic.get("ipAddressList") or []:
                if ip not in ip_addresses:
                    ip_addresses.append(ip)

        os_details = props.get("operatingSystemDetails") or {}
        return {
            "id": raw.get("id", machine_id),
            "name": raw.get("name"),
            "display_name": props.get("displayName") or raw.get("name"),
            "os_type": os_details.get("osType") or props.get("osType"),
            "ip_addresses": ip_addresses,
            "disks": normalize_disks(props.get("disks")),
        }
