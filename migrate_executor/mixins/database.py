"""Database operations mixin for Migrate Executor"""

import requests
import urllib3
from typing import Any, Dict, Iterable, List, Optional
from datetime import datetime, timezone

from migrate_executor.config import DSM_URL, SERVICE_ROLE_KEY, VERIFY_SSL
from migrate_executor.status import TERMINAL_STATUSES
from migrate_executor.utils import _safe_json_parse, utc_now_iso

if not VERIFY_SSL:
    urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)


def _headers(prefer: Optional[str] = None) -> Dict[str, str]:
    headers = {
        "apikey": SERVICE_ROLE_KEY,
        "Authorization": f"Bearer {SERVICE_ROLE_KEY}",
        "Content-Type": "application/json",
    }
    if prefer:
        headers["Prefer"] = prefer
    return headers


def _in_list(values: Iterable[str]) -> str:
    return "(" + ",".join(f'"{v}"' for v in values) + ")"


class DatabaseMixin:
    """Mixin providing database operations for Migrate Executor"""

    # Jobs

    def get_pending_jobs(self, job_types: Optional[Iterable[str]] = None) -> List[Dict]:
        """
        Fetch pending jobs from the database

        Args:
            job_types: Only return jobs of these types (the executor's handler map)

        Returns:
            List of pending job dicts ready for execution
        """
        try:
            url = f"{DSM_URL}/rest/v1/jobs"
            params = {
                "status": "eq.pending",
                "select": "*",
                "order": "created_at.asc"
            }
            if job_types:
                params["job_type"] = f"in.{_in_list(job_types)}"

            response = requests.get(url, headers=_headers(), params=params, verify=VERIFY_SSL, timeout=10)
            self._handle_supabase_auth_error(response, "fetching pending jobs")

            if response.status_code == 200:
                jobs = _safe_json_parse(response)
                ready_jobs = []
                for job in jobs:
                    # Check if scheduled time has passed
                    if job.get('schedule_at'):
                        try:
                            scheduled_time = datetime.fromisoformat(job['schedule_at'].replace('Z', '+00:00'))
                            if scheduled_time > datetime.now(timezone.utc):
                                continue
                        except ValueError as e:
                            self.log(f"Error parsing schedule_at for job {job.get('id')}: {e}", "WARN")
                            continue
                    ready_jobs.append(job)
                return ready_jobs
            else:
                self.log(f"Error fetching jobs: {response.status_code}", "ERROR")
                return []
        except PermissionError:
            raise
        except Exception as e:
            self.log(f"Error fetching jobs: {e}", "ERROR")
            return []

    def update_job_status(
        self,
        job_id: str,
        status: str,
        details: Optional[Dict] = None,
        error: Optional[str] = None
    ) -> bool:
        """
        Update job status in database

        Args:
            job_id: Job UUID
            status: New status (pending, running, completed, failed, cancelled)
            details: Optional details dict to merge with existing details
            error: Optional error message for failed jobs

        Returns:
            True if update successful, False otherwise
        """
        try:
            url = f"{DSM_URL}/rest/v1/jobs"
            headers = _headers("return=minimal")
            params = {"id": f"eq.{job_id}"}

            payload: Dict[str, Any] = {"status": status}

            if status == "running":
                payload["started_at"] = utc_now_iso()
            elif status in ["completed", "failed", "cancelled"]:
                payload["completed_at"] = utc_now_iso()

            # Merge details with what is already stored
            if details:
                get_response = requests.get(
                    url,
                    headers=headers,
                    params={**params, "select": "details"},
                    verify=VERIFY_SSL,
                    timeout=10
                )
                payload["details"] = details
                if get_response.status_code == 200:
                    jobs = _safe_json_parse(get_response)
                    if jobs:
                        current_details = jobs[0].get('details') or {}
                        payload["details"] = {**current_details, **details}

            if error:
                current_details = payload.get("details", {})
                current_details["error"] = error
                payload["details"] = current_details

            response = requests.patch(url, headers=headers, params=params, json=payload,
                                      verify=VERIFY_SSL, timeout=10)

            if response.status_code in [200, 204]:
                return True
            else:
                self.log(f"Failed to update job {job_id}: {response.status_code}", "WARN")
                return False

        except Exception as e:
            self.log(f"Error updating job status: {e}", "ERROR")
            return False

    # Replication items

    def get_replication_items(self, active_only: bool = False) -> List[Dict]:
        """
        Fetch replication items, newest first

        Args:
            active_only: Exclude items in a terminal status

        Returns:
            List of replication item rows
        """
        try:
            params = {"select": "*", "order": "created_at.desc"}
            if active_only:
                params["status"] = f"not.in.{_in_list(sorted(TERMINAL_STATUSES))}"

            response = requests.get(f"{DSM_URL}/rest/v1/replication_items", headers=_headers(),
                                    params=params, verify=VERIFY_SSL, timeout=10)
            self._handle_supabase_auth_error(response, "fetching replication items")

            if response.status_code == 200:
                return _safe_json_parse(response)
            self.log(f"Error fetching replication items: {response.status_code}", "WARN")
            return []
        except PermissionError:
            raise
        except Exception as e:
            self.log(f"Error fetching replication items: {e}", "ERROR")
            return []

    def get_replication_item(self, item_id: str) -> Optional[Dict]:
        try:
            response = requests.get(
                f"{DSM_URL}/rest/v1/replication_items",
                headers=_headers(),
                params={"id": f"eq.{item_id}", "select": "*"},
                verify=VERIFY_SSL,
                timeout=10
            )
            if response.status_code == 200:
                items = _safe_json_parse(response)
                return items[0] if items else None
            self.log(f"Error fetching replication item {item_id}: {response.status_code}", "WARN")
            return None
        except Exception as e:
            self.log(f"Error fetching replication item: {e}", "ERROR")
            return None

    def find_active_item(self, machine_id: str, source_server_id: Optional[str] = None) -> Optional[Dict]:
        """
        Non-terminal replication item for a machine, if any

        Args:
            machine_id: Local machine id
            source_server_id: Azure Migrate machine id; also matches items created outside this system

        Raises:
            Exception: The store could not be queried (callers must not read this as "no item")
        """
        params = {
            "status": f"not.in.{_in_list(sorted(TERMINAL_STATUSES))}",
            "select": "*",
            "order": "created_at.desc",
            "limit": "1",
        }
        if source_server_id:
            params["or"] = f'(machine_id.eq."{machine_id}",source_server_id.eq."{source_server_id}")'
        else:
            params["machine_id"] = f"eq.{machine_id}"

        response = requests.get(f"{DSM_URL}/rest/v1/replication_items", headers=_headers(),
                                params=params, verify=VERIFY_SSL, timeout=10)
        self._handle_supabase_auth_error(response, "checking existing replication")
        if response.status_code != 200:
            raise Exception(f"Failed to check existing replication for {machine_id}: {response.status_code}")
        items = _safe_json_parse(response)
        return items[0] if items else None

    def find_items_by_remote_id(self, remote_id: str) -> List[Dict]:
        """
        Non-terminal replication items bound to a remote migration item, oldest first

        Raises:
            Exception: The store could not be queried
        """
        response = requests.get(
            f"{DSM_URL}/rest/v1/replication_items",
            headers=_headers(),
            params={
                "azure_protected_item_id": f"eq.{remote_id}",
                "status": f"not.in.{_in_list(sorted(TERMINAL_STATUSES))}",
                "select": "*",
                "order": "created_at.asc,id.asc",
            },
            verify=VERIFY_SSL,
            timeout=10
        )
        self._handle_supabase_auth_error(response, "fetching replication items by remote id")
        if response.status_code != 200:
            raise Exception(f"Failed to fetch replication items for {remote_id}: {response.status_code}")
        return _safe_json_parse(response) or []

    def create_replication_item(self, row: Dict) -> Optional[Dict]:
        """
        Insert a replication item

        Returns:
            The created row (with id) or None on failure
        """
        try:
            now = utc_now_iso()
            payload = {**row, "created_at": now, "updated_at": now}
            response = requests.post(
                f"{DSM_URL}/rest/v1/replication_items",
                headers=_headers("return=representation"),
                json=payload,
                verify=VERIFY_SSL,
                timeout=10
            )
            if response.status_code in [200, 201]:
                created = _safe_json_parse(response)
                if created and len(created) > 0:
                    return created[0]
            else:
                self.log(f"Failed to create replication item for {row.get('machine_name')}: "
                         f"{response.status_code} {response.text[:300]}", "WARN")
            return None
        except Exception as e:
            self.log(f"Error creating replication item: {e}", "ERROR")
            return None

    def update_replication_item(self, item_id: str, fields: Dict) -> bool:
        """Partial update; only the given columns are written"""
        try:
            payload = {**fields, "updated_at": utc_now_iso()}
            response = requests.patch(
                f"{DSM_URL}/rest/v1/replication_items",
                headers=_headers("return=minimal"),
                params={"id": f"eq.{item_id}"},
                json=payload,
                verify=VERIFY_SSL,
                timeout=10
            )
            if response.status_code in [200, 204]:
                return True
            self.log(f"Failed to update replication item {item_id}: {response.status_code}", "WARN")
            return False
        except Exception as e:
            self.log(f"Error updating replication item: {e}", "ERROR")
            return False

    def delete_replication_item(self, item_id: str) -> bool:
        try:
            response = requests.delete(
                f"{DSM_URL}/rest/v1/replication_items",
                headers=_headers("return=minimal"),
                params={"id": f"eq.{item_id}"},
                verify=VERIFY_SSL,
                timeout=10
            )
            if response.status_code in [200, 204]:
                return True
            self.log(f"Failed to delete replication item {item_id}: {response.status_code}", "WARN")
            return False
        except Exception as e:
            self.log(f"Error deleting replication item: {e}", "ERROR")
            return False

    # Groups and machines

    def get_group(self, group_id: str) -> Optional[Dict]:
        try:
            response = requests.get(
                f"{DSM_URL}/rest/v1/groups",
                headers=_headers(),
                params={"id": f"eq.{group_id}", "select": "*"},
                verify=VERIFY_SSL,
                timeout=10
            )
            if response.status_code == 200:
                groups = _safe_json_parse(response)
                return groups[0] if groups else None
            self.log(f"Error fetching group {group_id}: {response.status_code}", "WARN")
            return None
        except Exception as e:
            self.log(f"Error fetching group: {e}", "ERROR")
            return None

    def get_group_machines(self, group: Dict) -> List[Dict]:
        """Machines referenced by a group's machine_ids, in group order"""
        machine_ids = group.get("machine_ids") or []
        if not machine_ids:
            return []
        try:
            response = requests.get(
                f"{DSM_URL}/rest/v1/machines",
                headers=_headers(),
                params={"id": f"in.{_in_list(machine_ids)}", "select": "*"},
                verify=VERIFY_SSL,
                timeout=10
            )
            if response.status_code == 200:
                by_id = {m["id"]: m for m in _safe_json_parse(response)}
                return [by_id[mid] for mid in machine_ids if mid in by_id]
            self.log(f"Error fetching machines for group {group.get('id')}: {response.status_code}", "WARN")
            return []
        except Exception as e:
            self.log(f"Error fetching group machines: {e}", "ERROR")
            return []

    def update_group_status(self, group_id: str, status: str) -> bool:
        try:
            response = requests.patch(
                f"{DSM_URL}/rest/v1/groups",
                headers=_headers("return=minimal"),
                params={"id": f"eq.{group_id}"},
                json={"status": status, "updated_at": utc_now_iso()},
                verify=VERIFY_SSL,
                timeout=10
            )
            if response.status_code in [200, 204]:
                return True
            self.log(f"Failed to update group {group_id}: {response.status_code}", "WARN")
            return False
        except Exception as e:
            self.log(f"Error updating group status: {e}", "ERROR")
            return False

    # Activity log

    def log_activity(
        self,
        activity_type: str,
        action: str,
        title: str,
        description: str = "",
        status: str = "success",
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        metadata: Optional[Dict] = None
    ) -> bool:
        """
        Record a dashboard activity entry

        Args:
            activity_type: Activity category (e.g. 'replication', 'migration')
            action: Verb (e.g. 'enabled', 'migration_started')
            title: Short headline
            description: Longer text
            status: success, warning, error or info
            entity_type: Related entity kind ('group', 'machine')
            entity_id: Related entity id
            metadata: Free-form JSON

        Returns:
            True if recorded, False otherwise
        """
        try:
            payload = {
                "type": activity_type,
                "action": action,
                "title": title,
                "description": description,
                "status": status,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "metadata": metadata or {},
                "created_at": utc_now_iso(),
            }
            response = requests.post(
                f"{DSM_URL}/rest/v1/activity_logs",
                headers=_headers("return=minimal"),
                json=payload,
                verify=VERIFY_SSL,
                timeout=10
            )
            if response.status_code in [200, 201, 204]:
                return True
            self.log(f"Failed to record activity '{title}': {response.status_code}", "WARN")
            return False
        except Exception as e:
            self.log(f"Error recording activity: {e}", "ERROR")
            return False
