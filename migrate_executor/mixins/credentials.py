"""Azure credential resolution functionality for Migrate Executor"""

import requests
from typing import Optional

from migrate_executor import config
from migrate_executor.config import DSM_URL, SERVICE_ROLE_KEY, VERIFY_SSL
from migrate_executor.models import AzureConfig
from migrate_executor.utils import _safe_json_parse


class CredentialsMixin:
    """Mixin providing Azure service principal resolution for Migrate Executor"""

    # Class attributes (will be set by MigrateExecutor)
    encryption_key: Optional[str] = None

    def get_encryption_key(self) -> Optional[str]:
        """Fetch the encryption key from activity_settings (cached)"""
        if self.encryption_key:
            return self.encryption_key

        try:
            url = f"{DSM_URL}/rest/v1/activity_settings"
            headers = {
                "apikey": SERVICE_ROLE_KEY,
                "Authorization": f"Bearer {SERVICE_ROLE_KEY}",
            }
            params = {"select": "encryption_key", "limit": "1"}

            response = requests.get(url, headers=headers, params=params, verify=VERIFY_SSL, timeout=10)
            self._handle_supabase_auth_error(response, "loading encryption key")
            if response.status_code == 200:
                settings = _safe_json_parse(response)
                if settings and len(settings) > 0:
                    self.encryption_key = settings[0].get('encryption_key')
                    if self.encryption_key:
                        self.log("Encryption key loaded successfully", "INFO")
                    return self.encryption_key

            self.log("Failed to load encryption key", "WARN")
            return None
        except PermissionError:
            raise
        except Exception as e:
            self.log(f"Error loading encryption key: {e}", "ERROR")
            return None

    def decrypt_secret(self, encrypted_value: str) -> Optional[str]:
        """Decrypt a stored secret using the database decrypt function"""
        if not encrypted_value:
            return None

        try:
            encryption_key = self.get_encryption_key()
            if not encryption_key:
                self.log("Cannot decrypt: encryption key not available", "ERROR")
                return None

            url = f"{DSM_URL}/rest/v1/rpc/decrypt_password"
            headers = {
                "apikey": SERVICE_ROLE_KEY,
                "Authorization": f"Bearer {SERVICE_ROLE_KEY}",
                "Content-Type": "application/json"
            }
            payload = {
                "encrypted": encrypted_value,
                "key": encryption_key
            }

            response = requests.post(url, headers=headers, json=payload, verify=VERIFY_SSL, timeout=10)
            self._handle_supabase_auth_error(response, "decrypting Azure client secret")
            if response.status_code == 200:
                # RPC returns the decrypted string directly
                decrypted = _safe_json_parse(response)
                if decrypted and isinstance(decrypted, str):
                    return decrypted
                self.log("Decryption returned null - possibly corrupted data", "WARN")
                return None
            self.log(f"Decryption failed: {response.status_code} - {response.text}", "ERROR")
            return None
        except PermissionError:
            raise
        except Exception as e:
            self.log(f"Error decrypting secret: {e}", "ERROR")
            return None

    def get_azure_config(self) -> AzureConfig:
        """
        Load the Azure service principal and target scope.

        Reads the 'default' azure_config row; AZURE_* environment variables
        override individual fields. A stored client_secret_encrypted value is
        decrypted through the database when no plain secret is present.

        Returns:
            AzureConfig (check is_configured before use)
        """
        row = {}
        try:
            response = requests.get(
                f"{DSM_URL}/rest/v1/azure_config",
                headers={"apikey": SERVICE_ROLE_KEY, "Authorization": f"Bearer {SERVICE_ROLE_KEY}"},
                params={"id": "eq.default", "select": "*"},
                verify=VERIFY_SSL,
                timeout=10
            )
            self._handle_supabase_auth_error(response, "loading Azure configuration")
            if response.status_code == 200:
                rows = _safe_json_parse(response)
                row = rows[0] if rows else {}
            else:
                self.log(f"Error fetching Azure configuration: {response.status_code}", "WARN")
        except PermissionError:
            raise
        except Exception as e:
            self.log(f"Error fetching Azure configuration: {e}", "ERROR")

        client_secret = config.AZURE_CLIENT_SECRET or row.get("client_secret") or ""
        if not client_secret and row.get("client_secret_encrypted"):
            client_secret = self.decrypt_secret(row["client_secret_encrypted"]) or ""

        return AzureConfig(
            tenant_id=config.AZURE_TENANT_ID or row.get("tenant_id") or "",
            client_id=config.AZURE_CLIENT_ID or row.get("client_id") or "",
            client_secret=client_secret,
            subscription_id=config.AZURE_SUBSCRIPTION_ID or row.get("subscription_id") or "",
            resource_group=config.AZURE_RESOURCE_GROUP or row.get("resource_group") or "",
            migrate_project_name=config.AZURE_MIGRATE_PROJECT or row.get("migrate_project_name"),
            location=row.get("location"),
        )
