import os

# Migration dashboard backend URL (Supabase PostgREST)
DSM_URL = os.getenv("DSM_URL", "http://127.0.0.1:54321")  # Defaults to local Supabase

# Supabase Service Role Key
# This is a SECRET - do not commit to version control!
SERVICE_ROLE_KEY = os.getenv("SERVICE_ROLE_KEY", "")  # Set via env var

# API Server Configuration (replication operations for the dashboard)
API_SERVER_HOST = os.getenv("API_SERVER_HOST", "0.0.0.0")
API_SERVER_PORT = int(os.getenv("API_SERVER_PORT", "8082"))
API_SERVER_ENABLED = os.getenv("API_SERVER_ENABLED", "true").lower() == "true"

# Azure service principal (overrides the azure_config row when set)
AZURE_TENANT_ID = os.getenv("AZURE_TENANT_ID", "")
AZURE_CLIENT_ID = os.getenv("AZURE_CLIENT_ID", "")
AZURE_CLIENT_SECRET = os.getenv("AZURE_CLIENT_SECRET", "")
AZURE_SUBSCRIPTION_ID = os.getenv("AZURE_SUBSCRIPTION_ID", "")
AZURE_RESOURCE_GROUP = os.getenv("AZURE_RESOURCE_GROUP", "")
AZURE_MIGRATE_PROJECT = os.getenv("AZURE_MIGRATE_PROJECT", "")

# Azure Resource Manager endpoint and token scope
AZURE_MGMT_URL = os.getenv("AZURE_MGMT_URL", "https://management.azure.com")
AZURE_MGMT_SCOPE = "https://management.azure.com/.default"

# Timeout for Azure management calls (connect, read)
AZURE_REQUEST_TIMEOUT = (10, 60)

# Polling interval (seconds)
POLL_INTERVAL = int(os.getenv("POLL_INTERVAL", "10"))  # Check for new jobs every 10 seconds

# Replication status reconciliation
RECONCILE_INTERVAL_SECONDS = int(os.getenv("RECONCILE_INTERVAL_SECONDS", "30"))
RECONCILE_MAX_RUNTIME_SECONDS = int(os.getenv("RECONCILE_MAX_RUNTIME_SECONDS", str(4 * 60 * 60)))  # 4 hours

# Replication events window for detailed status
EVENTS_LOOKBACK_HOURS = 72
EVENTS_LIMIT = 10

# Default source disk size when inventory reports none
DEFAULT_DISK_SIZE_GB = 128

# Log level for library loggers and the API server
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# SSL verification
VERIFY_SSL = False
