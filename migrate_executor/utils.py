import math
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

GIB = 1024 ** 3


def utc_now_iso() -> str:
    """Return current UTC time as ISO format string with timezone info."""
    return datetime.now(timezone.utc).isoformat()


UNICODE_FALLBACKS = {
    "\u2713": "[OK]",
    "\u2717": "[X]",
    "\u2026": "...",
    "\u2013": "-",
    "\u2014": "-",
}


def _normalize_unicode(text: str) -> str:
    """Replace problematic Unicode characters with ASCII equivalents."""
    for bad, repl in UNICODE_FALLBACKS.items():
        text = text.replace(bad, repl)
    return text


def _safe_to_stdout(text: str) -> str:
    """Ensure text can be encoded to stdout without exceptions."""
    enc = getattr(sys.stdout, "encoding", None) or "utf-8"
    try:
        return text.encode(enc, errors="replace").decode(enc, errors="replace")
    except Exception:
        return text.encode("ascii", errors="replace").decode("ascii", errors="replace")


def _safe_json_parse(response: Any):
    """Safely parse JSON response, returning parsed body or a raw-text marker on failure."""
    try:
        return response.json()
    except Exception:
        full_text = response.text if hasattr(response, "text") else str(response.content)
        # Truncate for logging purposes only
        return {"_raw_response": full_text[:2000], "_parse_error": "Not valid JSON"}


def normalize_region(region: Optional[str]) -> str:
    """Normalize an Azure region name for comparison ("Australia East" -> "australiaeast")."""
    if not region:
        return ""
    return "".join(region.split()).lower()


def arm_name(resource_id: Optional[str]) -> str:
    """Return the last segment of an ARM resource id."""
    if not resource_id:
        return ""
    return resource_id.rstrip("/").split("/")[-1]


def parse_arm_segments(resource_id: Optional[str]) -> Dict[str, str]:
    """
    Split an ARM id into a {collection: name} dict.

    /subscriptions/s/resourceGroups/rg/providers/Microsoft.RecoveryServices/vaults/v/...
    yields {'subscriptions': 's', 'resourcegroups': 'rg', 'vaults': 'v', ...}.
    Keys are lower-cased because ARM ids are case-insensitive.
    """
    segments: Dict[str, str] = {}
    if not resource_id:
        return segments
    parts = [p for p in resource_id.strip("/").split("/") if p]
    i = 0
    while i + 1 < len(parts):
        if parts[i].lower() == "providers":
            i += 2  # skip provider namespace
            continue
        segments[parts[i].lower()] = parts[i + 1]
        i += 2
    return segments


def bytes_to_gb_ceil(size_bytes: int) -> int:
    """Round a byte count up to whole GiB."""
    return int(math.ceil(size_bytes / GIB))
