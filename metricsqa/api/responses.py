import time
from typing import Any, Dict


def timestamp_ms() -> int:
    return int(time.time() * 1000)


def error_payload(error: str) -> Dict[str, Any]:
    """Body shared by every failed request."""
    return {"success": False, "error": error, "timestamp": timestamp_ms()}
