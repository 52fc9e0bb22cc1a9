# API module: FastAPI dependencies for routes guarded by setlist-guard.

from .dependencies import ensure_authorized, get_client_ip, get_correlation_id

__all__ = ["ensure_authorized", "get_client_ip", "get_correlation_id"]
