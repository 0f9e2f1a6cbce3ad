from supabase import create_client, Client

from app.core.config import SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY

_SUPABASE: Client | None = None


def supabase_admin() -> Client:
    """Service-role client shared by the process. Bypasses row level security."""
    global _SUPABASE
    if _SUPABASE is not None:
        return _SUPABASE

    if not SUPABASE_URL or not SUPABASE_SERVICE_ROLE_KEY:
        raise RuntimeError("Missing SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY")

    _SUPABASE = create_client(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)
    return _SUPABASE
