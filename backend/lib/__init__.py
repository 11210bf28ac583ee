"""Backend utilities"""
from .supabase_client import get_supabase_client
from .auth import authenticate, bearer_token

__all__ = ["get_supabase_client", "authenticate", "bearer_token"]
