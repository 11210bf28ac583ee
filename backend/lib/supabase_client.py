"""
Supabase client for backend operations
"""
from typing import Optional

from supabase import create_client, Client

from arabic_tutor_agent.errors import ConfigurationError
from arabic_tutor_agent.settings import TutorSettings

_supabase_client: Optional[Client] = None


def get_supabase_client(settings: TutorSettings) -> Client:
    """Get or create the Supabase client singleton (service role key)."""
    global _supabase_client

    if _supabase_client is None:
        if not settings.supabase_configured:
            raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment")

        _supabase_client = create_client(settings.supabase_url, settings.supabase_service_key)

    return _supabase_client
