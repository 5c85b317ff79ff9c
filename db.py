"""Supabase client wiring. The Streamlit app gets a cached DatabaseClient; scripts use the uncached one."""
import streamlit as st
from supabase import Client, create_client

from emt_trainer.config import get_settings
from emt_trainer.database import DatabaseClient


def _env_client() -> Client:
    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_key:
        raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set")
    return create_client(settings.supabase_url, settings.supabase_key)


@st.cache_resource
def get_database() -> DatabaseClient:
    return DatabaseClient(_env_client())


def get_database_uncached() -> DatabaseClient:
    """For CLI/scripts (no Streamlit context)."""
    return DatabaseClient(_env_client())
