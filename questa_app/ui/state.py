from __future__ import annotations
import streamlit as st
from questa_app.cache import TTLCache
from questa_app.config import settings
from questa_app.documents import DocumentStore
from questa_app.logging_setup import setup_logging
from questa_app.repository import QuestaRepository
from questa_app.services.admin_actions import AdminActions
from questa_app.services.notifier import Notifier
from questa_app.services.storage_client import StorageClient
from questa_app.services.user_actions import UserActions

@st.cache_resource
def get_repository() -> QuestaRepository:
    setup_logging(level=settings.log_level, log_dir=settings.log_dir)
    store = DocumentStore.from_url(settings.database_url)
    return QuestaRepository(store, cache=TTLCache(ttl_seconds=settings.cache_ttl_seconds))

@st.cache_resource
def get_notifier() -> Notifier:
    return Notifier.from_settings()

@st.cache_resource
def get_storage() -> StorageClient | None:
    return StorageClient.from_settings()

def user_actions() -> UserActions:
    return UserActions(get_repository(), storage=get_storage(), notifier=get_notifier())

def admin_actions() -> AdminActions:
    return AdminActions(get_repository(), notifier=get_notifier(), admin_id=st.session_state.get("uid"))

def init_session_state() -> None:
    st.session_state.setdefault("uid", "")
    st.session_state.setdefault("confirm_delete_task", None)
    st.session_state.setdefault("edit_task", None)
    st.session_state.setdefault("reject_withdrawal", None)

def refresh_data() -> None:
    """Drop every cached listing so the next read goes to the database."""
    get_repository().cache.clear()
