"""
API client for the remote authority
"""
from .sync_client import APIConfig, SyncClient

__all__ = [
    "APIConfig",
    "SyncClient",
]
