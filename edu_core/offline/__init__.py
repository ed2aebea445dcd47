# =============================================================================
# edu_core/offline/__init__.py
# Offline-First Storage and Sync for EduHub
# =============================================================================
"""
Offline-First Storage Module

All durable state lives on the device. The remote is an optional authority
for a handful of catalog collections and is pulled opportunistically.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                      OFFLINE-FIRST STORAGE                       │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                 Domain services                           │  │
│   │      (accounts, lessons, messaging, wallet)               │  │
│   └──────────────────────────────────────────────────────────┘  │
│              │                           │                      │
│              ▼                           ▼                      │
│   ┌──────────────────┐        ┌──────────────────────┐          │
│   │   RecordStore    │        │  ReferenceLifecycle  │          │
│   │ (JSON collections)│       │   -> BlobStore       │          │
│   └──────────────────┘        └──────────────────────┘          │
│              ▲                                                   │
│              │ wholesale replace                                 │
│   ┌──────────────────┐        ┌──────────────────┐              │
│   │ SyncCoordinator  │───────►│   SyncClient     │──► remote    │
│   │ (periodic pull)  │        │ (requests)       │              │
│   └──────────────────┘        └──────────────────┘              │
│              │                                                   │
│   ┌──────────────────┐                                          │
│   │ ConnectionMgr    │  probe once: reachable / unreachable     │
│   └──────────────────┘                                          │
└─────────────────────────────────────────────────────────────────┘
"""

from edu_core.offline.blob_store import (
    BlobStore,
    BlobEntry,
    BlobHandle,
)

from edu_core.offline.record_store import (
    RecordStore,
    RecordEncoder,
)

from edu_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionState,
    SyncState,
)

from edu_core.offline.sync_coordinator import (
    SyncCoordinator,
    SyncStats,
    PullReport,
)

from edu_core.offline.reference_lifecycle import (
    ReferenceLifecycle,
)

__all__ = [
    # Blob storage
    "BlobStore",
    "BlobEntry",
    "BlobHandle",
    # Record storage
    "RecordStore",
    "RecordEncoder",
    # Connection state
    "ConnectionManager",
    "ConnectionState",
    "SyncState",
    # Sync
    "SyncCoordinator",
    "SyncStats",
    "PullReport",
    # Blob references
    "ReferenceLifecycle",
]
