"""Persistence — storage ports plus in-memory and file-backed stores."""

from agtrace.persistence.event_log import FileBatchEventStore
from agtrace.persistence.memory import (
    InMemoryBatchEventStore,
    InMemoryMirrorMappingStore,
    InMemoryOrderStore,
    InMemoryVerificationStore,
)
from agtrace.persistence.state_store import (
    FileMirrorMappingStore,
    FileOrderStore,
    FileVerificationStore,
)
from agtrace.persistence.stores import (
    BatchEventStore,
    MirrorMappingStore,
    OrderStore,
    VerificationStore,
)

__all__ = [
    "BatchEventStore",
    "FileBatchEventStore",
    "FileMirrorMappingStore",
    "FileOrderStore",
    "FileVerificationStore",
    "InMemoryBatchEventStore",
    "InMemoryMirrorMappingStore",
    "InMemoryOrderStore",
    "InMemoryVerificationStore",
    "MirrorMappingStore",
    "OrderStore",
    "VerificationStore",
]
