"""Storage collaborators: step cache, object store, status and audit sinks."""

from .object_store import InMemoryObjectStore, LocalObjectStore, ObjectStore
from .status import InMemoryStatusSink, StatusSink
from .step_cache import DurableStepCache, InMemoryStepCache, RedisStepCache

__all__ = [
    "InMemoryObjectStore",
    "LocalObjectStore",
    "ObjectStore",
    "InMemoryStatusSink",
    "StatusSink",
    "DurableStepCache",
    "InMemoryStepCache",
    "RedisStepCache",
]
