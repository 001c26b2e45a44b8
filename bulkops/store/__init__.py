from bulkops.store.base import OperationStore
from bulkops.store.memory import InMemoryOperationStore
from bulkops.store.sql import SqlOperationStore

__all__ = [
    "InMemoryOperationStore",
    "OperationStore",
    "SqlOperationStore",
]
