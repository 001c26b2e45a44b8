from enum import StrEnum, auto

class OperationStatus(StrEnum):
    PENDING = auto()          # Created, waiting for the executor
    RUNNING = auto()          # Claimed by an executor, items being processed
    COMPLETED = auto()        # All items processed without errors
    FAILED = auto()           # Finished with at least one item error (or system failure)
    CANCELLED = auto()        # Stopped by a cancel request
    ROLLED_BACK = auto()      # Completed, then every snapshot restored
    ROLLBACK_FAILED = auto()  # Completed, then rollback hit at least one restore error

ACTIVE_STATUSES = frozenset({OperationStatus.PENDING, OperationStatus.RUNNING})

TERMINAL_STATUSES = frozenset({
    OperationStatus.COMPLETED,
    OperationStatus.FAILED,
    OperationStatus.CANCELLED,
    OperationStatus.ROLLED_BACK,
    OperationStatus.ROLLBACK_FAILED,
})
