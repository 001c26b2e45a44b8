from .client import OperationsClient, OperationsClientError, TERMINAL_STATUSES

__all__ = [
    "OperationsClient",
    "OperationsClientError",
    "TERMINAL_STATUSES",
]
