class BulkOperationError(Exception):
    """Base exception for bulk operation engine errors."""
    pass

class ValidationError(BulkOperationError):
    """Submission rejected before any record was created."""
    pass

class OperationNotFoundError(BulkOperationError):
    def __init__(self, operation_id):
        self.operation_id = operation_id
        super().__init__(f"Operation {operation_id} not found")

class InvalidOperationStateError(BulkOperationError):
    def __init__(self, current_status, action):
        self.current_status = current_status
        self.action = action
        super().__init__(f"Cannot {action} an operation in status {current_status}")

class OperationConflictError(BulkOperationError):
    pass

class HandlerNotFoundError(BulkOperationError):
    def __init__(self, operation_type, operation_name=None):
        self.operation_type = operation_type
        self.operation_name = operation_name
        if operation_name is None:
            super().__init__(f"No restorer registered for {operation_type}")
        else:
            super().__init__(f"Unknown operation {operation_type}.{operation_name}")

class ItemError(BulkOperationError):
    """A handler could not apply its change to one item."""
    pass

class RollbackError(BulkOperationError):
    """A restorer could not write a snapshot back."""
    pass
