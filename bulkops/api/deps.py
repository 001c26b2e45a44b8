from typing import Annotated

from fastapi import Depends, Request

from bulkops.services.engine import BulkOperationEngine

def get_engine(request: Request) -> BulkOperationEngine:
    return request.app.state.engine

# Dependency for the engine wired up in the app lifespan
Engine = Annotated[BulkOperationEngine, Depends(get_engine)]
