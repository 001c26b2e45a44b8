import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from bulkops.domain.errors import HandlerNotFoundError

logger = logging.getLogger(__name__)

# (item_id, options) -> snapshot of the item before the change
ItemHandler = Callable[[Any, dict[str, Any]], Awaitable[Any]]
# (item_id, snapshot) -> None, writes the snapshot back
Restorer = Callable[[Any, Any], Awaitable[None]]
# options -> None, raises ItemError or ValueError on a bad value
OptionValidator = Callable[[dict[str, Any]], Any]


@dataclass(frozen=True)
class HandlerSpec:
    operation_type: str
    operation_name: str
    handler: ItemHandler
    required_options: tuple[str, ...] = field(default=())
    option_validator: Optional[OptionValidator] = None

    def missing_options(self, options: dict[str, Any]) -> list[str]:
        return [
            name for name in self.required_options
            if options.get(name) is None or options.get(name) == ""
        ]


class HandlerRegistry:
    """
    Maps (operation_type, operation_name) to the coroutine applying that
    operation to one item, and operation_type to the coroutine that undoes it.
    """

    def __init__(self):
        self._handlers: dict[tuple[str, str], HandlerSpec] = {}
        self._restorers: dict[str, Restorer] = {}

    def register(
        self,
        operation_type: str,
        operation_name: str,
        handler: ItemHandler,
        required_options: tuple[str, ...] = (),
        option_validator: Optional[OptionValidator] = None,
    ) -> HandlerSpec:
        key = (operation_type, operation_name)
        if key in self._handlers:
            logger.warning("Replacing handler for %s.%s", operation_type, operation_name)
        spec = HandlerSpec(operation_type, operation_name, handler, tuple(required_options), option_validator)
        self._handlers[key] = spec
        return spec

    def handler(
        self,
        operation_type: str,
        operation_name: str,
        required_options: tuple[str, ...] = (),
        option_validator: Optional[OptionValidator] = None,
    ):
        """Decorator form of register()."""
        def decorator(func: ItemHandler) -> ItemHandler:
            self.register(operation_type, operation_name, func, required_options, option_validator)
            return func
        return decorator

    def register_restorer(self, operation_type: str, restorer: Restorer) -> None:
        self._restorers[operation_type] = restorer

    def restorer(self, operation_type: str):
        """Decorator form of register_restorer()."""
        def decorator(func: Restorer) -> Restorer:
            self.register_restorer(operation_type, func)
            return func
        return decorator

    def resolve(self, operation_type: str, operation_name: str) -> HandlerSpec:
        spec = self._handlers.get((operation_type, operation_name))
        if spec is None:
            raise HandlerNotFoundError(operation_type, operation_name)
        return spec

    def resolve_restorer(self, operation_type: str) -> Restorer:
        restorer = self._restorers.get(operation_type)
        if restorer is None:
            raise HandlerNotFoundError(operation_type)
        return restorer

    def operations(self, operation_type: Optional[str] = None) -> list[HandlerSpec]:
        specs = sorted(self._handlers.values(), key=lambda s: (s.operation_type, s.operation_name))
        if operation_type is not None:
            specs = [s for s in specs if s.operation_type == operation_type]
        return specs
