"""Registry of named, invocable functions."""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict

from ..errors import FunctionExecutionError, FunctionNotFound

logger = logging.getLogger(__name__)


class Invocable(Protocol):
    """A unit of work called with a parameter mapping."""

    def __call__(self, parameters: Dict[str, Any]) -> Union[Any, Awaitable[Any]]: ...


class FunctionEntry(BaseModel):
    """A registered function."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    name: str
    handler: Callable[..., Any]
    description: Optional[str] = None


class FunctionRegistry:
    """Name-keyed registry with call-by-name dispatch.

    Registering under an existing name replaces the previous handler. Lookups
    read a plain dict and need no locking; writes are serialized with a
    coarse lock so registration can happen from any thread.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, FunctionEntry] = {}
        self._lock = threading.Lock()

    def register(
        self, name: str, handler: Invocable, description: Optional[str] = None
    ) -> None:
        entry = FunctionEntry(name=name, handler=handler, description=description)
        with self._lock:
            replaced = name in self._entries
            self._entries = {**self._entries, name: entry}
        if replaced:
            logger.info(f"Replaced function: {name}")
        else:
            logger.info(f"Registered function: {name}")

    def function(
        self, name: Optional[str] = None, description: Optional[str] = None
    ) -> Callable[[Invocable], Invocable]:
        """Decorator form of :meth:`register`."""

        def decorator(handler: Invocable) -> Invocable:
            self.register(
                name or getattr(handler, "__name__", str(handler)),
                handler,
                description=description or inspect.getdoc(handler),
            )
            return handler

        return decorator

    def unregister(self, name: str) -> None:
        with self._lock:
            if name not in self._entries:
                raise FunctionNotFound(name)
            self._entries = {k: v for k, v in self._entries.items() if k != name}

    def get(self, name: str) -> FunctionEntry:
        entry = self._entries.get(name)
        if entry is None:
            raise FunctionNotFound(name)
        return entry

    def names(self) -> List[str]:
        return sorted(self._entries)

    def entries(self) -> List[FunctionEntry]:
        return [self._entries[name] for name in self.names()]

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def invoke(
        self, name: str, parameters: Dict[str, Any], offload: bool = False
    ) -> Any:
        """Call ``name`` with ``parameters``.

        Sync handlers run on the event loop unless ``offload`` is set, in
        which case they run in a worker thread so a caller's timeout can
        fire while they block. A timed-out thread is not interrupted; it
        runs to completion and its result is discarded.

        Raises:
            FunctionNotFound: If ``name`` is not registered.
            FunctionExecutionError: If the handler raises.
        """
        entry = self.get(name)
        logger.debug(f"Executing function '{name}' with parameters: {parameters}")
        try:
            if offload and not inspect.iscoroutinefunction(entry.handler):
                result = await asyncio.to_thread(entry.handler, parameters)
            else:
                result = entry.handler(parameters)
            if inspect.isawaitable(result):
                result = await result
        except FunctionExecutionError:
            raise
        except Exception as e:
            logger.warning(f"Error executing function '{name}': {e}")
            raise FunctionExecutionError(name, e) from e
        return result
