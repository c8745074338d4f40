"""Lookup providers that formulas resolve symbols against.

Resolution order is explicit: per-instruction bindings (``item``, ``value``,
``def``, ``collection``), then session globals, then the shared variable
store. Each provider is a plain mapping and the chain is a ``ChainMap``.
"""

import threading
from collections import ChainMap
from collections.abc import Callable, Iterator, Mapping
from typing import Any

from .compiler import compile_formula


class SharedVariables(Mapping[str, Any]):
    """Process-wide variable store shared by formulas and ``state`` instructions.

    Reads follow the mapping protocol. Writes go through the atomic
    ``get_or_add``, ``add_or_update`` and ``try_remove``. The lock is
    re-entrant because factories usually evaluate formulas that read the
    store again.
    """

    def __init__(self, values: Mapping[str, Any] | None = None):
        self._values: dict[str, Any] = dict(values or {})
        self._lock = threading.RLock()

    def __getitem__(self, key: str) -> Any:
        with self._lock:
            return self._values[key]

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._values))

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)

    def __repr__(self) -> str:
        with self._lock:
            return f"SharedVariables({self._values!r})"

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value

    def get_or_add(self, key: str, factory: Callable[[], Any]) -> Any:
        with self._lock:
            if key in self._values:
                return self._values[key]
            value = self._values[key] = factory()
            return value

    def add_or_update(
        self,
        key: str,
        add_factory: Callable[[], Any],
        update_factory: Callable[[Any], Any],
    ) -> Any:
        with self._lock:
            if key in self._values:
                value = update_factory(self._values[key])
            else:
                value = add_factory()
            self._values[key] = value
            return value

    def try_remove(self, key: str) -> bool:
        with self._lock:
            return self._values.pop(key, _MISSING) is not _MISSING

    def clear(self) -> None:
        with self._lock:
            self._values.clear()


_MISSING = object()

shared_variables = SharedVariables()
session_globals: dict[str, Any] = {}


def set_global(name: str, value: Any) -> None:
    """Expose a host object (e.g. the running game) to every formula."""
    session_globals[name] = value


class Scope:
    """Builds the lookup chain for one evaluation and runs formulas in it."""

    def __init__(
        self,
        store: SharedVariables | None = None,
        globals_: Mapping[str, Any] | None = None,
    ):
        self.store = store if store is not None else shared_variables
        self.globals = globals_ if globals_ is not None else session_globals

    def chain(self, bindings: Mapping[str, Any] | None = None) -> ChainMap:
        return ChainMap(dict(bindings or {}), self.globals, self.store)

    def compile(self, text: str, bindings: Mapping[str, Any] | None = None):
        return compile_formula(text, self.chain(bindings))

    def evaluate(self, text: str, bindings: Mapping[str, Any] | None = None) -> Any:
        return self.compile(text, bindings)()
