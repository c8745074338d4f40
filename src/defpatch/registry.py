"""Definition registry - maps definition-type names to their collections.

Example usage:
    from defpatch import DefinitionRegistry, IndexedDefinitions

    registry = DefinitionRegistry()
    registry.register("Resource", Resource, IndexedDefinitions(id_field="ResourceId"))
    registry.register_dynamic("Game", GameSettings, lambda: [settings], phase="dynamic")

    collection, id_field = registry.get_collection("Resource")
"""

from collections.abc import Callable, Iterable, MutableSequence
from dataclasses import dataclass
from typing import Any

from .definitions import is_indexed
from .errors import RegistryError
from .shapes import describe


@dataclass
class DefinitionEntry:
    """One registered definition type."""

    type_name: str
    record_type: type
    phase: str
    collection: MutableSequence | None = None
    id_field: str | None = None
    records: Callable[[], Iterable[Any]] | None = None  # dynamic definitions only

    @property
    def dynamic(self) -> bool:
        return self.records is not None

    @property
    def indexed(self) -> bool:
        return is_indexed(self.collection)


class DefinitionRegistry:
    """Registry of patchable definition types."""

    def __init__(self):
        self._entries: dict[str, DefinitionEntry] = {}

    def register(
        self,
        type_name: str,
        record_type: type,
        collection: MutableSequence,
        id_field: str | None = None,
        phase: str = "static",
    ) -> DefinitionEntry:
        """Register a collection of definitions.

        The identity field is resolved now, so an undiscoverable one fails at
        registration rather than during a patch pass.
        """
        id_field = describe(record_type).identity_field(id_field)
        entry = DefinitionEntry(type_name, record_type, phase, collection, id_field)
        self._entries[type_name] = entry
        return entry

    def register_dynamic(
        self,
        type_name: str,
        record_type: type,
        records: Callable[[], Iterable[Any]],
        phase: str = "dynamic",
    ) -> DefinitionEntry:
        """Register a non-list definition; ``records`` yields the instances to patch."""
        entry = DefinitionEntry(type_name, record_type, phase, records=records)
        self._entries[type_name] = entry
        return entry

    def __contains__(self, type_name: str) -> bool:
        return type_name in self._entries

    def find(self, type_name: str) -> DefinitionEntry | None:
        return self._entries.get(type_name)

    def get(self, type_name: str) -> DefinitionEntry:
        entry = self._entries.get(type_name)
        if entry is None:
            raise RegistryError(f"unknown definition type: {type_name}")
        return entry

    def get_collection(self, type_name: str) -> tuple[MutableSequence, str]:
        entry = self.get(type_name)
        if entry.dynamic:
            raise RegistryError(f"{type_name} is a dynamic definition, not a collection")
        return entry.collection, entry.id_field

    def is_indexed(self, type_name: str) -> bool:
        return self.get(type_name).indexed

    def entries(self, phase: str | None = None) -> list[DefinitionEntry]:
        return [e for e in self._entries.values() if phase is None or e.phase == phase]

    def identity_fields(self) -> dict[type, str]:
        """Identity field of every registered collection type, keyed by record type."""
        return {e.record_type: e.id_field for e in self._entries.values() if not e.dynamic}

    @property
    def phases(self) -> list[str]:
        """Registered phases, in first-registration order."""
        return list(dict.fromkeys(e.phase for e in self._entries.values()))
