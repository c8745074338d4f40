"""Content loader: applies patch documents from disk to registered definitions.

Example:
    from defpatch import ContentPatcher, DefinitionRegistry

    registry = DefinitionRegistry()
    registry.register("Resource", Resource, resources)
    patcher = ContentPatcher(registry)
    patcher.apply_all(["mods/example/data"])
"""

from collections.abc import Iterable
from pathlib import Path

from .config import PatchSettings
from .diagnostics import Diagnostics
from .documents import Document, SequenceNode, load_documents, load_file
from .errors import DefpatchError, StructuralError
from .interpreter import PatchInterpreter, PatchOutcome
from .logging import get_logger
from .registry import DefinitionEntry, DefinitionRegistry

logger = get_logger(__name__)


class ContentPatcher:
    """Applies documents to the definitions registered for one phase at a time."""

    def __init__(
        self,
        registry: DefinitionRegistry,
        settings: PatchSettings | None = None,
        interpreter: PatchInterpreter | None = None,
    ):
        self.registry = registry
        self.settings = settings or PatchSettings()
        self.interpreter = interpreter or PatchInterpreter()

    @property
    def diagnostics(self) -> Diagnostics:
        return self.interpreter.diagnostics

    def apply_all(self, paths: Iterable[str | Path], phases: Iterable[str] | None = None) -> None:
        """Apply every phase to every path.

        This is the reload point of the shared variable store: it is cleared
        here (when ``reset_shared_state`` is set) and nowhere else.
        """
        paths = [Path(p) for p in paths]
        if self.settings.reset_shared_state:
            self.interpreter.store.clear()
        for phase in phases if phases is not None else self.registry.phases:
            for path in paths:
                self.apply_content_patches(path, phase)

    def apply_content_patches(self, data_path: str | Path, phase: str = "static") -> None:
        """Apply every patch file under ``data_path`` for ``phase``."""
        for path in self.iter_files(data_path):
            self.apply_file(path, phase)

    def iter_files(self, data_path: str | Path) -> list[Path]:
        data_path = Path(data_path)
        if data_path.is_file():
            return [data_path]
        found: set[Path] = set()
        for pattern in self.settings.file_patterns:
            found.update(data_path.rglob(pattern))
        return sorted(found)

    def apply_file(self, path: Path, phase: str = "static") -> None:
        try:
            documents = load_file(path)
        except (DefpatchError, OSError, UnicodeDecodeError) as exc:
            self._report(exc, source=str(path))
            return
        logger.info("patch_file", source=str(path), phase=phase, documents=len(documents))
        for document in documents:
            self.apply_document(document, phase)

    def apply_text(self, text: str, phase: str = "static", source: str = "<string>") -> None:
        try:
            documents = load_documents(text, source)
        except DefpatchError as exc:
            self._report(exc, source=source)
            return
        for document in documents:
            self.apply_document(document, phase)

    def apply_document(self, document: Document, phase: str = "static") -> bool:
        """Apply one document; returns False when a test aborted it."""
        self.interpreter.patcher.identity_fields.update(self.registry.identity_fields())
        for key, section in document.sections:
            entry = self.registry.find(key.text)
            if entry is None:
                self.diagnostics.warning(f"unknown definition type {key.text}", key.mark)
                continue
            if entry.phase != phase:
                continue
            if not isinstance(section, SequenceNode):
                self.diagnostics.report(
                    StructuralError(f"{key.text} expects a list of instructions", section.mark)
                )
                continue
            outcome = self._apply_section(entry, section)
            if outcome is not None and outcome.aborted:
                logger.info("document_aborted", source=document.source, type_name=key.text)
                return False
        return True

    def _apply_section(self, entry: DefinitionEntry, section: SequenceNode) -> PatchOutcome | None:
        try:
            if not entry.dynamic:
                return self.interpreter.patch_definitions(
                    entry.record_type, entry.collection, section, entry.id_field
                )
            outcome = PatchOutcome()
            for record in entry.records():
                result = self.interpreter.patch_dynamic_definition(
                    entry.record_type, record, section
                )
                outcome.applied += result.applied
                outcome.skipped += result.skipped
                if result.aborted:
                    outcome.aborted = True
                    break
            return outcome
        except Exception as exc:
            if self.settings.stop_on_unhandled:
                raise
            self.diagnostics.unhandled(exc, type_name=entry.type_name)
            return None

    def _report(self, exc: Exception, source: str) -> None:
        if isinstance(exc, DefpatchError):
            self.diagnostics.report(exc, source=source)
        else:
            self.diagnostics.error(f"cannot read patch file: {exc}", None, source=source)
