"""defpatch - patch game definition data with YAML documents and formulas.

Pipeline: load YAML documents -> read instructions per definition type ->
evaluate embedded formulas -> patch records in place -> rebuild indexes.

Example:
    from defpatch import DefinitionRegistry, ContentPatcher, evaluate

    evaluate('"a" .. "b"')  # "ab"

    registry = DefinitionRegistry()
    registry.register("Resource", Resource, resources)
    ContentPatcher(registry).apply_text('''
    Resource:
      - add: { Id: 10, Name: Foo }
      - update: { Id: 10, $Name: '"Foo" .. "Bar"' }
    ''')
"""

__version__ = "0.1.0"

from .ast import BinOp, Call, Expr, Literal, Replace, Symbol, UnaryOp
from .compiler import compile_formula, evaluate
from .config import PatchSettings, load_settings
from .definitions import IndexedDefinitions, is_indexed
from .diagnostics import Diagnostic, Diagnostics, Severity, set_unhandled_hook
from .documents import (
    Document,
    MappingNode,
    Mark,
    ScalarNode,
    SequenceNode,
    load_documents,
    load_file,
)
from .errors import (
    DefpatchError,
    FormulaError,
    FormulaEvaluationError,
    FormulaSyntaxError,
    IdentityConflict,
    PatchError,
    RegistryError,
    StructuralError,
    TypeMismatch,
    UnresolvedSymbol,
)
from .instructions import Instruction, InstructionKind, read_instruction
from .interpreter import (
    PatchInterpreter,
    PatchOutcome,
    patch_definitions,
    patch_dynamic_definition,
)
from .loader import ContentPatcher
from .logging import configure_logging, get_logger
from .parser import Parser, parse
from .patcher import ObjectPatcher, patch_collection, patch_object
from .registry import DefinitionEntry, DefinitionRegistry
from .scope import Scope, SharedVariables, set_global, shared_variables
from .shapes import RecordShape, ShapeKind, ValueShape, describe

__all__ = [
    # Formulas
    "parse",
    "Parser",
    "compile_formula",
    "evaluate",
    "Expr",
    "Literal",
    "Symbol",
    "BinOp",
    "UnaryOp",
    "Call",
    "Replace",
    # Scope
    "Scope",
    "SharedVariables",
    "shared_variables",
    "set_global",
    # Documents
    "load_documents",
    "load_file",
    "Document",
    "Mark",
    "ScalarNode",
    "SequenceNode",
    "MappingNode",
    "Instruction",
    "InstructionKind",
    "read_instruction",
    # Definitions
    "DefinitionRegistry",
    "DefinitionEntry",
    "IndexedDefinitions",
    "is_indexed",
    "describe",
    "RecordShape",
    "ValueShape",
    "ShapeKind",
    # Patching
    "ObjectPatcher",
    "patch_object",
    "patch_collection",
    "PatchInterpreter",
    "PatchOutcome",
    "patch_definitions",
    "patch_dynamic_definition",
    "ContentPatcher",
    # Diagnostics
    "Diagnostic",
    "Diagnostics",
    "Severity",
    "set_unhandled_hook",
    "configure_logging",
    "get_logger",
    "PatchSettings",
    "load_settings",
    # Errors
    "DefpatchError",
    "FormulaError",
    "FormulaSyntaxError",
    "UnresolvedSymbol",
    "FormulaEvaluationError",
    "PatchError",
    "TypeMismatch",
    "IdentityConflict",
    "StructuralError",
    "RegistryError",
]
