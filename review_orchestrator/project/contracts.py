"""Public contract snapshots and diffs for behavior-change detection."""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from review_orchestrator.core.models import (
    ContractSnapshot,
    ParameterContract,
    SymbolContract,
)

logger = logging.getLogger(__name__)


class ContractChangeType(str, Enum):
    """Kinds of public contract change between two snapshots."""

    SYMBOL_REMOVED = "symbol_removed"
    SIGNATURE_NARROWED = "signature_narrowed"
    REQUIRED_FIELD_REMOVED = "required_field_removed"
    REQUIRED_FIELD_ADDED = "required_field_added"
    DEFAULT_CHANGED = "default_changed"
    ERROR_TYPE_CHANGED = "error_type_changed"
    OPTIONAL_FIELD_ADDED = "optional_field_added"
    OPTIONAL_PARAMETER_ADDED = "optional_parameter_added"


@dataclass
class ContractChange:
    """A single difference in a file's public contract."""

    change_type: ContractChangeType
    file: str
    symbol: str
    message: str


class ContractSnapshotter(Protocol):
    """Captures and compares public contracts of target files."""

    def capture(self, files: list[str], project_root: Path) -> ContractSnapshot:
        ...

    def diff(self, before: ContractSnapshot, after: ContractSnapshot) -> list[ContractChange]:
        ...


class PythonContractSnapshotter:
    """
    Extracts the public surface of Python modules with `ast`.

    Public symbols are top-level functions and classes (and public methods of
    those classes) whose names do not start with an underscore, narrowed to
    `__all__` when the module declares one as a literal list or tuple.
    """

    def capture(self, files: list[str], project_root: Path) -> ContractSnapshot:
        """Snapshot every readable Python file in `files`."""
        snapshot = ContractSnapshot()
        for file in sorted(files):
            if not file.endswith(".py"):
                continue
            path = Path(file) if Path(file).is_absolute() else project_root / file
            try:
                tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
            except (OSError, SyntaxError, UnicodeDecodeError) as e:
                logger.warning("Skipping contract capture for %s: %s", file, e)
                continue
            snapshot.symbols[file] = self._module_symbols(tree)

        logger.info(
            "Captured contracts for %d files (%d symbols)",
            len(snapshot.symbols),
            sum(len(symbols) for symbols in snapshot.symbols.values()),
        )
        return snapshot

    def _module_symbols(self, tree: ast.Module) -> dict[str, SymbolContract]:
        exported = self._declared_all(tree)
        symbols: dict[str, SymbolContract] = {}

        for node in tree.body:
            if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                continue
            if exported is not None:
                if node.name not in exported:
                    continue
            elif node.name.startswith("_"):
                continue

            if isinstance(node, ast.ClassDef):
                symbols[node.name] = SymbolContract(
                    name=node.name,
                    kind="class",
                    fields=self._class_fields(node),
                )
                for item in node.body:
                    if isinstance(item, (ast.FunctionDef, ast.AsyncFunctionDef)) and (
                        not item.name.startswith("_") or item.name == "__init__"
                    ):
                        qualified = f"{node.name}.{item.name}"
                        symbols[qualified] = self._function_contract(qualified, item, kind="method")
            else:
                symbols[node.name] = self._function_contract(node.name, node, kind="function")

        return symbols

    @staticmethod
    def _declared_all(tree: ast.Module) -> set[str] | None:
        for node in tree.body:
            if not isinstance(node, ast.Assign):
                continue
            if any(isinstance(t, ast.Name) and t.id == "__all__" for t in node.targets):
                if isinstance(node.value, (ast.List, ast.Tuple)):
                    return {
                        elt.value
                        for elt in node.value.elts
                        if isinstance(elt, ast.Constant) and isinstance(elt.value, str)
                    }
        return None

    @staticmethod
    def _class_fields(node: ast.ClassDef) -> dict[str, bool]:
        """Annotated class attributes; True when required (no default)."""
        fields = {}
        for item in node.body:
            if isinstance(item, ast.AnnAssign) and isinstance(item.target, ast.Name):
                if item.target.id.startswith("_"):
                    continue
                fields[item.target.id] = item.value is None
        return fields

    def _function_contract(
        self,
        name: str,
        node: ast.FunctionDef | ast.AsyncFunctionDef,
        kind: str,
    ) -> SymbolContract:
        args = node.args
        parameters: list[ParameterContract] = []

        positional = args.posonlyargs + args.args
        first_default = len(positional) - len(args.defaults)
        for index, arg in enumerate(positional):
            default = args.defaults[index - first_default] if index >= first_default else None
            parameters.append(
                ParameterContract(
                    name=arg.arg,
                    kind="positional",
                    has_default=default is not None,
                    default=ast.unparse(default) if default is not None else None,
                )
            )
        if args.vararg:
            parameters.append(ParameterContract(name=args.vararg.arg, kind="var_positional", has_default=True))
        for arg, default in zip(args.kwonlyargs, args.kw_defaults):
            parameters.append(
                ParameterContract(
                    name=arg.arg,
                    kind="keyword_only",
                    has_default=default is not None,
                    default=ast.unparse(default) if default is not None else None,
                )
            )
        if args.kwarg:
            parameters.append(ParameterContract(name=args.kwarg.arg, kind="var_keyword", has_default=True))

        return SymbolContract(
            name=name,
            kind=kind,
            parameters=parameters,
            raises=self._raised_names(node),
        )

    @staticmethod
    def _raised_names(node: ast.AST) -> list[str]:
        names = set()
        for child in ast.walk(node):
            if isinstance(child, ast.Raise) and child.exc is not None:
                target = child.exc.func if isinstance(child.exc, ast.Call) else child.exc
                if isinstance(target, ast.Name):
                    names.add(target.id)
                elif isinstance(target, ast.Attribute):
                    names.add(target.attr)
        return sorted(names)

    def diff(self, before: ContractSnapshot, after: ContractSnapshot) -> list[ContractChange]:
        """
        Compare two snapshots.

        Only symbols present in `before` are compared; new symbols are not
        contract changes.
        """
        changes: list[ContractChange] = []
        for file in sorted(before.symbols):
            after_symbols = after.symbols.get(file, {})
            for name, old in sorted(before.symbols[file].items()):
                new = after_symbols.get(name)
                if new is None:
                    changes.append(
                        ContractChange(
                            ContractChangeType.SYMBOL_REMOVED,
                            file,
                            name,
                            f"Public {old.kind} '{name}' was removed",
                        )
                    )
                    continue
                changes.extend(self._diff_parameters(file, old, new))
                changes.extend(self._diff_fields(file, old, new))
                if old.kind != "class" and set(old.raises) != set(new.raises):
                    changes.append(
                        ContractChange(
                            ContractChangeType.ERROR_TYPE_CHANGED,
                            file,
                            name,
                            f"'{name}' raises {new.raises or 'nothing'} (was {old.raises or 'nothing'})",
                        )
                    )
        return changes

    def _diff_parameters(self, file: str, old: SymbolContract, new: SymbolContract) -> list[ContractChange]:
        changes = []
        old_params = {p.name: p for p in old.parameters}
        new_params = {p.name: p for p in new.parameters}

        for param_name, old_param in old_params.items():
            new_param = new_params.get(param_name)
            if new_param is None:
                changes.append(
                    ContractChange(
                        ContractChangeType.SIGNATURE_NARROWED,
                        file,
                        old.name,
                        f"Parameter '{param_name}' removed from '{old.name}'",
                    )
                )
            elif old_param.has_default and not new_param.has_default:
                changes.append(
                    ContractChange(
                        ContractChangeType.SIGNATURE_NARROWED,
                        file,
                        old.name,
                        f"Parameter '{param_name}' of '{old.name}' is now required",
                    )
                )
            elif old_param.kind != new_param.kind:
                changes.append(
                    ContractChange(
                        ContractChangeType.SIGNATURE_NARROWED,
                        file,
                        old.name,
                        f"Parameter '{param_name}' of '{old.name}' changed from {old_param.kind} to {new_param.kind}",
                    )
                )
            elif old_param.default != new_param.default:
                changes.append(
                    ContractChange(
                        ContractChangeType.DEFAULT_CHANGED,
                        file,
                        old.name,
                        f"Default of '{param_name}' in '{old.name}' changed from {old_param.default} to {new_param.default}",
                    )
                )

        for param_name, new_param in new_params.items():
            if param_name in old_params:
                continue
            if new_param.has_default:
                changes.append(
                    ContractChange(
                        ContractChangeType.OPTIONAL_PARAMETER_ADDED,
                        file,
                        old.name,
                        f"Optional parameter '{param_name}' added to '{old.name}'",
                    )
                )
            else:
                changes.append(
                    ContractChange(
                        ContractChangeType.SIGNATURE_NARROWED,
                        file,
                        old.name,
                        f"Required parameter '{param_name}' added to '{old.name}'",
                    )
                )
        return changes

    def _diff_fields(self, file: str, old: SymbolContract, new: SymbolContract) -> list[ContractChange]:
        changes = []
        for field_name, required in old.fields.items():
            if field_name not in new.fields:
                changes.append(
                    ContractChange(
                        ContractChangeType.REQUIRED_FIELD_REMOVED,
                        file,
                        old.name,
                        f"{'Required' if required else 'Optional'} field '{field_name}' removed from '{old.name}'",
                    )
                )
            elif not required and new.fields[field_name]:
                changes.append(
                    ContractChange(
                        ContractChangeType.REQUIRED_FIELD_ADDED,
                        file,
                        old.name,
                        f"Field '{field_name}' of '{old.name}' is now required",
                    )
                )
        for field_name, required in new.fields.items():
            if field_name in old.fields:
                continue
            change_type = (
                ContractChangeType.REQUIRED_FIELD_ADDED if required else ContractChangeType.OPTIONAL_FIELD_ADDED
            )
            changes.append(
                ContractChange(
                    change_type,
                    file,
                    old.name,
                    f"{'Required' if required else 'Optional'} field '{field_name}' added to '{old.name}'",
                )
            )
        return changes
