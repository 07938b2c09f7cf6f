"""
Transformer record and registry.

A Transformer is one library's rewrite policy. Optional capabilities are plain
fields (semantic_hook, companion_alias, family) that the pipelines check with
`is not None`. The Registry is an explicit value; build one per process (or
per test) and pass it to the pipelines.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from .errors import DuplicateTransformerError
from .imports import has_import, has_prefix, library_spec
from .ir import SourceFile


@dataclass
class InjectContext:
    """Per-unit facts a policy may need while injecting."""
    trace_alias: str = "trace"
    directory: Optional[str] = None
    debug: bool = False


CompanionImport = Union[str, Callable[[SourceFile], str], None]


@dataclass(frozen=True)
class Transformer:
    name: str
    import_path: str
    detect: Callable[[SourceFile], bool]
    inject: Callable[[SourceFile, InjectContext], bool]
    remove: Callable[[SourceFile], bool]
    companion_import: CompanionImport = None
    companion_alias: Optional[str] = None
    semantic_hook: Optional[Callable[..., bool]] = None
    family: Optional[str] = None
    variants: Tuple[str, ...] = field(default=())

    def companion_for(self, unit: SourceFile) -> Optional[str]:
        if self.companion_import is None:
            return None
        if callable(self.companion_import):
            return self.companion_import(unit) or None
        return self.companion_import

    def has_companion(self, unit: SourceFile) -> bool:
        path = self.companion_for(unit)
        return path is not None and has_import(unit, path)

    def identifies(self, import_path: str) -> bool:
        """True when a module/import path belongs to this library."""
        for prefix in (self.import_path,) + self.variants:
            if import_path == prefix or import_path.startswith(prefix + "/") or prefix.startswith(import_path + "/"):
                return True
        return False


def detect_prefix(*prefixes: str) -> Callable[[SourceFile], bool]:
    def detect(unit: SourceFile) -> bool:
        return any(has_prefix(unit, p) for p in prefixes)
    return detect


def detect_library(*prefixes: str) -> Callable[[SourceFile], bool]:
    def detect(unit: SourceFile) -> bool:
        return any(library_spec(unit, p) is not None for p in prefixes)
    return detect


def detect_exact(*paths: str) -> Callable[[SourceFile], bool]:
    def detect(unit: SourceFile) -> bool:
        return any(has_import(unit, p) for p in paths)
    return detect


class Registry:
    def __init__(self, transformers: Iterable[Transformer] = ()) -> None:
        self._items: Dict[str, Transformer] = {}
        for transformer in transformers:
            self.register(transformer)

    def register(self, transformer: Transformer) -> None:
        if transformer.name in self._items:
            raise DuplicateTransformerError(transformer.name)
        self._items[transformer.name] = transformer

    def by_name(self, name: str) -> Optional[Transformer]:
        return self._items.get(name)

    def names(self) -> List[str]:
        return list(self._items)

    def all(self) -> List[Transformer]:
        return list(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, name: object) -> bool:
        return name in self._items

    def detected(self, unit: SourceFile) -> List[Transformer]:
        return [t for t in self._items.values() if t.detect(unit)]

    def filtered(self, unit: SourceFile, enabled: Optional[Iterable[str]]) -> List[Transformer]:
        """Detected transformers restricted to an allow-list; None enables all."""
        detected = self.detected(unit)
        if enabled is None:
            return detected
        allowed = set(enabled)
        return [t for t in detected if t.name in allowed]

    @staticmethod
    def dedupe(transformers: Iterable[Transformer]) -> List[Transformer]:
        """Keep the first transformer of each family."""
        seen = set()
        result: List[Transformer] = []
        for transformer in transformers:
            key = transformer.family or transformer.name
            if key in seen:
                continue
            seen.add(key)
            result.append(transformer)
        return result

    def for_dependency(self, module_path: str) -> Optional[Transformer]:
        for transformer in self._items.values():
            if transformer.identifies(module_path):
                return transformer
        return None
