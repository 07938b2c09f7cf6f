"""
Read-only survey of a source tree: which policies would apply to which file.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional
import os

from . import imports
from .errors import ParseError
from .parser import parse_source
from .paths import PathFilter
from .registry import Registry
from .transformers import default_registry
from .transformers.base import main_func


@dataclass
class AnalysisResult:
    path: str
    package: str = ""
    has_main: bool = False
    libraries: List[str] = field(default_factory=list)
    imports: List[str] = field(default_factory=list)
    instrumented: bool = False
    error: str = ""


class Analyzer:
    def __init__(self, registry: Optional[Registry] = None) -> None:
        self.registry = registry if registry is not None else default_registry()

    def analyze_source(self, text: str, path: str = "") -> AnalysisResult:
        result = AnalysisResult(path=path)
        try:
            unit = parse_source(text)
        except ParseError as exc:
            result.error = f"parse error: {exc}"
            return result
        result.package = unit.package
        result.has_main = main_func(unit) is not None
        result.imports = [spec.path for spec in unit.imports]
        result.instrumented = imports.has_companion(unit)
        result.libraries = [t.name for t in self.registry.detected(unit)]
        return result

    def analyze_file(self, path: str) -> AnalysisResult:
        try:
            with open(path, "r", encoding="utf-8") as f:
                text = f.read()
        except (OSError, UnicodeDecodeError) as exc:
            return AnalysisResult(path=path, error=f"read file: {exc}")
        return self.analyze_source(text, path)

    def analyze_dir(self, root: str, excludes: Optional[List[str]] = None) -> List[AnalysisResult]:
        path_filter = PathFilter(root, excludes)
        results: List[AnalysisResult] = []
        for current, dirs, files in os.walk(os.path.abspath(root)):
            dirs[:] = sorted(d for d in dirs if not path_filter.skip_dir(os.path.join(current, d)))
            for name in sorted(files):
                path = os.path.join(current, name)
                if name.endswith(".go") and not path_filter.excluded(path):
                    results.append(self.analyze_file(path))
        return results
