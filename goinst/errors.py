"""
Error taxonomy for goinst.

Every failure is scoped to the smallest unit that can absorb it:
- ParseError: the file is copied verbatim with a diagnostic.
- TransformerError: the one file is reported as an error, the batch continues.
- SemanticLoadError: the type-aware policy falls back to its fixed table.
- TemplateError: one transform rule application is skipped.
- UnremovableInstrumentation: never raised, only recorded as a warning.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional


class GoinstError(Exception):
    """Base class for all goinst errors."""


class ParseError(GoinstError):
    def __init__(self, message: str, line: Optional[int] = None) -> None:
        super().__init__(message)
        self.line = line


class TransformerError(GoinstError):
    def __init__(self, transformer: str, message: str) -> None:
        super().__init__(f"inject {transformer}: {message}")
        self.transformer = transformer


class SemanticLoadError(GoinstError):
    pass


class TemplateError(GoinstError):
    pass


class ConfigError(GoinstError):
    pass


class DuplicateTransformerError(GoinstError):
    def __init__(self, name: str) -> None:
        super().__init__(f"transformer already registered: {name}")
        self.name = name


@dataclass
class UnremovableInstrumentation:
    """
    A hand-written instrumentation site that strict removal refused to delete.
    Turned into a warning diagnostic by the remover.
    """
    line: int
    message: str
    hint: str = ""
