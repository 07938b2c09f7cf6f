"""
Semantic resolution: method result types of a Go library, read from the
subject module itself.

A load runs `go doc <import path> <type>` in the unit's directory and parses
the method lines it prints:

    func (clnt *Client) Get(policy *BasePolicy, key *Key, binNames ...string) (*Record, Error)

Loads are cached per directory, once. Concurrent requests for a directory
that is being loaded wait for that load. A failed load is cached as a failure
and raised as SemanticLoadError to every caller.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Union
import os
import re
import subprocess
import sys
import threading

from .errors import SemanticLoadError

DEFAULT_TIMEOUT = 60.0

_METHOD = re.compile(r"^\s*func \(\w*\s*\*?(\w+)\) (\w+)\(")
_EXPORTED = re.compile(r"(?<![\w.])([A-Z]\w*)")
_TYPE_KEYWORDS = {"chan", "func", "interface", "map", "struct"}


@dataclass
class MethodSignature:
    name: str
    results: List[str] = field(default_factory=list)

    def returns_only_error(self) -> bool:
        return len(self.results) == 1 and _is_error_type(self.results[0])

    def returns_value_and_error(self) -> bool:
        return len(self.results) == 2 and _is_error_type(self.results[1])


def _is_error_type(text: str) -> bool:
    return text == "error" or text == "Error" or text.endswith(".Error")


# ============================================================
# ===================== GO DOC PARSING =======================
# ============================================================

def _split_top(text: str) -> List[str]:
    """Split on commas outside brackets, parens and braces."""
    parts: List[str] = []
    depth = 0
    current: List[str] = []
    for ch in text:
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    tail = "".join(current).strip()
    if tail:
        parts.append(tail)
    return parts


def _closing(text: str, start: int) -> int:
    """Index of the paren closing the one at text[start]."""
    depth = 0
    for index in range(start, len(text)):
        if text[index] == "(":
            depth += 1
        elif text[index] == ")":
            depth -= 1
            if depth == 0:
                return index
    return -1


def _result_types(text: str) -> List[str]:
    text = text.strip()
    if not text:
        return []
    if text.startswith("("):
        end = _closing(text, 0)
        if end < 0:
            return []
        items = _split_top(text[1:end])
    else:
        items = [text]
    types: List[str] = []
    for item in items:
        # named results: `rec *Record`
        pieces = item.split(None, 1)
        if len(pieces) == 2 and re.match(r"^\w+$", pieces[0]) and pieces[0] not in _TYPE_KEYWORDS:
            item = pieces[1]
        types.append(item.strip())
    return types


def parse_methods(output: str, receiver: str) -> Dict[str, MethodSignature]:
    """Methods of `receiver` listed in `go doc` output, keyed by name."""
    methods: Dict[str, MethodSignature] = {}
    for line in output.splitlines():
        found = _METHOD.match(line)
        if found is None or found.group(1) != receiver:
            continue
        name = found.group(2)
        params_start = found.end() - 1
        params_end = _closing(line, params_start)
        if params_end < 0:
            continue
        methods[name] = MethodSignature(name, _result_types(line[params_end + 1:]))
    return methods


def qualify(type_text: str, alias: str) -> str:
    """Qualify the library's own exported type names: `*Record` -> `*as.Record`."""
    return _EXPORTED.sub(lambda m: f"{alias}.{m.group(1)}", type_text)


# ============================================================
# ========================= CACHE ============================
# ============================================================

Runner = Callable[..., "subprocess.CompletedProcess[str]"]
Entry = Union[Dict[str, MethodSignature], SemanticLoadError]


class SemanticCache:
    """Process-wide, per-directory, load-once cache of method signatures."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        runner: Optional[Runner] = None,
        debug: bool = False,
    ) -> None:
        self.timeout = timeout
        self.debug = debug
        self._run = runner if runner is not None else subprocess.run
        self._lock = threading.Lock()
        self._entries: Dict[str, Entry] = {}
        self._loading: Dict[str, threading.Event] = {}
        self.loads = 0

    def methods(self, directory: str, import_path: str, receiver: str = "Client") -> Dict[str, MethodSignature]:
        key = os.path.abspath(directory)
        owner = False
        while not owner:
            with self._lock:
                if key in self._entries:
                    entry = self._entries[key]
                    if isinstance(entry, SemanticLoadError):
                        raise entry
                    return entry
                waiter = self._loading.get(key)
                if waiter is None:
                    waiter = self._loading[key] = threading.Event()
                    owner = True
            if not owner:
                waiter.wait()

        try:
            entry = self._load(key, import_path, receiver)
        except SemanticLoadError as exc:
            entry = exc
        with self._lock:
            self._entries[key] = entry
            del self._loading[key]
        waiter.set()
        if isinstance(entry, SemanticLoadError):
            raise entry
        return entry

    def _load(self, directory: str, import_path: str, receiver: str) -> Dict[str, MethodSignature]:
        self.loads += 1
        if self.debug:
            sys.stderr.write(f"[goinst] semantic load: go doc {import_path} {receiver} in {directory}\n")
        try:
            proc = self._run(
                ["go", "doc", import_path, receiver],
                cwd=directory,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise SemanticLoadError(f"go toolchain not found: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise SemanticLoadError(f"go doc timed out after {self.timeout}s") from exc
        except OSError as exc:
            raise SemanticLoadError(f"go doc failed: {exc}") from exc
        if proc.returncode != 0:
            message = (proc.stderr or "").strip().splitlines()
            raise SemanticLoadError(f"go doc exited {proc.returncode}: {message[0] if message else ''}")
        methods = parse_methods(proc.stdout or "", receiver)
        if not methods:
            raise SemanticLoadError(f"no {receiver} methods in go doc output for {import_path}")
        return methods
