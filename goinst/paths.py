"""
Exclusion globs and directory skipping.

Patterns are matched against the slash-separated path relative to the source
root. `**` spans any number of path segments, `*` and `?` stay inside one
segment, `{a,b}` is an alternation. A pattern without a slash is also tried
against the file's basename.
"""

from __future__ import annotations
from functools import lru_cache
from typing import Iterable, Iterator, List, Mapping, Optional, Pattern, Tuple
import os
import re
import shutil
import tempfile

from .config import DEFAULT_EXCLUDE_PATTERNS, SYSTEM_SKIP_ENV

ALWAYS_SKIPPED_DIRS = {"vendor", ".git", "node_modules", "whatap-instrumented"}


def _translate(pattern: str) -> str:
    out: List[str] = []
    index = 0
    length = len(pattern)
    while index < length:
        ch = pattern[index]
        if pattern.startswith("**/", index):
            out.append("(?:.*/)?")
            index += 3
            continue
        if pattern.startswith("/**", index) and index + 3 == length:
            out.append("(?:/.*)?")
            index += 3
            continue
        if pattern.startswith("**", index):
            out.append(".*")
            index += 2
            continue
        if ch == "*":
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        elif ch == "{":
            close = pattern.find("}", index)
            if close < 0:
                out.append(re.escape(ch))
            else:
                options = pattern[index + 1:close].split(",")
                out.append("(?:" + "|".join(_translate(opt) for opt in options) + ")")
                index = close + 1
                continue
        else:
            out.append(re.escape(ch))
        index += 1
    return "".join(out)


@lru_cache(maxsize=256)
def compile_glob(pattern: str) -> Pattern[str]:
    return re.compile("^" + _translate(pattern) + "$")


def glob_match(pattern: str, path: str) -> bool:
    return compile_glob(pattern).match(path.replace(os.sep, "/")) is not None


def system_skip_dirs(environ: Optional[Mapping[str, str]] = None) -> List[str]:
    """GOROOT and the module cache; GOMODCACHE defaults to $GOPATH/pkg/mod or ~/go/pkg/mod."""
    env = environ if environ is not None else os.environ
    dirs: List[str] = []
    for name in SYSTEM_SKIP_ENV:
        value = env.get(name, "")
        if not value and name == "GOMODCACHE":
            gopath = env.get("GOPATH", "")
            value = os.path.join(gopath, "pkg", "mod") if gopath else os.path.expanduser(os.path.join("~", "go", "pkg", "mod"))
        if value:
            dirs.append(os.path.normpath(os.path.abspath(value)))
    return dirs


class PathFilter:
    """Decides which files and directories a batch run leaves alone."""

    def __init__(
        self,
        root: str,
        patterns: Optional[Iterable[str]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.root = os.path.abspath(root)
        self.patterns = list(patterns) if patterns is not None else list(DEFAULT_EXCLUDE_PATTERNS)
        self.system_dirs = system_skip_dirs(environ)

    def relative(self, path: str) -> str:
        absolute = os.path.abspath(path)
        try:
            rel = os.path.relpath(absolute, self.root)
        except ValueError:
            rel = absolute
        return rel.replace(os.sep, "/")

    def is_system_path(self, path: str) -> bool:
        absolute = os.path.normpath(os.path.abspath(path))
        return any(absolute == d or absolute.startswith(d + os.sep) for d in self.system_dirs)

    def excluded(self, path: str) -> bool:
        if self.is_system_path(path):
            return True
        rel = self.relative(path)
        name = os.path.basename(path)
        for pattern in self.patterns:
            if glob_match(pattern, rel):
                return True
            if "*" in pattern and "/" not in pattern and glob_match(pattern, name):
                return True
        return False

    def skip_dir(self, path: str) -> bool:
        if os.path.basename(path) in ALWAYS_SKIPPED_DIRS:
            return True
        return self.excluded(path)


# ============================================================
# ====================== TREE WALKING ========================
# ============================================================

GO_FILE = "go"
EXCLUDED_FILE = "excluded"
OTHER_FILE = "other"


def iter_tree(src_root: str, dst_root: str, path_filter: PathFilter) -> Iterator[Tuple[str, str, str]]:
    """
    Yield (src, dst, kind) for every file under src_root, creating the mirrored
    directories on the way. The destination tree is never entered even when it
    lives inside the source tree.
    """
    src_root = os.path.abspath(src_root)
    dst_root = os.path.abspath(dst_root)
    for current, dirs, files in os.walk(src_root):
        kept = []
        for name in sorted(dirs):
            path = os.path.join(current, name)
            if path == dst_root or path.startswith(dst_root + os.sep):
                continue
            if path_filter.skip_dir(path):
                continue
            kept.append(name)
        dirs[:] = kept
        rel = os.path.relpath(current, src_root)
        out_dir = dst_root if rel == "." else os.path.join(dst_root, rel)
        os.makedirs(out_dir, exist_ok=True)
        for name in sorted(files):
            src = os.path.join(current, name)
            dst = os.path.join(out_dir, name)
            if not name.endswith(".go"):
                yield src, dst, OTHER_FILE
            elif path_filter.excluded(src):
                yield src, dst, EXCLUDED_FILE
            else:
                yield src, dst, GO_FILE


# ============================================================
# ========================= OUTPUT ===========================
# ============================================================

def write_atomic(path: str, data: bytes) -> None:
    """Write through a temporary file in the target directory, then rename."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    handle, temp = tempfile.mkstemp(prefix=".goinst-", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(handle, "wb") as f:
            f.write(data)
        os.chmod(temp, 0o644)
        os.replace(temp, path)
    except BaseException:
        if os.path.exists(temp):
            os.unlink(temp)
        raise


def write_text_atomic(path: str, text: str) -> None:
    write_atomic(path, text.encode("utf-8"))


def copy_atomic(src: str, dst: str) -> None:
    if os.path.abspath(src) == os.path.abspath(dst):
        return
    with open(src, "rb") as f:
        data = f.read()
    write_atomic(dst, data)
    shutil.copymode(src, dst)
