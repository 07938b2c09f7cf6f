"""
Configuration: dataclasses, presets and the YAML loader.

Priority is CLI > environment > config file > defaults. Lists from a config
file are appended to the defaults (exclude patterns, package lists, rules).
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
import os
import sys

import yaml

from .errors import ConfigError

CONFIG_ENV = "WHATAP_INST_CONFIG"
DEBUG_ENV = "GO_API_AST_DEBUG"
OUTPUT_DIR_ENV = "GO_API_AST_OUTPUT_DIR"

CONFIG_SEARCH_PATHS = [
    os.path.join(".whatap", "config.yaml"),
    os.path.join(".whatap", "whatap.yaml"),
]

DEFAULT_EXCLUDE_PATTERNS = [
    "**/*.pb.go",
    "**/*.pb.gw.go",
    "**/*_grpc.pb.go",
    "**/*.connect.go",
    "**/*_generated.go",
    "**/*_gen.go",
    "**/*_test.go",
    "vendor/**",
    ".git/**",
    "node_modules/**",
    "whatap-instrumented/**",
    "**/github.com/whatap/go-api/**",
    "**/go-api/agent/**",
    "**/go-api/httpc/**",
    "**/go-api/instrumentation/**",
    "**/go-api/logsink/**",
    "**/go-api/method/**",
    "**/go-api/sql/**",
    "**/go-api/trace/**",
]

# Environment variables naming directories that are never walked.
SYSTEM_SKIP_ENV = ["GOROOT", "GOMODCACHE"]

PRESET_PACKAGES: Dict[str, List[str]] = {
    "minimal": [],
    "web": ["gin", "echo", "fiber", "chi", "gorilla", "nethttp", "fasthttp"],
    "database": ["sql", "sqlx", "gorm", "jinzhugorm"],
    "external": ["redigo", "goredis", "mongo", "aerospike", "sarama", "grpc", "k8s", "k8srest"],
    "log": ["fmt", "log", "logrus", "zap"],
}
PRESET_PACKAGES["full"] = (
    PRESET_PACKAGES["web"] + PRESET_PACKAGES["database"] + PRESET_PACKAGES["external"] + PRESET_PACKAGES["log"]
)
PRESETS = sorted(list(PRESET_PACKAGES) + ["custom"])


# ============================================================
# ====================== CUSTOM RULES ========================
# ============================================================

@dataclass
class AddRule:
    file: str
    package: str = ""
    content: str = ""
    content_file: str = ""
    append: bool = False


@dataclass
class InjectRule:
    function: str = ""
    package: str = ""
    file: str = ""
    start: str = ""
    end: str = ""
    imports: List[str] = field(default_factory=list)


@dataclass
class ReplaceRule:
    package: str
    function: str
    with_: str
    imports: List[str] = field(default_factory=list)


@dataclass
class HookRule:
    package: str
    function: str
    before: str = ""
    after: str = ""
    imports: List[str] = field(default_factory=list)


@dataclass
class TransformRule:
    package: str
    function: str
    template: str = ""
    template_file: str = ""
    imports: List[str] = field(default_factory=list)
    vars: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CustomConfig:
    add: List[AddRule] = field(default_factory=list)
    inject: List[InjectRule] = field(default_factory=list)
    replace: List[ReplaceRule] = field(default_factory=list)
    hook: List[HookRule] = field(default_factory=list)
    transform: List[TransformRule] = field(default_factory=list)

    def has_rules(self) -> bool:
        return bool(self.add or self.inject or self.replace or self.hook or self.transform)

    def extend(self, other: "CustomConfig") -> None:
        self.add.extend(other.add)
        self.inject.extend(other.inject)
        self.replace.extend(other.replace)
        self.hook.extend(other.hook)
        self.transform.extend(other.transform)


# ============================================================
# ========================= CONFIG ===========================
# ============================================================

@dataclass
class InstrumentationConfig:
    error_tracking: bool = False
    debug: bool = False
    output_dir: str = ""
    preset: str = ""
    enabled_packages: List[str] = field(default_factory=list)
    disabled_packages: List[str] = field(default_factory=list)


@dataclass
class Config:
    instrumentation: InstrumentationConfig = field(default_factory=InstrumentationConfig)
    custom: CustomConfig = field(default_factory=CustomConfig)
    exclude: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))
    base_dir: str = ""
    path: Optional[str] = None

    @property
    def debug(self) -> bool:
        return self.instrumentation.debug

    @property
    def error_tracking(self) -> bool:
        return self.instrumentation.error_tracking

    def enabled_packages(self) -> List[str]:
        """Preset + enabled_packages - disabled_packages, in preset order."""
        inst = self.instrumentation
        preset = inst.preset or "full"
        if preset == "custom":
            packages = list(inst.enabled_packages)
        else:
            packages = list(PRESET_PACKAGES[preset])
            for name in inst.enabled_packages:
                if name not in packages:
                    packages.append(name)
        return [name for name in packages if name not in inst.disabled_packages]

    def is_enabled(self, name: str) -> bool:
        return name in self.enabled_packages()

    def merge(self, other: "Config") -> None:
        if other.base_dir:
            self.base_dir = other.base_dir
        if other.path:
            self.path = other.path
        mine, theirs = self.instrumentation, other.instrumentation
        mine.error_tracking = mine.error_tracking or theirs.error_tracking
        mine.debug = mine.debug or theirs.debug
        if theirs.output_dir:
            mine.output_dir = theirs.output_dir
        if theirs.preset:
            mine.preset = theirs.preset
        mine.enabled_packages.extend(theirs.enabled_packages)
        mine.disabled_packages.extend(theirs.disabled_packages)
        self.custom.extend(other.custom)
        for pattern in other.exclude:
            if pattern not in self.exclude:
                self.exclude.append(pattern)


# ============================================================
# ====================== YAML PARSING ========================
# ============================================================

def _to_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) for v in value if v is not None]
    return [str(value)]


def _text(raw: Dict[str, Any], key: str) -> str:
    value = raw.get(key)
    return "" if value is None else str(value)


def _missing(raw: Dict[str, Any], *keys: str) -> List[str]:
    return [key for key in keys if raw.get(key) in (None, "")]


def _build_rule(kind: str, raw: Any, origin: str) -> Optional[Any]:
    if not isinstance(raw, dict):
        sys.stderr.write(f"[goinst] Skipping {kind} rule from {origin}: not a mapping.\n")
        return None

    required = {
        "add": ("file",),
        "inject": (),
        "replace": ("package", "function", "with"),
        "hook": ("package", "function"),
        "transform": ("package", "function"),
    }[kind]
    missing = _missing(raw, *required)
    if kind == "add" and not (raw.get("content") or raw.get("content_file")):
        missing.append("content|content_file")
    if kind == "inject" and not (raw.get("start") or raw.get("end")):
        missing.append("start|end")
    if kind == "hook" and not (raw.get("before") or raw.get("after")):
        missing.append("before|after")
    if kind == "transform" and not (raw.get("template") or raw.get("template_file")):
        missing.append("template|template_file")
    if missing:
        sys.stderr.write(
            f"[goinst] Skipping {kind} rule from {origin}: missing required field(s) {missing}.\n"
        )
        return None

    imports = _to_str_list(raw.get("imports"))
    if kind == "add":
        return AddRule(
            file=_text(raw, "file"),
            package=_text(raw, "package"),
            content=_text(raw, "content"),
            content_file=_text(raw, "content_file"),
            append=bool(raw.get("append", False)),
        )
    if kind == "inject":
        return InjectRule(
            function=_text(raw, "function"),
            package=_text(raw, "package"),
            file=_text(raw, "file"),
            start=_text(raw, "start"),
            end=_text(raw, "end"),
            imports=imports,
        )
    if kind == "replace":
        return ReplaceRule(_text(raw, "package"), _text(raw, "function"), _text(raw, "with"), imports)
    if kind == "hook":
        return HookRule(
            _text(raw, "package"), _text(raw, "function"), _text(raw, "before"), _text(raw, "after"), imports
        )
    variables = raw.get("vars") or {}
    if not isinstance(variables, dict):
        sys.stderr.write(f"[goinst] Ignoring non-mapping vars of transform rule from {origin}.\n")
        variables = {}
    return TransformRule(
        package=_text(raw, "package"),
        function=_text(raw, "function"),
        template=_text(raw, "template"),
        template_file=_text(raw, "template_file"),
        imports=imports,
        vars=dict(variables),
    )


def config_from_dict(doc: Any, origin: str = "<config>") -> Config:
    """Build a Config holding only what the document sets (no defaults merged)."""
    if doc is None:
        doc = {}
    if not isinstance(doc, dict):
        raise ConfigError(f"{origin}: top level must be a mapping")

    cfg = Config(exclude=[])
    inst = doc.get("instrumentation") or {}
    if not isinstance(inst, dict):
        raise ConfigError(f"{origin}: 'instrumentation' must be a mapping")
    preset = _text(inst, "preset")
    if preset and preset not in PRESETS:
        raise ConfigError(f"{origin}: unknown preset {preset!r} (expected one of {', '.join(PRESETS)})")
    cfg.instrumentation = InstrumentationConfig(
        error_tracking=bool(inst.get("error_tracking", False)),
        debug=bool(inst.get("debug", False)),
        output_dir=_text(inst, "output_dir"),
        preset=preset,
        enabled_packages=_to_str_list(inst.get("enabled_packages")),
        disabled_packages=_to_str_list(inst.get("disabled_packages")),
    )

    custom = doc.get("custom") or {}
    if not isinstance(custom, dict):
        raise ConfigError(f"{origin}: 'custom' must be a mapping")
    for kind in ("add", "inject", "replace", "hook", "transform"):
        raw_rules = custom.get(kind) or []
        if not isinstance(raw_rules, list):
            sys.stderr.write(f"[goinst] Ignoring custom.{kind} from {origin}: not a list.\n")
            continue
        target = getattr(cfg.custom, kind)
        for index, raw in enumerate(raw_rules):
            rule = _build_rule(kind, raw, f"{origin}#{kind}[{index}]")
            if rule is not None:
                target.append(rule)

    cfg.exclude = _to_str_list(doc.get("exclude"))
    return cfg


def load_config_file(path: str) -> Config:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            doc = yaml.safe_load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"config file not found: {path}") from exc
    except OSError as exc:
        raise ConfigError(f"could not read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"malformed YAML in {path}: {exc}") from exc
    cfg = config_from_dict(doc, path)
    cfg.path = path
    return cfg


# ============================================================
# ========================= LOADER ===========================
# ============================================================

def find_go_mod_dir(start: str) -> str:
    """Nearest directory at or above start holding a go.mod, or ""."""
    path = os.path.abspath(start)
    if not os.path.isdir(path):
        path = os.path.dirname(path)
    while True:
        if os.path.isfile(os.path.join(path, "go.mod")):
            return path
        parent = os.path.dirname(path)
        if parent == path:
            return ""
        path = parent


def base_dir_for(config_path: str) -> str:
    directory = os.path.dirname(os.path.abspath(config_path))
    if os.path.basename(directory) == ".whatap":
        return os.path.dirname(directory)
    return directory


class ConfigLoader:
    """
    Lookup order for the config file: explicit path, $WHATAP_INST_CONFIG,
    then .whatap/config.yaml or .whatap/whatap.yaml in the go.mod directory.
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        project_dir: Optional[str] = None,
        error_tracking: Optional[bool] = None,
        debug: Optional[bool] = None,
        output_dir: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.config_path = config_path
        self.project_dir = project_dir
        self.error_tracking = error_tracking
        self.debug = debug
        self.output_dir = output_dir
        self.environ = environ if environ is not None else os.environ

    def _start_dir(self) -> str:
        return os.path.abspath(self.project_dir or os.getcwd())

    def find_config_file(self) -> Optional[str]:
        if self.config_path:
            return self.config_path
        env_path = self.environ.get(CONFIG_ENV, "")
        if env_path:
            return env_path
        start = self._start_dir()
        root = find_go_mod_dir(start) or start
        for relative in CONFIG_SEARCH_PATHS:
            candidate = os.path.join(root, relative)
            if os.path.isfile(candidate):
                return candidate
        return None

    def load(self) -> Config:
        cfg = Config()
        path = self.find_config_file()
        if path:
            file_cfg = load_config_file(path)
            file_cfg.base_dir = base_dir_for(path)
            cfg.merge(file_cfg)
        if not cfg.base_dir:
            start = self._start_dir()
            cfg.base_dir = find_go_mod_dir(start) or start

        if self.environ.get(DEBUG_ENV):
            cfg.instrumentation.debug = True
        if self.environ.get(OUTPUT_DIR_ENV):
            cfg.instrumentation.output_dir = self.environ[OUTPUT_DIR_ENV]

        if self.error_tracking is not None:
            cfg.instrumentation.error_tracking = self.error_tracking
        if self.debug is not None:
            cfg.instrumentation.debug = self.debug
        if self.output_dir is not None:
            cfg.instrumentation.output_dir = self.output_dir
        return cfg
