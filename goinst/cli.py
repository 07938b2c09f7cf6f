"""
Command line interface.

    goinst inject --src ./myapp -o ./instrumented [--error-tracking]
    goinst remove --src ./instrumented -o ./clean [--all]
    goinst analyze --src ./myapp
    goinst version
"""

from __future__ import annotations
from typing import List, Optional
import argparse
import os
import sys

from . import __version__
from .analyzer import Analyzer
from .config import Config, ConfigLoader, find_go_mod_dir
from .errors import ConfigError
from .injector import Injector
from .remover import Remover
from .report import DEBUG, NORMAL, QUIET, VERBOSE, Report
from .transformers import default_registry

DEFAULT_OUTPUT = "./output"


def _level(args: argparse.Namespace, cfg: Config) -> int:
    if args.quiet:
        return QUIET
    if args.debug or cfg.debug:
        return DEBUG
    if args.verbose:
        return VERBOSE
    return NORMAL


def _load_config(args: argparse.Namespace, error_tracking: Optional[bool] = None) -> Config:
    project_dir = args.src if os.path.isdir(args.src) else os.path.dirname(os.path.abspath(args.src))
    loader = ConfigLoader(
        config_path=args.config,
        project_dir=project_dir,
        error_tracking=error_tracking,
        debug=True if args.debug else None,
        output_dir=getattr(args, "output", None),
    )
    cfg = loader.load()
    if cfg.debug:
        if cfg.path:
            sys.stderr.write(f"[goinst] Config file: {cfg.path}\n")
        sys.stderr.write(f"[goinst] BaseDir: {cfg.base_dir}\n")
    return cfg


def _load_dependencies(report: Report, cfg: Config, start: str) -> None:
    root = find_go_mod_dir(start) or cfg.base_dir
    go_mod = os.path.join(root, "go.mod") if root else ""
    if go_mod and os.path.isfile(go_mod):
        try:
            report.load_dependencies(go_mod, default_registry())
        except OSError as exc:
            sys.stderr.write(f"[goinst] Could not read {go_mod}: {exc}\n")


def _file_target(src: str, output: str) -> str:
    if output.endswith(".go"):
        return output
    return os.path.join(output, os.path.basename(src))


def _finish(report: Report, args: argparse.Namespace) -> int:
    report.print_summary()
    if args.report:
        try:
            report.save_json(args.report)
        except OSError as exc:
            sys.stderr.write(f"[goinst] Could not write report {args.report}: {exc}\n")
            return 1
    return 1 if report.summary.errors else 0


def _same_tree(src: str, output: str) -> bool:
    return os.path.abspath(src) == os.path.abspath(output)


def cmd_inject(args: argparse.Namespace) -> int:
    cfg = _load_config(args, error_tracking=True if args.error_tracking else None)
    output = cfg.instrumentation.output_dir or DEFAULT_OUTPUT
    if _same_tree(args.src, output):
        sys.stderr.write("[goinst] Output path must differ from the source path.\n")
        return 1
    report = Report("inject", level=_level(args, cfg))
    report.set_dirs(args.src, output)
    _load_dependencies(report, cfg, args.src)
    if report.level > QUIET:
        print(f"Source path: {args.src}")
        print(f"Output path: {output}")
        print()
    if cfg.debug:
        sys.stderr.write(f"[goinst] ErrorTracking: {cfg.error_tracking}\n")
        sys.stderr.write(f"[goinst] Enabled: {', '.join(cfg.enabled_packages()) or '(none)'}\n")

    injector = Injector(default_registry(), cfg, report)
    if os.path.isdir(args.src):
        injector.inject_dir(args.src, output)
    else:
        injector.inject_file(args.src, _file_target(args.src, output))
    return _finish(report, args)


def cmd_remove(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    output = cfg.instrumentation.output_dir or DEFAULT_OUTPUT
    if _same_tree(args.src, output):
        sys.stderr.write("[goinst] Output path must differ from the source path.\n")
        return 1
    report = Report("remove", level=_level(args, cfg))
    report.set_dirs(args.src, output)
    remover = Remover(default_registry(), cfg, report, remove_all=args.all)
    if os.path.isdir(args.src):
        remover.remove_dir(args.src, output)
    else:
        remover.remove_file(args.src, _file_target(args.src, output))
    return _finish(report, args)


def cmd_analyze(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    analyzer = Analyzer(default_registry())
    if os.path.isdir(args.src):
        results = analyzer.analyze_dir(args.src, cfg.exclude)
    else:
        results = [analyzer.analyze_file(args.src)]
    failed = 0
    for result in results:
        if result.error:
            failed += 1
            print(f"{result.path}: {result.error}")
            continue
        marks = []
        if result.has_main:
            marks.append("main")
        if result.instrumented:
            marks.append("instrumented")
        suffix = f" [{', '.join(marks)}]" if marks else ""
        libraries = ", ".join(result.libraries) or "-"
        print(f"{result.path} ({result.package}){suffix}: {libraries}")
    report = Report("analyze", level=_level(args, cfg))
    _load_dependencies(report, cfg, args.src)
    for dep in report.dependencies:
        if dep.supported:
            print(f"go.mod: {dep.path} {dep.version} -> {dep.transformer}")
    if args.report:
        report.save_json(args.report)
    return 1 if failed else 0


def cmd_version(args: argparse.Namespace) -> int:
    print(f"goinst {__version__}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="goinst",
        description="goinst: reversible source-to-source instrumentation of Go programs",
    )
    parser.add_argument("--config", metavar="PATH", help="Config file (default: .whatap/config.yaml).")
    parser.add_argument("--report", metavar="OUT_JSON", help="Write the run report to this JSON file.")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Show transformation details.")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Summary only.")
    parser.add_argument("--debug", action="store_true", help="Debug output on stderr.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    inject_p = subparsers.add_parser("inject", help="Inject monitoring code into Go sources.")
    inject_p.add_argument("-s", "--src", default=".", help="Source file or directory.")
    inject_p.add_argument("-o", "--output", default=None, help=f"Output directory (default: {DEFAULT_OUTPUT}).")
    inject_p.add_argument("--error-tracking", action="store_true", help="Report errors at return sites.")
    inject_p.set_defaults(func=cmd_inject)

    remove_p = subparsers.add_parser("remove", help="Remove injected monitoring code.")
    remove_p.add_argument("-s", "--src", default=".", help="Source file or directory.")
    remove_p.add_argument("-o", "--output", default=None, help=f"Output directory (default: {DEFAULT_OUTPUT}).")
    remove_p.add_argument("--all", action="store_true", help="Also remove hand-written instrumentation.")
    remove_p.set_defaults(func=cmd_remove)

    analyze_p = subparsers.add_parser("analyze", help="List the libraries detected per file.")
    analyze_p.add_argument("-s", "--src", default=".", help="Source file or directory.")
    analyze_p.set_defaults(func=cmd_analyze)

    version_p = subparsers.add_parser("version", help="Print the version.")
    version_p.set_defaults(func=cmd_version)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command != "version" and not os.path.exists(args.src):
        sys.stderr.write(f"[goinst] Source path not found: {args.src}\n")
        return 1
    try:
        return args.func(args)
    except ConfigError as exc:
        sys.stderr.write(f"[goinst] Failed to load config: {exc}\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())
