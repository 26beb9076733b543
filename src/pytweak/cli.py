from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from .backends import available_backends
from .config import configure_logging, load_config
from .core import TweakEngine
from .errors import TweakError
from .locations import as_text
from .orchestrator import BulkResult
from .paths import config_file, default_store_file, profiles_dir, user_cache_dir, user_config_dir, user_data_dir


def _engine(args: argparse.Namespace) -> TweakEngine:
    backend = args.backend
    if backend is None and args.store is not None:
        backend = "yaml"
    cfg = load_config(
        args.config,
        backend=backend,
        store_path=args.store,
        build=args.build,
        catalog=args.catalog,
        log_level=args.log_level,
    )
    configure_logging(cfg.log_level)
    return TweakEngine.from_config(cfg)


def _on_off(enabled: bool) -> str:
    return "on" if enabled else "off"


def _parse_on_off(text: str) -> bool:
    value = text.strip().lower()
    if value in ("on", "true", "1", "yes"):
        return True
    if value in ("off", "false", "0", "no"):
        return False
    raise argparse.ArgumentTypeError(f"expected on or off, got {text!r}")


def _report(result: BulkResult, verb: str) -> int:
    print(f"{verb} {result.succeeded}, failed {result.failed}" + (" (cancelled)" if result.cancelled else ""))
    for item_id, message in result.failures:
        print(f"  {item_id}: {message}", file=sys.stderr)
    return 1 if result.failed else 0


# ---------------------------------------------------------------------------
# Entry commands
# ---------------------------------------------------------------------------


def scan_cmd(args: argparse.Namespace) -> int:
    engine = _engine(args)
    states = engine.configured() if args.configured else engine.scan()
    if args.as_json:
        print(
            json.dumps(
                [
                    {
                        "id": s.entry.id,
                        "name": s.entry.name,
                        "category": s.entry.category,
                        "configured": s.is_configured,
                        "value": as_text(s.current_value) if s.is_configured else None,
                    }
                    for s in states
                ],
                indent=2,
            )
        )
        return 0
    for s in states:
        mark = "*" if s.is_configured else " "
        value = as_text(s.current_value) if s.is_configured else ""
        print(f"{mark} {s.entry.id:<45} {value}".rstrip())
    return 0


def summary_cmd(args: argparse.Namespace) -> int:
    engine = _engine(args)
    for category, counts in engine.summary().items():
        print(f"{category}: {counts.configured}/{counts.total}")
    return 0


def apply_cmd(args: argparse.Namespace) -> int:
    engine = _engine(args)
    engine.apply_entry(args.id, args.value)
    print(f"{args.id} = {args.value}")
    return 0


def reset_cmd(args: argparse.Namespace) -> int:
    engine = _engine(args)
    engine.apply_entry(args.id)
    print(f"{args.id} reset to default")
    return 0


def remove_cmd(args: argparse.Namespace) -> int:
    if not args.ids and not args.all:
        print("give one or more ids, or --all", file=sys.stderr)
        return 2
    engine = _engine(args)
    result = engine.remove_many(None if args.all else args.ids)
    return _report(result, "removed")


# ---------------------------------------------------------------------------
# Tweak commands
# ---------------------------------------------------------------------------


def tweaks_cmd(args: argparse.Namespace) -> int:
    engine = _engine(args)
    states = engine.tweaks()
    if args.as_json:
        print(
            json.dumps(
                [
                    {"id": s.probe.id, "name": s.probe.name, "category": s.probe.category, "enabled": s.enabled}
                    for s in states
                ],
                indent=2,
            )
        )
        return 0
    for s in states:
        print(f"{s.probe.id:<40} {_on_off(s.enabled)}")
    return 0


def tweak_cmd(args: argparse.Namespace) -> int:
    engine = _engine(args)
    engine.set_probe(args.id, args.state)
    print(f"{args.id} {_on_off(args.state)}")
    return 0


# ---------------------------------------------------------------------------
# Settings and profiles
# ---------------------------------------------------------------------------


def settings_list(args: argparse.Namespace) -> int:
    engine = _engine(args)
    for key, value in engine.settings.as_dict().items():
        print(f"{key} = {value}")
    return 0


def settings_get(args: argparse.Namespace) -> int:
    engine = _engine(args)
    print(engine.settings.get(args.key))
    return 0


def settings_set(args: argparse.Namespace) -> int:
    engine = _engine(args)
    print(engine.settings.set(args.key, args.value))
    return 0


def profile_export(args: argparse.Namespace) -> int:
    engine = _engine(args)
    print(str(engine.export_profile(args.path)))
    return 0


def profile_import(args: argparse.Namespace) -> int:
    engine = _engine(args)
    return _report(engine.import_profile(args.path), "applied")


def show_paths(args: argparse.Namespace) -> int:
    data = {
        "user_config": user_config_dir(),
        "user_data": user_data_dir(),
        "user_cache": user_cache_dir(),
        "config_file": config_file(),
        "store_file": default_store_file(),
        "profiles": profiles_dir(),
    }
    if args.as_json:
        print(json.dumps({k: str(v) for k, v in data.items()}))
    else:
        for k, v in data.items():
            print(f"{k}: {v}")
    return 0


def build_parser(prog: str = "pytweak") -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog, description="Inspect and reconcile Windows configuration tweaks.")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.ini")
    parser.add_argument("--backend", choices=available_backends(), default=None)
    parser.add_argument("--store", type=Path, default=None, help="YAML store file (implies --backend yaml)")
    parser.add_argument("--build", type=int, default=None, help="Override the detected OS build")
    parser.add_argument("--catalog", type=Path, default=None, help="Alternative catalog YAML")
    parser.add_argument("--log-level", dest="log_level", default=None)
    subparsers = parser.add_subparsers(dest="command", required=True)

    # entries
    p_scan = subparsers.add_parser("scan", help="Show the state of every applicable entry.")
    p_scan.add_argument("--configured", action="store_true", help="Only configured entries")
    p_scan.add_argument("--json", dest="as_json", action="store_true")
    p_scan.set_defaults(func=scan_cmd)

    p_summary = subparsers.add_parser("summary", help="Configured/total counts per category.")
    p_summary.set_defaults(func=summary_cmd)

    p_apply = subparsers.add_parser("apply", help="Set entry ID to VALUE.")
    p_apply.add_argument("id")
    p_apply.add_argument("value")
    p_apply.set_defaults(func=apply_cmd)

    p_reset = subparsers.add_parser("reset", help="Return entry ID to its default.")
    p_reset.add_argument("id")
    p_reset.set_defaults(func=reset_cmd)

    p_remove = subparsers.add_parser("remove", help="Remove overrides.")
    p_remove.add_argument("ids", nargs="*")
    p_remove.add_argument("--all", action="store_true", help="Remove every configured override")
    p_remove.set_defaults(func=remove_cmd)

    # tweaks
    p_tweaks = subparsers.add_parser("tweaks", help="Show tweak toggles.")
    p_tweaks.add_argument("--json", dest="as_json", action="store_true")
    p_tweaks.set_defaults(func=tweaks_cmd)

    p_tweak = subparsers.add_parser("tweak", help="Switch tweak ID on or off.")
    p_tweak.add_argument("id")
    p_tweak.add_argument("state", type=_parse_on_off)
    p_tweak.set_defaults(func=tweak_cmd)

    # settings group
    p_settings = subparsers.add_parser("settings", help="Application preferences.")
    sp_settings = p_settings.add_subparsers(dest="settings_cmd", required=True)

    p_set_list = sp_settings.add_parser("list", help="List preferences")
    p_set_list.set_defaults(func=settings_list)

    p_set_get = sp_settings.add_parser("get", help="Print one preference")
    p_set_get.add_argument("key")
    p_set_get.set_defaults(func=settings_get)

    p_set_set = sp_settings.add_parser("set", help="Change one preference")
    p_set_set.add_argument("key")
    p_set_set.add_argument("value")
    p_set_set.set_defaults(func=settings_set)

    # profile group
    p_profile = subparsers.add_parser("profile", help="Export or import tweak profiles.")
    sp_profile = p_profile.add_subparsers(dest="profile_cmd", required=True)

    p_prof_export = sp_profile.add_parser("export", help="Save current tweak states")
    p_prof_export.add_argument("path", type=Path)
    p_prof_export.set_defaults(func=profile_export)

    p_prof_import = sp_profile.add_parser("import", help="Apply a saved profile")
    p_prof_import.add_argument("path", type=Path)
    p_prof_import.set_defaults(func=profile_import)

    # paths
    p_paths = subparsers.add_parser("paths", help="Show pytweak paths.")
    p_paths.add_argument("--json", dest="as_json", action="store_true")
    p_paths.set_defaults(func=show_paths)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    func = getattr(args, "func", None)
    if func is None:
        parser.print_help()
        return 1
    try:
        return int(func(args))
    except (TweakError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
