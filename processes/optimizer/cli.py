"""CLI interface for the optimizer, the spider and the settings store."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from pipeline.io.settings import Settings, SettingsStore, load_config
from pipeline.io.storage import JsonFileStorage

from .adapter import (
    SCHEMAS_ROOT,
    load_environment,
    load_settings,
    open_store,
    run_adapter,
    validate_settings,
)
from .types import OptimizerError


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the optimizer CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m processes.optimizer",
        description="Drive a target server to minimum security and maximum money",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    opt = subparsers.add_parser("optimize", help="Optimize a target in a sandbox environment")
    opt.add_argument("--env", type=Path, required=True, help="Sandbox environment file (YAML/JSON)")
    opt.add_argument("--target", help="Target server (defaults to the configured target)")
    opt.add_argument("--config", type=Path)
    opt.add_argument("--config-kv", nargs="*", help="Inline overrides key=value")
    opt.add_argument("--force-run", action="store_true", help="Dispatch once and return without waiting")
    opt.add_argument("--max-iterations", type=int, help="Stop after this many iterations")
    opt.add_argument("--spider", action="store_true", help="Root hosts and deploy workers first")
    opt.add_argument("--out-root", type=Path, default=Path("data"))
    opt.add_argument("--tag", type=str)
    opt.add_argument("--store", type=Path, help="Settings store (JSON file)")
    opt.add_argument(
        "--schemas-root",
        type=Path,
        help="Override schemas root (defaults to repo-relative pipeline/schemas)",
    )
    opt.add_argument("--no-validate", action="store_true", help="Skip schema validation")
    opt.add_argument("--dry-run", action="store_true", help="Show the capacity plan without running")
    opt.add_argument("--verbose", action="store_true")

    spider = subparsers.add_parser("spider", help="Crawl the network, root hosts, deploy workers")
    spider.add_argument("--env", type=Path, required=True, help="Sandbox environment file (YAML/JSON)")
    spider.add_argument("--store", type=Path, help="Settings store (JSON file)")
    spider.add_argument("--schemas-root", type=Path)
    spider.add_argument("--verbose", action="store_true")

    st = subparsers.add_parser("settings", help="Show or change stored settings")
    st.add_argument("action", choices=["show", "set", "unset"])
    st.add_argument("items", nargs="*", help="key=value pairs for set, keys for unset")
    st.add_argument("--store", type=Path, required=True, help="Settings store (JSON file)")
    st.add_argument("--schemas-root", type=Path)
    st.add_argument("--verbose", action="store_true")

    return parser


def cmd_optimize(args: argparse.Namespace) -> int:
    result = run_adapter(
        env_path=args.env,
        out_root=args.out_root,
        target=args.target,
        config_path=args.config,
        config_kv=args.config_kv,
        force_run=args.force_run,
        max_iterations=args.max_iterations,
        spider=args.spider,
        tag=args.tag,
        schemas_root=args.schemas_root,
        store_path=args.store,
        validate=not args.no_validate,
        dry_run=args.dry_run,
        verbose=args.verbose,
    )
    if args.dry_run:
        print(f"[optimizer] Dry run completed. Plan: {json.dumps(result['plan'])}")
        return 0

    summary = result["summary"]
    print(f"[optimizer] Run ID: {result['run_id']}")
    print(f"[optimizer] Target: {result['target']} optimal={summary['optimal']}")
    print(f"[optimizer] Iterations: {summary['iterations']} dispatches: {summary['dispatch_count']}")
    if args.verbose:
        print(f"[optimizer] manifest: {result['manifest_path']}", file=sys.stderr)
        print(f"[optimizer] residuals: {summary['residuals']}", file=sys.stderr)
    return 0


def cmd_spider(args: argparse.Namespace) -> int:
    from processes.spider.adapter import run_spider

    schemas_root = args.schemas_root or SCHEMAS_ROOT
    store = open_store(args.store)
    settings = load_settings(store=store, config_path=None, config_kv=None, schemas_root=schemas_root)
    env, _ = load_environment(args.env, schemas_root=schemas_root)
    result = run_spider(env, store, settings)
    print(f"[optimizer] Crackers: {', '.join(result.crackers) or '-'}")
    print(f"[optimizer] Hosts: {len(result.network_map)} botnet: {len(result.botnet)}")
    for hostname in result.deploy_failures:
        print(f"[optimizer] Warning: worker deployment failed on {hostname}", file=sys.stderr)
    return 0


def cmd_settings(args: argparse.Namespace) -> int:
    schemas_root = args.schemas_root or SCHEMAS_ROOT
    store = SettingsStore(JsonFileStorage(args.store))
    if args.action == "set":
        changes = load_config(None, args.items)
        if not changes:
            print("[optimizer] error: nothing to set (expected key=value)", file=sys.stderr)
            return 1
        merged = Settings.from_dict({**store.load().to_dict(), **changes})
        validate_settings(merged, schemas_root)
        store.save(merged)
    elif args.action == "unset":
        for key in args.items:
            store.remove(key)
    print(json.dumps(store.load().to_dict(), indent=2, sort_keys=True))
    return 0


COMMANDS = {
    "optimize": cmd_optimize,
    "spider": cmd_spider,
    "settings": cmd_settings,
}


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s %(levelname)s %(message)s")

    try:
        return COMMANDS[args.command](args)
    except OptimizerError as e:
        print(f"[optimizer] error: {e.code.value}: {e.user_message}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"[optimizer] error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
