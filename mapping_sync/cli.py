"""Command-line helper for OneLogin mapping order reconciliation.

This module serves as a CLI wrapper around mapping_sync.core.onelogin services.
"""
from __future__ import annotations
import argparse
import logging
import os
import sys

import requests

from mapping_sync import audit
from mapping_sync.config import AppConfig, DeclarationError, load_desired_state, load_mapping_rule, load_settings
from mapping_sync.core.onelogin import (
    MappingOrderReconciler,
    MappingService,
    OneLoginClient,
    OneLoginError,
    SetMismatchError,
)
from mapping_sync.core.state_store import StateStore

_ENV_FLAGS = (
    ("subdomain", "ONELOGIN_SUBDOMAIN"),
    ("client_id", "ONELOGIN_CLIENT_ID"),
    ("client_secret", "ONELOGIN_CLIENT_SECRET"),
    ("state_file", "MAPPING_STATE_FILE"),
)


def _load_config(args: argparse.Namespace) -> AppConfig:
    """Command-line flags take precedence over the environment."""
    for flag, env_var in _ENV_FLAGS:
        value = getattr(args, flag, None)
        if value:
            os.environ[env_var] = value
    return load_settings()


def _connect(config: AppConfig) -> OneLoginClient:
    return OneLoginClient.from_settings(config)


def _format_ids(ids) -> str:
    return "[" + ", ".join(str(i) for i in ids) + "]"


def _cmd_show(reconciler: MappingOrderReconciler) -> None:
    observed = reconciler.observe()
    for warning in observed.warnings:
        print(f"[show] Warning: {warning}", file=sys.stderr)
    print(f"enabled:  {_format_ids(observed.enabled)}")
    print(f"disabled: {_format_ids(observed.disabled)}")


def _cmd_refresh(reconciler: MappingOrderReconciler, store: StateStore) -> bool:
    """Re-read OneLogin against the recorded state; False when nothing is recorded yet."""
    previous = store.load()
    if previous is None:
        return False
    state = reconciler.refresh(previous)
    store.save(state)
    if state.enabled != previous.enabled:
        print(
            f"[refresh] Enabled order changed outside sync: "
            f"{_format_ids(previous.enabled)} -> {_format_ids(state.enabled)}",
            file=sys.stderr,
        )
    print(f"enabled:  {_format_ids(state.enabled)}")
    print(f"disabled: {_format_ids(state.disabled)}")
    return True


def _cmd_plan(reconciler: MappingOrderReconciler, config_path: str) -> None:
    desired = load_desired_state(config_path)
    plan = reconciler.plan(desired)
    print(f"disable: {_format_ids(m.id for m in plan.to_disable)}")
    print(f"enable:  {_format_ids(m.id for m in plan.to_enable)}")
    if plan.reorder_needed:
        print(f"reorder: {_format_ids(plan.current_order)} -> {_format_ids(desired.enabled)}")
    else:
        print("reorder: not needed")


def _cmd_sync(reconciler: MappingOrderReconciler, config_path: str, operator: str, subdomain: str) -> None:
    desired = load_desired_state(config_path)
    result = reconciler.reconcile(desired)
    audit.safe_log_sync_event(
        "mapping_order_sync",
        "mapping-order",
        operator=operator,
        subdomain=subdomain,
        details={
            "disabled": result.disabled,
            "enabled": result.enabled,
            "reordered": result.reordered,
            "order": result.state.enabled,
        },
        success=True,
    )
    if not result.changed:
        print("[sync] Mapping order already up to date", file=sys.stderr)
        return
    print(
        f"[sync] Disabled {_format_ids(result.disabled)}, enabled {_format_ids(result.enabled)}, "
        f"order {_format_ids(result.state.enabled)}",
        file=sys.stderr,
    )


def main(argv: list[str] | None = None) -> None:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(description="OneLogin mapping order helper")
    parser.add_argument("--subdomain", default=None, help="OneLogin subdomain (env: ONELOGIN_SUBDOMAIN)")
    parser.add_argument("--client-id", default=None, help="API client id (env: ONELOGIN_CLIENT_ID)")
    parser.add_argument("--client-secret", default=None, help="API client secret (env: ONELOGIN_CLIENT_SECRET)")
    parser.add_argument("--state-file", default=None, help="Observed state file (env: MAPPING_STATE_FILE)")
    parser.add_argument("--operator", default="automation",
                        help="Operator identifier for audit logs (default: automation)")

    sub = parser.add_subparsers(dest="cmd")

    sub.add_parser("show")
    sub.add_parser("refresh")

    sp = sub.add_parser("plan")
    sp.add_argument("--config", required=True)

    ss = sub.add_parser("sync")
    ss.add_argument("--config", required=True)

    sc = sub.add_parser("create-mapping")
    sc.add_argument("--file", required=True)

    sd = sub.add_parser("delete-mapping")
    sd.add_argument("--id", type=int, required=True)

    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return

    try:
        config = _load_config(args)
    except RuntimeError as e:
        parser.error(str(e))

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        client = _connect(config)
    except (OneLoginError, requests.RequestException) as e:
        print(f"[{args.cmd}] Error: unable to authenticate with OneLogin: {e}", file=sys.stderr)
        sys.exit(1)

    store = StateStore(config.state_file)
    reconciler = MappingOrderReconciler(
        client,
        toggle_retry=config.toggle_retry_policy,
        state_store=store,
    )

    if args.cmd == "show":
        try:
            _cmd_show(reconciler)
        except (OneLoginError, requests.RequestException) as e:
            print(f"[show] Error: {e}", file=sys.stderr)
            sys.exit(1)
    elif args.cmd == "refresh":
        try:
            if not _cmd_refresh(reconciler, store):
                print(f"[refresh] Error: no recorded state at {store.path}; run sync first", file=sys.stderr)
                sys.exit(1)
        except SetMismatchError as e:
            print(f"[refresh] Error: disabled mappings drifted from the recorded state: {e}", file=sys.stderr)
            sys.exit(1)
        except (OneLoginError, ValueError, OSError, requests.RequestException) as e:
            print(f"[refresh] Error: {e}", file=sys.stderr)
            sys.exit(1)
    elif args.cmd == "plan":
        try:
            _cmd_plan(reconciler, args.config)
        except (OneLoginError, DeclarationError, OSError, requests.RequestException) as e:
            print(f"[plan] Error: {e}", file=sys.stderr)
            sys.exit(1)
    elif args.cmd == "sync":
        try:
            _cmd_sync(reconciler, args.config, args.operator, config.onelogin_subdomain)
        except (OneLoginError, DeclarationError, OSError, requests.RequestException) as e:
            print(f"[sync] Error: {e}", file=sys.stderr)
            audit.safe_log_sync_event(
                "mapping_order_sync",
                "mapping-order",
                operator=args.operator,
                subdomain=config.onelogin_subdomain,
                details={"error": str(e)},
                success=False,
            )
            sys.exit(1)
    elif args.cmd == "create-mapping":
        try:
            rule = load_mapping_rule(args.file)
            new_id = MappingService(client).create(rule)
            audit.safe_log_sync_event(
                "mapping_create",
                str(new_id),
                operator=args.operator,
                subdomain=config.onelogin_subdomain,
                details={"name": rule.name},
                success=True,
            )
            print(new_id)
        except (OneLoginError, DeclarationError, OSError, requests.RequestException) as e:
            print(f"[create-mapping] Error: {e}", file=sys.stderr)
            audit.safe_log_sync_event(
                "mapping_create",
                args.file,
                operator=args.operator,
                subdomain=config.onelogin_subdomain,
                details={"error": str(e)},
                success=False,
            )
            sys.exit(1)
    elif args.cmd == "delete-mapping":
        try:
            deleted = MappingService(client).delete(args.id)
            audit.safe_log_sync_event(
                "mapping_delete",
                str(args.id),
                operator=args.operator,
                subdomain=config.onelogin_subdomain,
                details={"already_absent": not deleted},
                success=True,
            )
            if not deleted:
                print(f"[delete-mapping] Mapping {args.id} was already absent", file=sys.stderr)
        except (OneLoginError, requests.RequestException) as e:
            print(f"[delete-mapping] Error: {e}", file=sys.stderr)
            audit.safe_log_sync_event(
                "mapping_delete",
                str(args.id),
                operator=args.operator,
                subdomain=config.onelogin_subdomain,
                details={"error": str(e)},
                success=False,
            )
            sys.exit(1)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
