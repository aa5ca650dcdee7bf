from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, cast

from fallback_router.cli_output import print_payload, render_json, write_cli_report
from fallback_router.errors import (
    FallbackError,
    NoRouteAvailable,
    NotAVirtualModel,
    Resolution,
)
from fallback_router.persistence import JsonFileStore
from fallback_router.providers import AIProvider, parse_provider
from fallback_router.route_state import route_display, route_progress
from fallback_router.service import FallbackService
from fallback_router.settings import get_settings

if TYPE_CHECKING:
    from fallback_router.models import VirtualModel

Handler = Callable[[FallbackService, argparse.Namespace], int]


def _build_service(args: argparse.Namespace) -> FallbackService:
    settings = get_settings()
    if args.config:
        return FallbackService(
            JsonFileStore(args.config),
            route_state_ttl_seconds=settings.route_state_ttl_seconds,
        )
    return FallbackService.from_settings(settings)


def _report_error(error: FallbackError) -> int:
    sys.stderr.write(f"error: {error.message}\n")
    return 1


def _warn_if_unsaved(service: FallbackService) -> None:
    if service.last_persistence_error:
        sys.stderr.write(
            f"warning: configuration not saved: {service.last_persistence_error}\n"
        )


def _require_model(service: FallbackService, name_or_id: str) -> VirtualModel:
    model = service.lookup_virtual_model(name_or_id)
    if model is None:
        raise ValueError(f"Virtual model not found: {name_or_id}")
    return model


def _model_summary(model: VirtualModel) -> dict[str, Any]:
    return {
        "id": model.id,
        "name": model.name,
        "enabled": model.is_enabled,
        "entries": len(model.fallback_entries),
    }


def _model_detail(model: VirtualModel) -> dict[str, Any]:
    return {
        "id": model.id,
        "name": model.name,
        "enabled": model.is_enabled,
        "fallbackEntries": [
            {
                "id": entry.id,
                "priority": entry.priority,
                "provider": entry.provider.value,
                "modelId": entry.model_id,
                "display": entry.display_name,
            }
            for entry in model.sorted_entries()
        ],
    }


def _parse_target(raw: str) -> tuple[AIProvider, str]:
    provider_raw, separator, model_id = raw.partition("/")
    provider = parse_provider(provider_raw)
    if not separator or provider is None or not model_id.strip():
        raise ValueError(f"Expected PROVIDER/MODEL, got: {raw}")
    return provider, model_id.strip()


def cmd_list(service: FallbackService, args: argparse.Namespace) -> int:
    print_payload(
        {
            "enabled": service.is_enabled,
            "virtualModels": [_model_summary(model) for model in service.list_virtual_models()],
        },
        as_json=args.json,
    )
    return 0


def cmd_show(service: FallbackService, args: argparse.Namespace) -> int:
    model = _require_model(service, args.name)
    print_payload(_model_detail(model), as_json=args.json)
    return 0


def cmd_status(service: FallbackService, args: argparse.Namespace) -> int:
    print_payload(
        {
            "enabled": service.is_enabled,
            "virtualModels": len(service.list_virtual_models()),
            "enabledVirtualModels": service.enabled_virtual_model_names(),
        },
        as_json=args.json,
    )
    return 0


def cmd_enable(service: FallbackService, args: argparse.Namespace) -> int:
    enabled = service.set_enabled(args.enabled)
    _warn_if_unsaved(service)
    print(f"Fallback {'enabled' if enabled else 'disabled'}")
    return 0


def cmd_add_model(service: FallbackService, args: argparse.Namespace) -> int:
    result = service.add_virtual_model(args.name)
    if isinstance(result, FallbackError):
        return _report_error(result)
    _warn_if_unsaved(service)
    print(f"Created virtual model: {result.name} ({result.id})")
    return 0


def cmd_add_entry(service: FallbackService, args: argparse.Namespace) -> int:
    model = _require_model(service, args.name)
    result = service.add_fallback_entry(model.id, args.provider, args.model)
    if isinstance(result, FallbackError):
        return _report_error(result)
    _warn_if_unsaved(service)
    print(f"Added entry: {result.display_name} (priority {result.priority}, id {result.id})")
    return 0


def cmd_remove_model(service: FallbackService, args: argparse.Namespace) -> int:
    model = _require_model(service, args.name)
    result = service.remove_virtual_model(model.id)
    if isinstance(result, FallbackError):
        return _report_error(result)
    _warn_if_unsaved(service)
    print(f"Removed virtual model: {result.name}")
    return 0


def cmd_remove_entry(service: FallbackService, args: argparse.Namespace) -> int:
    model = _require_model(service, args.name)
    result = service.remove_fallback_entry(model.id, args.entry_id)
    if isinstance(result, FallbackError):
        return _report_error(result)
    _warn_if_unsaved(service)
    print(f"Removed entry: {result.display_name}")
    return 0


def cmd_move(service: FallbackService, args: argparse.Namespace) -> int:
    model = _require_model(service, args.name)
    result = service.move_fallback_entry(model.id, args.from_index, args.to_index)
    if isinstance(result, FallbackError):
        return _report_error(result)
    _warn_if_unsaved(service)
    print_payload(_model_detail(result), as_json=args.json)
    return 0


def cmd_rename(service: FallbackService, args: argparse.Namespace) -> int:
    model = _require_model(service, args.name)
    result = service.rename_virtual_model(model.id, args.new_name)
    if isinstance(result, FallbackError):
        return _report_error(result)
    _warn_if_unsaved(service)
    print(f"Renamed virtual model: {model.name} -> {result.name}")
    return 0


def cmd_toggle(service: FallbackService, args: argparse.Namespace) -> int:
    model = _require_model(service, args.name)
    result = service.toggle_virtual_model(model.id)
    if isinstance(result, FallbackError):
        return _report_error(result)
    _warn_if_unsaved(service)
    print(f"Virtual model {result.name} {'enabled' if result.is_enabled else 'disabled'}")
    return 0


def cmd_routes(service: FallbackService, args: argparse.Namespace) -> int:
    rows = []
    for state in service.get_all_route_states():
        row = state.to_dict()
        row["display"] = route_display(state)
        row["position"] = route_progress(state)
        rows.append(row)
    print_payload({"routes": rows}, as_json=args.json)
    return 0


def cmd_clear_routes(service: FallbackService, _: argparse.Namespace) -> int:
    cleared = service.clear_all_route_states()
    print(f"Cleared {cleared} route state(s)")
    return 0


def cmd_export(service: FallbackService, args: argparse.Namespace) -> int:
    write_cli_report(rendered=service.export_configuration(), output_path=args.output)
    return 0


def cmd_import(service: FallbackService, args: argparse.Namespace) -> int:
    text = Path(args.path).read_text(encoding="utf-8")
    error = service.import_configuration(text)
    if error is not None:
        return _report_error(error)
    _warn_if_unsaved(service)
    print(f"Imported fallback configuration from {args.path}")
    return 0


def cmd_reset(service: FallbackService, _: argparse.Namespace) -> int:
    service.reset_to_defaults()
    _warn_if_unsaved(service)
    print("Fallback configuration reset to defaults")
    return 0


def cmd_providers(_: FallbackService, args: argparse.Namespace) -> int:
    print_payload(
        [{"id": provider.value, "displayName": provider.display_name} for provider in AIProvider],
        as_json=args.json,
    )
    return 0


def cmd_resolve(service: FallbackService, args: argparse.Namespace) -> int:
    available = {_parse_target(raw) for raw in args.available or []}

    def _checker(provider: AIProvider, model_id: str) -> bool:
        return args.all_available or (provider, model_id) in available

    outcome = service.resolve_model_sync(args.name, _checker)
    if isinstance(outcome, Resolution):
        payload: dict[str, Any] = {
            "status": "resolved",
            "virtualModelName": outcome.virtual_model_name,
            "provider": outcome.provider.value,
            "modelId": outcome.model_id,
            "fallbackIndex": outcome.fallback_index,
        }
        exit_code = 0
    elif isinstance(outcome, NotAVirtualModel):
        payload = {"status": "not_virtual", "model": outcome.requested_model}
        exit_code = 0
    else:
        no_route = cast(NoRouteAvailable, outcome)
        payload = {
            "status": "no_route",
            "virtualModelName": no_route.virtual_model_name,
            "attempted": no_route.attempted,
        }
        exit_code = 1
    if args.json:
        print(render_json(payload))
    else:
        print_payload(payload)
    return exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fallback-router",
        description="Manage fallback virtual models and inspect route resolution.",
    )
    parser.add_argument(
        "--config",
        help="Path to the fallback configuration JSON (default: FALLBACK_CONFIG_PATH).",
    )
    parser.add_argument("--json", action="store_true", help="Emit JSON instead of YAML.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_cmd = subparsers.add_parser("list", aliases=["ls"], help="List virtual models.")
    list_cmd.set_defaults(handler=cmd_list)

    show_cmd = subparsers.add_parser("show", help="Show entries for a virtual model.")
    show_cmd.add_argument("name", help="Virtual model name or id.")
    show_cmd.set_defaults(handler=cmd_show)

    status_cmd = subparsers.add_parser("status", help="Show global fallback status.")
    status_cmd.set_defaults(handler=cmd_status)

    enable_cmd = subparsers.add_parser("enable", help="Enable fallback routing globally.")
    enable_cmd.set_defaults(handler=cmd_enable, enabled=True)

    disable_cmd = subparsers.add_parser("disable", help="Disable fallback routing globally.")
    disable_cmd.set_defaults(handler=cmd_enable, enabled=False)

    add_model_cmd = subparsers.add_parser("add-model", help="Create a virtual model.")
    add_model_cmd.add_argument("name")
    add_model_cmd.set_defaults(handler=cmd_add_model)

    add_entry_cmd = subparsers.add_parser(
        "add-entry",
        help="Append a provider/model entry to a virtual model's chain.",
    )
    add_entry_cmd.add_argument("name", help="Virtual model name or id.")
    add_entry_cmd.add_argument("--provider", "-p", required=True)
    add_entry_cmd.add_argument("--model", "-m", required=True)
    add_entry_cmd.set_defaults(handler=cmd_add_entry)

    remove_model_cmd = subparsers.add_parser("remove-model", help="Delete a virtual model.")
    remove_model_cmd.add_argument("name", help="Virtual model name or id.")
    remove_model_cmd.set_defaults(handler=cmd_remove_model)

    remove_entry_cmd = subparsers.add_parser("remove-entry", help="Delete a fallback entry.")
    remove_entry_cmd.add_argument("name", help="Virtual model name or id.")
    remove_entry_cmd.add_argument("entry_id")
    remove_entry_cmd.set_defaults(handler=cmd_remove_entry)

    move_cmd = subparsers.add_parser("move", help="Move an entry within the chain (0-based).")
    move_cmd.add_argument("name", help="Virtual model name or id.")
    move_cmd.add_argument("--from", dest="from_index", type=int, required=True)
    move_cmd.add_argument("--to", dest="to_index", type=int, required=True)
    move_cmd.set_defaults(handler=cmd_move)

    rename_cmd = subparsers.add_parser("rename", help="Rename a virtual model.")
    rename_cmd.add_argument("name", help="Virtual model name or id.")
    rename_cmd.add_argument("new_name")
    rename_cmd.set_defaults(handler=cmd_rename)

    toggle_cmd = subparsers.add_parser("toggle", help="Flip a virtual model's enabled state.")
    toggle_cmd.add_argument("name", help="Virtual model name or id.")
    toggle_cmd.set_defaults(handler=cmd_toggle)

    routes_cmd = subparsers.add_parser("routes", help="Show cached route states.")
    routes_cmd.set_defaults(handler=cmd_routes)

    clear_routes_cmd = subparsers.add_parser("clear-routes", help="Drop all cached route states.")
    clear_routes_cmd.set_defaults(handler=cmd_clear_routes)

    export_cmd = subparsers.add_parser("export", help="Export configuration as JSON.")
    export_cmd.add_argument("--output", "-o")
    export_cmd.set_defaults(handler=cmd_export)

    import_cmd = subparsers.add_parser("import", help="Replace configuration from a JSON file.")
    import_cmd.add_argument("path")
    import_cmd.set_defaults(handler=cmd_import)

    reset_cmd = subparsers.add_parser("reset", help="Reset configuration to defaults.")
    reset_cmd.set_defaults(handler=cmd_reset)

    providers_cmd = subparsers.add_parser("providers", help="List supported provider ids.")
    providers_cmd.set_defaults(handler=cmd_providers)

    resolve_cmd = subparsers.add_parser(
        "resolve",
        help="Resolve a model name against a static availability list.",
    )
    resolve_cmd.add_argument("name")
    resolve_cmd.add_argument(
        "--available",
        "-a",
        action="append",
        metavar="PROVIDER/MODEL",
        help="Backend to treat as having capacity (repeatable).",
    )
    resolve_cmd.add_argument(
        "--all-available",
        action="store_true",
        help="Treat every backend as having capacity.",
    )
    resolve_cmd.set_defaults(handler=cmd_resolve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = cast(Handler, args.handler)

    try:
        logging.basicConfig(level=get_settings().log_level_name)
        service = _build_service(args)
        return handler(service, args)
    except Exception as exc:  # pragma: no cover - covered via CLI tests
        parser.exit(2, f"error: {exc}\n")


if __name__ == "__main__":
    raise SystemExit(main())
