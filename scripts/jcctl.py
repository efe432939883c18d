"""Command-line reconciliation of JumpCloud resources.

This module serves as a CLI wrapper around jcprovider.core.jumpcloud services.
Desired state is read from YAML files:

    # group.yaml
    id: 5f1b...        # optional; omitted on first apply
    attributes:
      name: engineering
      description: Engineering staff
"""
from __future__ import annotations
import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import yaml

from jcprovider.config import load_settings
from jcprovider.core.jumpcloud import (
    RESOURCE_SERVICES,
    JumpCloudClient,
    JumpCloudError,
    ReconciliationError,
    ResourceState,
    SortSpec,
)

logger = logging.getLogger("jcctl")


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _parse_filters(items: list[str]) -> Dict[str, str]:
    filters: Dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid filter '{item}': expected key=value")
        filters[key] = value
    return filters


def load_desired(path: str) -> tuple[str, Dict[str, Any]]:
    """Read a desired-state file; returns (id, attributes)."""
    with open(path, encoding="utf-8") as handle:
        document = yaml.safe_load(handle) or {}
    if not isinstance(document, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    attributes = document.get("attributes", {})
    if not isinstance(attributes, dict):
        raise ValueError(f"{path}: 'attributes' must be a mapping")
    return str(document.get("id") or ""), attributes


def apply(service, resource_id: str, desired: Dict[str, Any]) -> ResourceState:
    """Create when there is no ID (or it vanished remotely), else update."""
    if resource_id:
        org_field = service.definition.org_field
        org_id = str(desired.get(org_field) or "") if org_field else ""
        # Seed only the org scope; write-only desired values must diff against nothing
        state = service.import_state(resource_id, org_id)
        if state.exists:
            return service.update(state, desired)
        logger.warning(f"{service.definition.kind} {resource_id} no longer exists; recreating")
    return service.create(desired)


def main() -> None:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(description="JumpCloud resource reconciliation")
    parser.add_argument("--api-url", default=os.environ.get("JUMPCLOUD_API_URL"))
    parser.add_argument("--org-id", default=os.environ.get("JUMPCLOUD_ORG_ID"))
    parser.add_argument("--log-level", default=os.environ.get("JUMPCLOUD_LOG_LEVEL", "WARNING"))

    sub = parser.add_subparsers(dest="cmd")
    kinds = sorted(RESOURCE_SERVICES)

    sl = sub.add_parser("list")
    sl.add_argument("kind", choices=kinds)
    sl.add_argument("--limit", type=int, default=100)
    sl.add_argument("--skip", type=int, default=0)
    sl.add_argument("--sort", action="append", default=[],
                    help="field, field:desc or -field (write --sort=-field for descending)")
    sl.add_argument("--filter", action="append", default=[], help="key=value (repeatable)")
    sl.add_argument("--resource-org-id", default="", help="Per-call organization sent as orgId")

    sg = sub.add_parser("get")
    sg.add_argument("kind", choices=kinds)
    sg.add_argument("--id", required=True)
    sg.add_argument("--resource-org-id", default="", help="Owning organization of org-scoped resources")

    sa = sub.add_parser("apply")
    sa.add_argument("kind", choices=kinds)
    sa.add_argument("--file", required=True)
    sa.add_argument("--id", default="", help="Existing resource ID (overrides the file)")

    sd = sub.add_parser("delete")
    sd.add_argument("kind", choices=kinds)
    sd.add_argument("--id", required=True)
    sd.add_argument("--resource-org-id", default="", help="Owning organization of org-scoped resources")

    args = parser.parse_args()

    if not args.cmd:
        parser.print_help()
        return

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        config = load_settings(org_id=args.org_id, api_url=args.api_url)
    except (RuntimeError, ValueError) as e:
        parser.error(str(e))

    client = JumpCloudClient(config)
    service = RESOURCE_SERVICES[args.kind](client)

    try:
        if args.cmd == "list":
            query = service.make_query(
                limit=args.limit,
                skip=args.skip,
                sort=[SortSpec.parse(s) for s in args.sort],
                filters=_parse_filters(args.filter),
                org_id=args.resource_org_id,
            )
            page = service.list(query)
            _emit({
                "results": [item.to_dict() for item in page.results],
                "total_count": page.total_count,
                "has_more": page.has_more,
            })
        elif args.cmd == "get":
            state = service.import_state(args.id, args.resource_org_id)
            if not state.exists:
                print(f"[get] {args.kind} {args.id} not found", file=sys.stderr)
                sys.exit(1)
            _emit(state.to_dict())
        elif args.cmd == "apply":
            file_id, desired = load_desired(args.file)
            state = apply(service, args.id or file_id, desired)
            _emit(state.to_dict())
        elif args.cmd == "delete":
            service.delete(service.scoped_state(args.id, args.resource_org_id))
            print(f"[delete] {args.kind} {args.id} deleted", file=sys.stderr)
    except ReconciliationError as e:
        print(f"[{args.cmd}] Error: {e}", file=sys.stderr)
        if e.resource_id:
            print(f"[{args.cmd}] {args.kind} was created with id {e.resource_id}; "
                  f"rerun with --id {e.resource_id}", file=sys.stderr)
        sys.exit(1)
    except (JumpCloudError, ValueError, OSError) as e:
        print(f"[{args.cmd}] Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
