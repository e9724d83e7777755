#!/usr/bin/env python3
"""CLI tool to enrich HubSpot companies with CNPJ registry data."""

import sys
import json
import asyncio
import argparse
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from cnpj_enricher.crm import schema
from cnpj_enricher.crm.hubspot import HubSpotClient
from cnpj_enricher.enrichment.mapping import summarize
from cnpj_enricher.errors import EnrichmentError
from cnpj_enricher.factory import get_enrichment_service, get_lookup_client, get_token_store
from cnpj_enricher.identifier.validator import format_display


def print_header(title):
    print(f"\n{'='*60}")
    print(f" {title}")
    print('='*60)


def print_error(error: EnrichmentError):
    print_header(f"ERROR: {error.code}")
    print(f"\n  {error.message}")
    data = error.to_dict()
    if "wait_time_formatted" in data:
        print(f"  Retry in: {data['wait_time_formatted']}")
    for key in ("cnpj", "company_id", "missing_properties"):
        if data.get(key):
            print(f"  {key}: {data[key]}")


def print_company(summary: dict):
    for key, value in summary.items():
        if value:
            print(f"  {key:22} {value}")


async def cmd_enrich(args):
    """Enrich one company by id."""
    service = get_enrichment_service()
    try:
        outcome = await service.enrich(args.company_id, get_token_store().get())
    finally:
        await service.lookup.close()

    if args.json:
        print(json.dumps(outcome.to_dict(), indent=2, ensure_ascii=False))
        return

    print_header(f"ENRICHED {format_display(outcome.cnpj)}")
    print(f"\nCompany:  {outcome.company_id}")
    print(f"Cached:   {'yes' if outcome.from_cache else 'no'}")
    print(f"Fields:   {len(outcome.properties)}\n")
    print_company(outcome.summary)


async def cmd_lookup(args):
    """Look up a CNPJ without touching HubSpot."""
    lookup = get_lookup_client()
    try:
        record = await lookup.fetch(args.cnpj)
    finally:
        await lookup.close()

    if args.json:
        print(json.dumps(summarize(record), indent=2, ensure_ascii=False))
        return

    print_header(f"CNPJ {format_display(record.cnpj)}")
    print()
    print_company(summarize(record))
    if record.partners:
        print("\nPartners:")
        for partner in record.partners:
            print(f"  {partner.name} ({partner.qualification or '-'})")


async def cmd_status(args):
    """Show limiter and token state."""
    lookup = get_lookup_client()
    status = lookup.status()
    tokens = get_token_store().get()

    print_header("STATUS")
    print(f"\nToken:          {'configured' if tokens else 'missing'}")
    if tokens:
        print(f"Expired:        {'yes' if tokens.is_expired() else 'no'}")
    print(f"Can request:    {'yes' if status.can_request else 'no'}")
    print(f"Next request:   {status.wait_formatted}")
    print(f"Window usage:   {status.requests_in_window}/{status.max_requests}")
    print(f"Window:         {lookup.window_seconds:.0f}s, min interval {lookup.min_interval_seconds:.0f}s")

    if tokens and args.check_fields:
        crm = HubSpotClient(get_token_store().require().access_token)
        try:
            missing = await schema.missing_properties(crm)
        finally:
            await crm.close()
        print(f"Missing fields: {', '.join(missing) if missing else 'none'}")


async def cmd_create_fields(args):
    """Create the enrichment properties in the portal."""
    if args.dry_run:
        print_header("FIELDS (dry run)")
        for definition in schema.COMPANY_PROPERTIES:
            print(f"  {definition['name']:30} {definition['type']}")
        return

    tokens = get_token_store().require()
    crm = HubSpotClient(tokens.access_token)
    try:
        result = await schema.ensure_properties(crm)
    finally:
        await crm.close()

    summary = result["summary"]
    print_header("CREATE FIELDS")
    print(f"\nTotal:          {summary['total']}")
    print(f"Created:        {summary['created']}")
    print(f"Already exist:  {summary['already_exists']}")
    print(f"Errors:         {summary['errors']}")
    for err in result["errors"]:
        print(f"  {err['name']}: {err['error']}")


def main():
    parser = argparse.ArgumentParser(
        description="Enrich HubSpot companies with CNPJ registry data"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # enrich
    p = subparsers.add_parser("enrich", help="Enrich a HubSpot company")
    p.add_argument("company_id", help="HubSpot company id")
    p.add_argument("--json", action="store_true", help="Print JSON")

    # lookup
    p = subparsers.add_parser("lookup", help="Look up a CNPJ in the registry")
    p.add_argument("cnpj", help="CNPJ, formatted or digits only")
    p.add_argument("--json", action="store_true", help="Print JSON")

    # status
    p = subparsers.add_parser("status", help="Show rate limit and token status")
    p.add_argument("--check-fields", action="store_true", help="Also list missing HubSpot properties")

    # create-fields
    p = subparsers.add_parser("create-fields", help="Create enrichment properties in HubSpot")
    p.add_argument("--dry-run", action="store_true", help="List fields without creating them")

    args = parser.parse_args()

    commands = {
        "enrich": cmd_enrich,
        "lookup": cmd_lookup,
        "status": cmd_status,
        "create-fields": cmd_create_fields,
    }
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return

    try:
        asyncio.run(command(args))
    except EnrichmentError as e:
        print_error(e)
        sys.exit(1)


if __name__ == "__main__":
    main()
