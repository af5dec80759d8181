#!/usr/bin/env python3
"""
D365 F&O OData query helper.

Resolves a loosely typed entity name against the service catalog, types the
filter values from $metadata and prints (or runs) the resulting OData query.
"""

import argparse
import asyncio
import json
import os
import sys
import traceback
from typing import Dict, List, Optional
from dotenv import load_dotenv
import requests

from d365_odata_lib import (
    ClientCredentialsExchange,
    CredentialCache,
    CredentialError,
    EntityCatalog,
    EntityQueryBuilder,
    MetadataParser,
    ODataClient,
    SchemaRegistry,
    ServiceConfig
)

# Load environment variables from .env file
load_dotenv()


class Services:
    """The wired-up caches and client for one service configuration."""

    def __init__(self, config: ServiceConfig, verbose: bool = False):
        self.config = config
        self.exchange = ClientCredentialsExchange(config, verbose=verbose)
        self.credentials = CredentialCache(
            self.exchange,
            refresh_margin=config.refresh_margin,
            verbose=verbose
        )
        self.client = ODataClient(config, self.credentials, verbose=verbose)
        self.catalog = EntityCatalog(self.client.fetch_catalog, threshold=config.match_threshold, verbose=verbose)
        self.registry = SchemaRegistry(self.client.fetch_metadata, verbose=verbose)
        self.queries = EntityQueryBuilder(self.catalog, self.registry, config.data_url, verbose=verbose)

    def close(self):
        self.client.close()
        self.exchange.session.close()


def parse_filter_args(items: Optional[List[str]]) -> Dict[str, str]:
    """Parse repeated KEY=VALUE arguments, keeping their order."""
    filters = {}
    for item in items or []:
        if '=' not in item:
            raise ValueError(f"Filter '{item}' must look like KEY=VALUE")
        key, value = item.split('=', 1)
        key = key.strip()
        if not key:
            raise ValueError(f"Filter '{item}' has an empty field name")
        filters[key] = value.strip()
    return filters


async def run(args, services: Services) -> int:
    filters = parse_filter_args(args.filter)
    plan = await services.queries.prepare(
        args.entity,
        filters=filters,
        select=args.select,
        expand=args.expand,
        top=args.top,
        cross_company=args.cross_company,
        count=args.count
    )
    if plan is None:
        print(f"Could not find a matching entity for '{args.entity}'. Please provide a more specific name.", file=sys.stderr)
        return 1

    for notice in plan.notices:
        print(f"Note: {notice}", file=sys.stderr)

    if args.schema:
        schema = await services.registry.schema_for(plan.entity_set)
        if schema is None:
            print(f"No schema found for '{plan.entity_set}'.", file=sys.stderr)
        else:
            print(json.dumps({"type": schema.type_name, "fields": MetadataParser.describe(schema)}, indent=2))

    if not args.execute:
        print(json.dumps({"entity_set": plan.entity_set, "url": plan.url, "params": plan.params}, indent=2))
        return 0

    result = await services.client.execute(plan)
    print(json.dumps(result, indent=2, default=str))
    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Resolve and query Dynamics 365 F&O OData entities",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("entity", help="Entity set name; does not need to be exact (e.g. 'customer' -> CustomersV3)")
    parser.add_argument("--filter", action="append", metavar="KEY=VALUE", help="Filter on a field; repeat to combine with 'and'")
    parser.add_argument("--select", help="OData $select query parameter")
    parser.add_argument("--expand", help="OData $expand query parameter")
    parser.add_argument("--top", type=int, help="OData $top query parameter")
    parser.add_argument("--cross-company", dest="cross_company", action="store_true", default=None, help="Query across all companies")
    parser.add_argument("--no-cross-company", dest="cross_company", action="store_false", help="Never enable cross-company, even when filtering on dataAreaId")
    parser.add_argument("--count", action="store_true", help="Count matching records instead of listing them")
    parser.add_argument("--schema", action="store_true", help="Print the field schema of the resolved entity")
    parser.add_argument("--execute", action="store_true", help="Run the query and print the response (default: only print the planned request)")
    parser.add_argument("--resource", dest="resource_via_flag", help="D365 environment URL (overrides DYNAMICS_RESOURCE_URL env var)")
    parser.add_argument("--threshold", type=float, help="Maximum name distance accepted when matching entities (overrides DYNAMICS_MATCH_THRESHOLD)")
    parser.add_argument("-v", "--verbose", "--debug", dest="verbose", action="store_true", help="Enable verbose output to stderr")

    args = parser.parse_args()

    # Priority: command-line flag > environment variable > .env file
    env = dict(os.environ)
    if args.resource_via_flag:
        env['DYNAMICS_RESOURCE_URL'] = args.resource_via_flag
        if args.verbose: print("[VERBOSE] Using resource URL from --resource flag.", file=sys.stderr)
    if args.threshold is not None:
        env['DYNAMICS_MATCH_THRESHOLD'] = str(args.threshold)

    try:
        config = ServiceConfig.from_env(env)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        print("Set the DYNAMICS_* variables in the environment or a .env file.", file=sys.stderr)
        sys.exit(1)

    services = Services(config, verbose=args.verbose)
    try:
        exit_code = asyncio.run(run(args, services))
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        exit_code = 1
    except CredentialError as e:
        print(f"ERROR: Authentication failed: {e}", file=sys.stderr)
        exit_code = 1
    except requests.exceptions.RequestException as e:
        print(f"ERROR: Request failed: {e}", file=sys.stderr)
        exit_code = 1
    except Exception as e:
        print(f"\n--- FATAL ERROR ---", file=sys.stderr)
        print(f"An unexpected error occurred: {e}", file=sys.stderr)
        traceback.print_exc(file=sys.stderr)
        print("-------------------", file=sys.stderr)
        exit_code = 1
    finally:
        services.close()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
