#!/usr/bin/env python
"""
Print the URL the PostgREST guard would send instead of the given one.

Usage:
    cliniio-guard "https://x.supabase.co/rest/v1/tools?facility_id=eq.:1"
    cliniio-guard URL --facility-id 3f1c...      # repair tenant filters with this id
    cliniio-guard URL --environment production   # no development fallback
"""

import argparse
import logging
import sys
from typing import List, Optional

from cliniio_guard.core.config import settings
from cliniio_guard.core.errors import CliniioGuardError
from cliniio_guard.core.facility_cache import FacilityIdentityCache
from cliniio_guard.core.request_sanitizer import RequestSanitizer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Sanitize a PostgREST request URL')
    parser.add_argument('url', help='Request URL to sanitize')
    parser.add_argument(
        '--facility-id',
        type=str,
        default=None,
        help='Facility id used to repair tenant filters (default: cache fallback)'
    )
    parser.add_argument(
        '--environment',
        type=str,
        default=settings.environment,
        choices=['development', 'staging', 'production'],
        help=f'Build environment (default: {settings.environment})'
    )
    parser.add_argument(
        '--marker',
        type=str,
        default=settings.guard.rest_path_marker,
        help=f'REST path marker (default: {settings.guard.rest_path_marker})'
    )
    parser.add_argument(
        '--log-level',
        type=str,
        default=settings.log_level.lower(),
        choices=['debug', 'info', 'warning', 'error'],
        help='Log level'
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )

    if args.facility_id:
        provider = lambda: args.facility_id  # noqa: E731
    else:
        provider = FacilityIdentityCache(environment=args.environment).get_current

    sanitizer = RequestSanitizer(facility_id_provider=provider, rest_marker=args.marker)
    try:
        print(sanitizer.rewrite_url(args.url))
    except CliniioGuardError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
