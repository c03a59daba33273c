#!/usr/bin/env python3
"""
FleetGuard - command-line entry point
Runs one composite security scan against a single site and prints the record
"""
import asyncio
import sys
import json
import argparse
import logging

from fleetguard.clients.registry import InMemoryWebsiteRegistry
from fleetguard.config import settings
from fleetguard.core.error_handling.exceptions import FleetGuardBaseException
from fleetguard.core.logging.structured_logger import configure_logging
from fleetguard.core.scanner.factory import build_coordinator
from fleetguard.core.target import ScanTarget
from fleetguard.database import connection_manager, init_db
from fleetguard.models.scan import ScanTrigger
from fleetguard.schemas.scan import ScanRecordResponse, to_flat_view

logger = logging.getLogger(__name__)


class FleetGuardCLI:
    """Command-line interface for the FleetGuard scanner"""

    def __init__(self, target: ScanTarget):
        self.target = target
        self.coordinator = build_coordinator(
            settings,
            connection_manager,
            registry=InMemoryWebsiteRegistry({target.website_id: target}),
        )

    async def run_scan(self) -> ScanRecordResponse:
        print(f"[*] Target: {self.target.base_url}")
        print(f"[*] Probes: {', '.join(probe.kind.value for probe in self.coordinator.probes)}")
        print(f"[*] Deadline: {self.coordinator.scan_deadline:.1f}s")

        scan = await self.coordinator.start_scan(self.target.website_id, ScanTrigger.MANUAL)
        return ScanRecordResponse.model_validate(scan)

    def print_summary(self, record: ScanRecordResponse):
        print(f"\n[+] Status: {record.scan_status.value}")
        if record.error_message:
            print(f"[!] Error: {record.error_message}")
            return

        print(f"[+] Score: {record.overall_security_score}/100 ({record.threat_level})")
        print(f"[+] Probes returned: {record.probes_returned}/6")
        for deduction in record.score_deductions:
            print(f"  - {deduction.probe}: -{deduction.points} {deduction.reason}")


def main():
    parser = argparse.ArgumentParser(
        description='FleetGuard - WordPress fleet security scanner',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run.py scan 1 --url https://example.com                    # Public probes only
  python run.py scan 1 --url https://example.com --api-key KEY      # Include management plugin probes
  python run.py scan 1 --url https://example.com -o scan.json --flat

Only scan sites you own or are permitted to test.
        """
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    scan_parser = subparsers.add_parser('scan', help='Run one security scan and print the record as JSON')
    scan_parser.add_argument('website_id', type=int, help='Website id to record the scan under')
    scan_parser.add_argument('--url', required=True, help='Site URL')
    scan_parser.add_argument('--api-key', help='Management plugin API key')
    scan_parser.add_argument('-o', '--output', help='Also write the record to this JSON file')
    scan_parser.add_argument('--flat', action='store_true', help='Include the legacy flat result fields')
    scan_parser.add_argument('-v', '--verbose', action='store_true', help='Verbose output')

    args = parser.parse_args()

    configure_logging("DEBUG" if args.verbose else settings.log_level, json_output=False)
    init_db()

    target = ScanTarget(website_id=args.website_id, url=args.url, management_api_key=args.api_key)
    cli = FleetGuardCLI(target)

    try:
        record = asyncio.run(cli.run_scan())
    except KeyboardInterrupt:
        print("\n\n[!] Scan interrupted by user")
        sys.exit(1)
    except FleetGuardBaseException as e:
        print(f"\n[!] {e.message}")
        sys.exit(1)

    cli.print_summary(record)

    body = record.model_dump(mode="json", by_alias=True)
    if args.flat:
        body.update(to_flat_view(record))
    print(json.dumps(body, indent=2))

    if args.output:
        with open(args.output, 'w') as f:
            json.dump(body, f, indent=2)
        print(f"\n[+] Record saved to: {args.output}")


if __name__ == "__main__":
    main()
