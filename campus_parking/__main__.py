# File: campus_parking/__main__.py
"""
Command-line entry point for the Campus Parking Booking Engine

    python -m campus_parking seed
    python -m campus_parking sweep [--loop]
    python -m campus_parking available --role student --location "Building A"
    python -m campus_parking status [--location "Main Campus"]

Settings come from PARKING_* environment variables. Without
PARKING_DATABASE_URL the store is in-memory and is seeded on every run.
"""

from datetime import datetime
from typing import List, Optional
import argparse
import json
import time
import sys

from .application.config import Settings, configure_logging
from .application.dtos import AvailabilityFilter
from .application.errors import BookingError
from .domain.models import CampusLocation, Role, VehicleType
from .infrastructure.factories import EngineFactory, ParkingServices


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="campus_parking", description="Campus parking booking engine")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("seed", help="Create the default slot layout in an empty store")

    sweep = subparsers.add_parser("sweep", help="Expire lapsed bookings and send reminders")
    sweep.add_argument("--loop", action="store_true", help="Keep sweeping every PARKING_SWEEP_INTERVAL_SECONDS")

    available = subparsers.add_parser("available", help="List slots free for a role and window")
    available.add_argument("--role", required=True, choices=[r.value for r in Role])
    available.add_argument("--location", choices=[l.value for l in CampusLocation])
    available.add_argument("--vehicle-type", choices=[v.value for v in VehicleType])
    available.add_argument("--start", type=datetime.fromisoformat, help="ISO-8601 window start (UTC)")
    available.add_argument("--end", type=datetime.fromisoformat, help="ISO-8601 window end (UTC)")

    status = subparsers.add_parser("status", help="Show live slot status and per-location totals")
    status.add_argument("--location", choices=[l.value for l in CampusLocation])

    return parser


def _emit(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def run_sweep(services: ParkingServices, loop: bool) -> None:
    if not loop:
        _emit(services.sweeper.run_once())
        return
    services.sweeper.start()
    try:
        while services.sweeper.running:
            time.sleep(1.0)
    except KeyboardInterrupt:
        pass
    finally:
        services.sweeper.stop()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    logger = configure_logging(settings.log_level)

    services = EngineFactory(settings).create_services()
    try:
        return run_command(args, settings, services, logger)
    finally:
        services.close()


def run_command(args: argparse.Namespace, settings: Settings, services: ParkingServices, logger) -> int:
    if args.command == "seed" or not settings.database_url:
        created = services.provisioner.seed_default_layout()
        if args.command == "seed":
            _emit({"created": created})
            return 0

    try:
        if args.command == "sweep":
            run_sweep(services, args.loop)
        elif args.command == "available":
            filters = AvailabilityFilter(
                role=args.role,
                location=args.location,
                vehicle_type=args.vehicle_type,
                start_time=args.start,
                end_time=args.end,
            )
            _emit([slot.to_dict() for slot in services.queries.find_available(filters)])
        elif args.command == "status":
            location = CampusLocation(args.location) if args.location else None
            _emit({
                "slots": [s.to_dict() for s in services.queries.real_time_status(location)],
                "summary": [s.to_dict() for s in services.queries.summary_by_location()],
            })
    except BookingError as e:
        logger.error(f"{args.command} failed: {e.kind.value} - {e.message}")
        return 1
    except ValueError as e:
        logger.error(f"Invalid arguments: {e}")
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
