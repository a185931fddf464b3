#!/usr/bin/env python3
"""
Unit tests for slot factories, seeding, service wiring and the CLI.
"""

import io
import json
import unittest
from contextlib import redirect_stdout
from decimal import Decimal
from unittest.mock import Mock, patch

from campus_parking.__main__ import build_parser, main
from campus_parking.application.availability import AvailabilityQueryService
from campus_parking.application.config import BookingPolicy, Settings
from campus_parking.application.dtos import AvailabilityFilter
from campus_parking.application.errors import StorageUnavailable
from campus_parking.domain.models import (
    CampusLocation, Money, ReservationClass, Role, VehicleType
)
from campus_parking.infrastructure.factories import (
    EngineFactory, ParkingServices, ParkingSlotFactory, SlotLayout, SlotProvisioner
)
from campus_parking.infrastructure.messaging import LoggingNotifier, RedisNotificationPublisher
from campus_parking.infrastructure.repositories import InMemoryUnitOfWork, RepositoryFactory

from tests.support import build_directory


class TestParkingSlotFactory(unittest.TestCase):

    def setUp(self):
        self.factory = ParkingSlotFactory()

    def test_defaults(self):
        slot = self.factory.create("A-05", "Building A")

        self.assertEqual(slot.location, CampusLocation.BUILDING_A)
        self.assertEqual(slot.vehicle_type, VehicleType.CAR)
        self.assertEqual(slot.reserved_for, ReservationClass.GENERAL)
        self.assertEqual(slot.hourly_rate, Money(Decimal("5.00")))
        self.assertEqual(slot.section, "Building A")
        self.assertEqual(slot.features, [])
        self.assertTrue(slot.is_available)

    def test_rates_and_features_follow_the_slot_kind(self):
        bike = self.factory.create("S-16", CampusLocation.SPORTS_COMPLEX, vehicle_type="bicycle")
        moto = self.factory.create("S-15", CampusLocation.SPORTS_COMPLEX, vehicle_type=VehicleType.MOTORCYCLE)
        accessible = self.factory.create("S-03", CampusLocation.SPORTS_COMPLEX, reserved_for="disabled")

        self.assertEqual(bike.hourly_rate, Money(Decimal("1.00")))
        self.assertEqual(bike.features, ["rack"])
        self.assertEqual(moto.hourly_rate, Money(Decimal("2.50")))
        self.assertEqual(accessible.features, ["wide", "close_to_entry"])

    def test_explicit_rate(self):
        slot = self.factory.create("C-01", CampusLocation.BUILDING_C, hourly_rate=Money(Decimal("7.50")))
        self.assertEqual(slot.hourly_rate, Money(Decimal("7.50")))


class TestSlotProvisioner(unittest.TestCase):

    def setUp(self):
        self.uow_factory = RepositoryFactory.create_in_memory_uow_factory()
        self.provisioner = SlotProvisioner(self.uow_factory)

    def test_default_layout(self):
        self.assertEqual(self.provisioner.seed_default_layout(), 80)

        with self.uow_factory() as uow:
            building_a = uow.slots.find(location=CampusLocation.BUILDING_A)
        self.assertEqual(len(building_a), 16)
        self.assertEqual(building_a[0].slot_number, "A-01")
        self.assertEqual(building_a[0].reserved_for, ReservationClass.FACULTY)
        self.assertEqual(building_a[-1].vehicle_type, VehicleType.BICYCLE)
        general_cars = [s for s in building_a
                        if s.reserved_for == ReservationClass.GENERAL and s.vehicle_type == VehicleType.CAR]
        self.assertEqual(len(general_cars), 10)

    def test_seed_only_fills_an_empty_store(self):
        self.provisioner.seed_default_layout()
        self.assertEqual(self.provisioner.seed_default_layout(), 0)
        with self.uow_factory() as uow:
            self.assertEqual(uow.slots.count(), 80)

    def test_custom_layout(self):
        layout = SlotLayout(slots_per_location=4, faculty=1, disabled=0, student=0, motorcycle=0, bicycle=0,
                            locations=[CampusLocation.MAIN_CAMPUS])
        self.assertEqual(self.provisioner.seed_default_layout(layout), 4)

    def test_layout_larger_than_location(self):
        with self.assertRaises(ValueError):
            SlotLayout(slots_per_location=3).plan()


class TestEngineFactory(unittest.TestCase):

    def test_in_memory_wiring(self):
        settings = Settings(policy=BookingPolicy(max_active_bookings=1, slot_lock_timeout_seconds=0.5))
        services = EngineFactory(settings).create_services(directory=build_directory())

        self.assertIsInstance(services.uow_factory(), InMemoryUnitOfWork)
        self.assertIs(services.engine.policy, settings.policy)
        self.assertEqual(services.engine.locks.timeout_seconds, 0.5)
        self.assertEqual(services.sweeper.interval_seconds, settings.sweep_interval_seconds)

        services.provisioner.seed_default_layout()
        free = services.queries.find_available(AvailabilityFilter(role=Role.STUDENT))
        self.assertTrue(free)

    def test_notifier_choice(self):
        self.assertIsInstance(EngineFactory(Settings()).create_notifier(), LoggingNotifier)

        publisher = EngineFactory(Settings(redis_url="redis://localhost:6379/3")).create_notifier()
        self.assertIsInstance(publisher, RedisNotificationPublisher)
        self.assertEqual(publisher.channel, "parking.notifications")

    def test_given_collaborators_are_used(self):
        uow_factory = RepositoryFactory.create_in_memory_uow_factory()
        notifier = Mock()
        services = EngineFactory().create_services(uow_factory=uow_factory, notifier=notifier)

        self.assertIs(services.uow_factory, uow_factory)
        self.assertIs(services.engine.notifier, notifier)
        self.assertIs(services.notifier, notifier)

    def test_close_drains_and_closes_notifier(self):
        notifier = Mock()
        services = EngineFactory().create_services(directory=build_directory(), notifier=notifier)

        services.close(timeout=1)

        notifier.close.assert_called_once_with()
        self.assertFalse(services.sweeper.running)
        self.assertTrue(services.engine.flush_notifications(timeout=0))


class TestCommandLine(unittest.TestCase):

    def run_main(self, *argv):
        out = io.StringIO()
        with patch.dict("os.environ", {"PARKING_LOG_LEVEL": "WARNING"}, clear=True), \
                patch("campus_parking.__main__.configure_logging") as configure:
            with redirect_stdout(out):
                code = main(list(argv))
        configure.assert_called_once_with("WARNING")
        return code, out.getvalue()

    def test_seed(self):
        code, out = self.run_main("seed")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out), {"created": 80})

    def test_available(self):
        code, out = self.run_main("available", "--role", "student", "--location", "Main Campus",
                                  "--vehicle-type", "bicycle")
        self.assertEqual(code, 0)
        self.assertEqual([slot["slot_number"] for slot in json.loads(out)], ["M-16"])

    def test_available_with_half_a_window(self):
        code, _ = self.run_main("available", "--role", "student", "--start", "2025-03-10T10:00:00")
        self.assertEqual(code, 2)

    def test_status(self):
        code, out = self.run_main("status", "--location", "Building B")
        payload = json.loads(out)

        self.assertEqual(code, 0)
        self.assertEqual(len(payload["slots"]), 16)
        self.assertTrue(all(s["state"] == "available" for s in payload["slots"]))
        self.assertEqual(len(payload["summary"]), 5)

    def test_sweep_once(self):
        code, out = self.run_main("sweep")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out), {"expired": 0, "reminded": 0})

    def test_booking_error_exits_with_1(self):
        with patch.object(AvailabilityQueryService, "real_time_status", side_effect=StorageUnavailable("db down")):
            code, out = self.run_main("status")
        self.assertEqual(code, 1)
        self.assertEqual(out, "")

    def test_services_are_closed_on_exit(self):
        with patch.object(ParkingServices, "close", autospec=True) as close:
            code, _ = self.run_main("seed")
        self.assertEqual(code, 0)
        close.assert_called_once()

    def test_parser_requires_a_command(self):
        with self.assertRaises(SystemExit):
            with redirect_stdout(io.StringIO()), patch("sys.stderr", io.StringIO()):
                build_parser().parse_args([])


if __name__ == '__main__':
    unittest.main()
