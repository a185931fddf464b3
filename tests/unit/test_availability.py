#!/usr/bin/env python3
"""
Unit tests for AvailabilityQueryService: free-slot search, live slot status
and per-location summaries.
"""

import unittest
from datetime import timedelta

from pydantic import ValidationError

from campus_parking.application.dtos import AvailabilityFilter
from campus_parking.domain.models import (
    CampusLocation, MaintenanceStatus, ReservationClass, Role, VehicleType
)

from tests.support import ADMIN, NOW, OTHER_STUDENT, EngineTestBase


class TestFindAvailable(EngineTestBase):

    def setUp(self):
        super().setUp()
        self.faculty_slot = self.add_slot("A-02", reserved_for=ReservationClass.FACULTY)
        self.bike_slot = self.add_slot("A-03", vehicle_type=VehicleType.BICYCLE)
        self.any_slot = self.add_slot("M-01", location=CampusLocation.MAIN_CAMPUS, vehicle_type=VehicleType.ANY)

    def numbers(self, **filters):
        return [slot.slot_number for slot in self.queries.find_available(AvailabilityFilter(**filters))]

    def test_role_decides_reserved_slots(self):
        self.assertEqual(self.numbers(role=Role.STUDENT), ["A-01", "A-03", "M-01"])
        self.assertEqual(self.numbers(role=Role.FACULTY), ["A-01", "A-02", "A-03", "M-01"])

    def test_location_and_vehicle_filters(self):
        self.assertEqual(self.numbers(role=Role.STUDENT, location=CampusLocation.BUILDING_A), ["A-01", "A-03"])
        self.assertEqual(self.numbers(role=Role.STUDENT, vehicle_type=VehicleType.BICYCLE), ["A-03", "M-01"])
        self.assertEqual(self.numbers(role=Role.STUDENT, vehicle_type=VehicleType.CAR), ["A-01", "M-01"])

    def test_window_excludes_overlapping_bookings_only(self):
        self.book(2, 2)
        window = dict(role=Role.STUDENT, vehicle_type=VehicleType.CAR)

        overlapping = self.numbers(start_time=NOW + timedelta(hours=3), end_time=NOW + timedelta(hours=5), **window)
        touching = self.numbers(start_time=NOW + timedelta(hours=4), end_time=NOW + timedelta(hours=5), **window)

        self.assertEqual(overlapping, ["M-01"])
        self.assertEqual(touching, ["A-01", "M-01"])

    def test_without_window_claimed_slots_are_excluded(self):
        self.book(2, 2)
        self.assertEqual(self.numbers(role=Role.STUDENT, vehicle_type=VehicleType.CAR), ["M-01"])

    def test_out_of_service_slots_are_excluded(self):
        self.engine.set_maintenance_status(self.any_slot.id, MaintenanceStatus.MAINTENANCE, ADMIN)
        self.assertEqual(self.numbers(role=Role.STUDENT), ["A-01", "A-03"])

    def test_no_match_is_empty(self):
        self.assertEqual(self.numbers(role=Role.VISITOR, location=CampusLocation.SPORTS_COMPLEX), [])

    def test_filter_validation(self):
        with self.assertRaises(ValidationError):
            AvailabilityFilter(role=Role.STUDENT, start_time=NOW)
        with self.assertRaises(ValidationError):
            AvailabilityFilter(role=Role.STUDENT, start_time=NOW, end_time=NOW)

    def test_find_available_does_not_write(self):
        self.book(2, 2)
        versions = {slot.id: slot.version for slot in self.queries.list_slots()}

        self.queries.find_available(AvailabilityFilter(role=Role.ADMIN))

        self.assertEqual({slot.id: slot.version for slot in self.queries.list_slots()}, versions)


class TestRealTimeStatus(EngineTestBase):

    def setUp(self):
        super().setUp()
        self.second = self.add_slot("A-02")
        self.third = self.add_slot("A-03")
        self.fourth = self.add_slot("A-04")
        self.now_booking = self.book(0.25, 2)
        self.later_booking = self.book(3, 1, slot=self.second, user_id=OTHER_STUDENT, vehicle_number="XYZ789")
        self.engine.set_maintenance_status(self.fourth.id, MaintenanceStatus.OUT_OF_ORDER, ADMIN)
        self.clock.advance(minutes=30)

    def states(self):
        return {s.slot_number: s.state for s in self.queries.real_time_status(CampusLocation.BUILDING_A)}

    def test_states(self):
        self.assertEqual(self.states(), {
            "A-01": "occupied",
            "A-02": "reserved",
            "A-03": "available",
            "A-04": "out-of-order",
        })

    def test_overdue_until_swept(self):
        self.clock.advance(hours=2)
        self.assertEqual(self.states()["A-01"], "overdue")
        self.engine.sweep_expired()
        self.assertEqual(self.states()["A-01"], "available")

    def test_status_carries_booking(self):
        status = {s.slot_number: s for s in self.queries.real_time_status()}["A-01"]
        self.assertEqual(status.booking_id, self.now_booking.id)
        self.assertEqual(status.start_time, self.now_booking.start_time)
        self.assertIsNone({s.slot_number: s for s in self.queries.real_time_status()}["A-03"].booking_id)

    def test_summary_by_location(self):
        summaries = {s.location: s for s in self.queries.summary_by_location()}

        self.assertEqual(list(summaries), list(CampusLocation))
        building_a = summaries[CampusLocation.BUILDING_A]
        self.assertEqual(building_a.total_slots, 4)
        self.assertEqual(building_a.occupied_slots, 2)
        self.assertEqual(building_a.available_slots, 1)
        self.assertEqual(building_a.out_of_service_slots, 1)
        self.assertEqual(building_a.to_dict()["occupancy_rate"], 50.0)
        self.assertEqual(summaries[CampusLocation.SPORTS_COMPLEX].total_slots, 0)


if __name__ == '__main__':
    unittest.main()
