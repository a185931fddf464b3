#!/usr/bin/env python3
"""
Unit tests for the expiry sweep, reminders, maintenance changes and the
booking read operations.
"""

import unittest
from datetime import timedelta

from campus_parking.application.config import BookingPolicy
from campus_parking.application.dtos import PageRequest
from campus_parking.application.errors import ErrorKind
from campus_parking.application.ports import EventType
from campus_parking.domain.models import BookingStatus, CampusLocation, MaintenanceStatus

from tests.support import ADMIN, FACULTY, NOW, OTHER_STUDENT, STUDENT, EngineTestBase


# ============================================================================
# EXPIRY SWEEP
# ============================================================================

class TestExpirySweep(EngineTestBase):

    def setUp(self):
        super().setUp()
        self.other_slot = self.add_slot("A-02")
        # 10:00-12:00 on A-01, never checked in
        self.unattended = self.book(2, 2)
        # 10:00-11:00 on A-02, checked in, never checked out
        self.overstayed = self.book(2, 1, slot=self.other_slot, user_id=OTHER_STUDENT, vehicle_number="XYZ789")
        self.clock.advance(hours=2)
        self.engine.check_in(self.overstayed.id)

    def test_nothing_to_sweep_before_end(self):
        self.assertEqual(self.engine.sweep_expired(), 0)

    def test_lapsed_bookings_are_transitioned_and_released(self):
        self.clock.set(NOW + timedelta(hours=4))

        self.assertEqual(self.engine.sweep_expired(), 2)

        self.assertEqual(self.stored_booking(self.unattended.id).status, BookingStatus.NO_SHOW)
        self.assertEqual(self.stored_booking(self.overstayed.id).status, BookingStatus.EXPIRED)
        self.assertIsNone(self.stored_slot(self.slot.id).current_booking_id)
        self.assertIsNone(self.stored_slot(self.other_slot.id).current_booking_id)
        self.assertEqual(len(self.recorder.of_type(EventType.BOOKING_NO_SHOW)), 1)
        self.assertEqual(len(self.recorder.of_type(EventType.BOOKING_EXPIRED)), 1)

    def test_booking_ending_exactly_now_is_swept(self):
        self.assertEqual(self.engine.sweep_expired(now=NOW + timedelta(hours=3)), 1)
        self.assertEqual(self.stored_booking(self.overstayed.id).status, BookingStatus.EXPIRED)
        self.assertEqual(self.stored_booking(self.unattended.id).status, BookingStatus.ACTIVE)

    def test_sweep_is_idempotent(self):
        at = NOW + timedelta(hours=5)
        self.assertEqual(self.engine.sweep_expired(now=at), 2)
        snapshot = {b.id: (b.status, b.version) for b in (self.stored_booking(self.unattended.id),
                                                          self.stored_booking(self.overstayed.id))}
        slot_versions = (self.stored_slot(self.slot.id).version, self.stored_slot(self.other_slot.id).version)
        event_count = len(self.recorder.events)

        self.assertEqual(self.engine.sweep_expired(now=at), 0)

        for booking_id, state in snapshot.items():
            stored = self.stored_booking(booking_id)
            self.assertEqual((stored.status, stored.version), state)
        self.assertEqual(
            (self.stored_slot(self.slot.id).version, self.stored_slot(self.other_slot.id).version),
            slot_versions
        )
        self.assertEqual(len(self.recorder.events), event_count)

    def test_later_booking_takes_over_after_sweep(self):
        later = self.book(5, 1, user_id=OTHER_STUDENT, vehicle_number="XYZ789")
        self.engine.sweep_expired(now=NOW + timedelta(hours=4))

        self.assertEqual(self.stored_slot(self.slot.id).current_booking_id, later.id)
        self.assert_slot_agrees_with_bookings(self.slot.id)

    def test_slot_busy_is_logged_and_retried_next_pass(self):
        self.engine.locks.timeout_seconds = 0.05
        at = NOW + timedelta(hours=4)

        with self.engine.locks.hold(self.slot.id):
            with self.assertLogs("BookingLifecycleEngine", level="ERROR"):
                self.assertEqual(self.engine.sweep_expired(now=at), 1)

        self.assertEqual(self.stored_booking(self.unattended.id).status, BookingStatus.ACTIVE)
        self.assertEqual(self.engine.sweep_expired(now=at), 1)
        self.assertEqual(self.stored_booking(self.unattended.id).status, BookingStatus.NO_SHOW)


class TestExpirySweepWithoutNoShow(EngineTestBase):

    policy = BookingPolicy(mark_unattended_as_no_show=False)

    def test_unattended_booking_expires(self):
        booking = self.book(2, 2)
        self.engine.sweep_expired(now=NOW + timedelta(hours=4))
        self.assertEqual(self.stored_booking(booking.id).status, BookingStatus.EXPIRED)


# ============================================================================
# REMINDERS
# ============================================================================

class TestReminders(EngineTestBase):

    def test_reminder_sent_once(self):
        soon = self.book(0.25, 1)
        later = self.book(3, 1, user_id=OTHER_STUDENT, vehicle_number="XYZ789")

        self.assertEqual(self.engine.send_reminders(), 1)
        self.assertEqual(self.engine.send_reminders(), 0)

        self.assertTrue(self.stored_booking(soon.id).reminder_sent)
        self.assertFalse(self.stored_booking(later.id).reminder_sent)
        event = self.recorder.of_type(EventType.BOOKING_REMINDER)[0]
        self.assertEqual(event.booking_id, soon.id)
        self.assertEqual(event.data["minutes_until_start"], 15)

    def test_cancelled_booking_gets_no_reminder(self):
        booking = self.book(2, 1)
        self.engine.cancel_booking(booking.id, STUDENT)
        self.clock.advance(hours=1, minutes=45)
        self.assertEqual(self.engine.send_reminders(), 0)


# ============================================================================
# MAINTENANCE
# ============================================================================

class TestMaintenanceStatus(EngineTestBase):

    def test_leaving_operational_cancels_active_bookings(self):
        first = self.book(2, 1)
        second = self.book(5, 1, user_id=OTHER_STUDENT, vehicle_number="XYZ789")

        slot, cancelled = self.engine.set_maintenance_status(self.slot.id, MaintenanceStatus.OUT_OF_ORDER, ADMIN)

        self.assertEqual({b.id for b in cancelled}, {first.id, second.id})
        self.assertEqual(slot.maintenance_status, MaintenanceStatus.OUT_OF_ORDER)
        self.assertIsNone(slot.current_booking_id)
        for booking_id in (first.id, second.id):
            stored = self.stored_booking(booking_id)
            self.assertEqual(stored.status, BookingStatus.CANCELLED)
            self.assertEqual(stored.cancellation_reason, "Slot unavailable: out-of-order")
            self.assertEqual(stored.cancelled_by, ADMIN)
        self.assertEqual(len(self.recorder.of_type(EventType.BOOKING_CANCELLED)), 2)
        self.assertEqual(len(self.recorder.of_type(EventType.SLOT_MAINTENANCE_CHANGED)), 1)

    def test_back_to_operational(self):
        self.engine.set_maintenance_status(self.slot.id, MaintenanceStatus.MAINTENANCE, ADMIN)
        slot, cancelled = self.engine.set_maintenance_status(self.slot.id, MaintenanceStatus.OPERATIONAL, ADMIN)

        self.assertEqual(cancelled, [])
        self.assertTrue(slot.is_available)
        self.assertEqual(self.book(2).slot_id, self.slot.id)

    def test_unknown_slot(self):
        self.assertBookingError(
            ErrorKind.NOT_FOUND, self.engine.set_maintenance_status, "missing", MaintenanceStatus.MAINTENANCE, ADMIN
        )


# ============================================================================
# READS
# ============================================================================

class TestBookingReads(EngineTestBase):

    def setUp(self):
        super().setUp()
        self.slots = [self.slot, self.add_slot("A-02"), self.add_slot("M-01", location=CampusLocation.MAIN_CAMPUS)]
        self.bookings = []
        for i, slot in enumerate(self.slots):
            self.bookings.append(self.book(6 - 2 * i, 1, slot=slot))
            self.clock.advance(minutes=1)

    def test_owner_and_admin_can_read(self):
        booking = self.bookings[0]
        self.assertEqual(self.engine.get_booking(booking.id, STUDENT).id, booking.id)
        self.assertEqual(self.engine.get_booking(booking.id, ADMIN, is_admin=True).id, booking.id)

    def test_other_user_cannot_read(self):
        self.assertBookingError(ErrorKind.UNAUTHORIZED, self.engine.get_booking, self.bookings[0].id, FACULTY)

    def test_missing_booking(self):
        self.assertBookingError(ErrorKind.NOT_FOUND, self.engine.get_booking, "missing", STUDENT)

    def test_user_bookings_are_paginated_newest_first(self):
        page = self.engine.list_user_bookings(STUDENT, page=PageRequest(page=1, limit=2))

        self.assertEqual(page.total, 3)
        self.assertEqual(page.total_pages, 2)
        self.assertTrue(page.has_next)
        self.assertFalse(page.has_prev)
        self.assertEqual([item["id"] for item in page.items], [self.bookings[2].id, self.bookings[1].id])
        self.assertEqual(page.items[0]["status_description"], "Upcoming")

        last = self.engine.list_user_bookings(STUDENT, page=PageRequest(page=2, limit=2))
        self.assertEqual([item["id"] for item in last.items], [self.bookings[0].id])
        self.assertFalse(last.has_next)

    def test_status_filter(self):
        self.engine.cancel_booking(self.bookings[0].id, STUDENT)
        page = self.engine.list_user_bookings(STUDENT, status=BookingStatus.CANCELLED)
        self.assertEqual([item["id"] for item in page.items], [self.bookings[0].id])
        self.assertEqual(page.items[0]["status_description"], "Booking Cancelled")

    def test_active_bookings_soonest_first(self):
        active = self.engine.list_active_bookings(STUDENT)
        self.assertEqual([b.id for b in active], [b.id for b in reversed(self.bookings)])

    def test_admin_listing_by_location(self):
        page = self.engine.list_bookings(location=CampusLocation.MAIN_CAMPUS)
        self.assertEqual(page.total, 1)
        self.assertEqual(page.items[0]["location"], "Main Campus")
        self.assertEqual(self.engine.list_bookings().total, 3)


if __name__ == '__main__':
    unittest.main()
