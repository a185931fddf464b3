#!/usr/bin/env python3
"""
Unit tests for BookingPolicy and Settings.
"""

import unittest
from datetime import timedelta

from pydantic import ValidationError

from campus_parking.application.config import BookingPolicy, Settings


class TestBookingPolicy(unittest.TestCase):

    def test_defaults(self):
        policy = BookingPolicy()

        self.assertEqual(policy.max_advance, timedelta(days=30))
        self.assertEqual(policy.max_duration, timedelta(hours=8))
        self.assertEqual(policy.max_active_bookings, 3)
        self.assertEqual(policy.cancellation_cutoff, timedelta(minutes=60))
        self.assertEqual(policy.check_in_grace, timedelta(minutes=15))
        self.assertEqual((policy.min_extension_hours, policy.max_extension_hours), (1, 4))
        self.assertEqual(policy.reminder_lead, timedelta(minutes=30))
        self.assertTrue(policy.mark_unattended_as_no_show)

    def test_frozen(self):
        with self.assertRaises(ValidationError):
            BookingPolicy().max_active_bookings = 10

    def test_rejects_nonsense(self):
        with self.assertRaises(ValidationError):
            BookingPolicy(max_active_bookings=0)
        with self.assertRaises(ValidationError):
            BookingPolicy(max_duration_hours=-1)


class TestSettingsFromEnv(unittest.TestCase):

    def test_defaults_with_empty_environment(self):
        settings = Settings.from_env({})

        self.assertIsNone(settings.database_url)
        self.assertIsNone(settings.redis_url)
        self.assertEqual(settings.notification_channel, "parking.notifications")
        self.assertEqual(settings.log_level, "INFO")
        self.assertEqual(settings.policy, BookingPolicy())

    def test_reads_prefixed_variables(self):
        settings = Settings.from_env({
            "PARKING_DATABASE_URL": "sqlite:///parking.db",
            "PARKING_REDIS_URL": "redis://localhost:6379/1",
            "PARKING_LOG_LEVEL": "debug",
            "PARKING_SWEEP_INTERVAL_SECONDS": "15",
            "PARKING_NOTIFICATION_CHANNEL": "",
            "DATABASE_URL": "ignored",
        })

        self.assertEqual(settings.database_url, "sqlite:///parking.db")
        self.assertEqual(settings.redis_url, "redis://localhost:6379/1")
        self.assertEqual(settings.log_level, "DEBUG")
        self.assertEqual(settings.sweep_interval_seconds, 15.0)
        self.assertEqual(settings.notification_channel, "parking.notifications")

    def test_policy_overrides(self):
        settings = Settings.from_env({
            "PARKING_POLICY__MAX_ACTIVE_BOOKINGS": "5",
            "PARKING_POLICY__MARK_UNATTENDED_AS_NO_SHOW": "false",
        })

        self.assertEqual(settings.policy.max_active_bookings, 5)
        self.assertFalse(settings.policy.mark_unattended_as_no_show)
        self.assertEqual(settings.policy.max_advance_days, 30)

    def test_unknown_policy_key(self):
        with self.assertRaises(ValueError) as ctx:
            Settings.from_env({"PARKING_POLICY__MAX_PARTY_SIZE": "5"})
        self.assertIn("max_party_size", str(ctx.exception))

    def test_invalid_log_level(self):
        with self.assertRaises(ValidationError):
            Settings.from_env({"PARKING_LOG_LEVEL": "chatty"})


if __name__ == '__main__':
    unittest.main()
