#!/usr/bin/env python3
# File: tests/run_tests.py
"""
Test runner for the Campus Parking Booking Engine tests.

    python tests/run_tests.py                 # unit + integration
    python tests/run_tests.py unit            # one suite
    python tests/run_tests.py unit.test_domain
    python tests/run_tests.py unit.test_domain.TestBooking
"""

import unittest
import sys
from pathlib import Path

# Add the project root to the Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

SUITES = ("unit", "integration")


def discover(suite_name=None):
    """Discover test_*.py under tests/ or one of its suites"""
    tests_dir = Path(__file__).parent
    test_loader = unittest.TestLoader()
    if suite_name is None:
        return unittest.TestSuite(
            test_loader.discover(str(tests_dir / name), pattern='test_*.py', top_level_dir=str(tests_dir.parent))
            for name in SUITES
        )
    return test_loader.discover(str(tests_dir / suite_name), pattern='test_*.py', top_level_dir=str(tests_dir.parent))


def run_specific_test(test_name):
    """Run a suite, a module (unit.test_domain) or a test case (unit.test_domain.TestBooking)"""
    if test_name in SUITES:
        test_suite = discover(test_name)
    else:
        test_suite = unittest.TestLoader().loadTestsFromName(f'tests.{test_name}')

    test_runner = unittest.TextTestRunner(verbosity=2)
    return test_runner.run(test_suite)


def run_all_tests():
    """Run all test suites"""
    test_runner = unittest.TextTestRunner(verbosity=2)
    return test_runner.run(discover())


if __name__ == "__main__":
    if len(sys.argv) > 1:
        result = run_specific_test(sys.argv[1])
    else:
        result = run_all_tests()

    sys.exit(0 if result.wasSuccessful() else 1)
