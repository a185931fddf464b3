# File: campus_parking/__init__.py
"""
Campus parking booking engine

Reservation lifecycle and slot allocation for a university parking system.
"""

__version__ = "0.1.0"
