# File: campus_parking/infrastructure/__init__.py
"""Infrastructure layer: storage, locking, messaging and wiring"""
