# File: campus_parking/domain/__init__.py
"""Domain layer: slots, bookings and the rules that apply to them"""
