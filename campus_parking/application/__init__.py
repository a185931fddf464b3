# File: campus_parking/application/__init__.py
"""Application layer: the booking engine, queries, ports and configuration"""
