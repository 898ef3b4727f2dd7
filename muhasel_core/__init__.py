"""
Muhasel offline core.

Local SQLite store, sync queue, connectivity monitor, sync manager and the
hybrid API router used by the Muhasel school-fee application.
"""

__version__ = "1.0.0"
