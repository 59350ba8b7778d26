"""
                Food Ordering System

REST backend for browsing a menu, placing orders and managing accounts,
with a storage layer that runs on either a relational database or Redis.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
