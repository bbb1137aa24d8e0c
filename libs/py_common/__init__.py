# libs/py_common/__init__.py
# Shared building blocks for the payments and payouts services:
# settings, logging, database sessions, error taxonomy, processor client, event feed.

__version__ = "0.1.0"
