# ECG System - DB package
# Session persistence and data export.
#
# Modules:
#   connection      - engine / ORM session factory
#   models          - EcgSessionRecord table
#   db_access       - SessionStore: save, list, rename and delete sessions
#   export_session  - CLI tool to export stored sessions to CSV

from .db_access import DB_CONFIG, SessionStore

__all__ = [
    'DB_CONFIG',
    'SessionStore',
]
