"""
Database Manager Module - PassDesk Event Pass System

This module owns every interaction with the SQLite store. A single
DatabaseManager is constructed at start-up, handed to the components that need
it, and closed at shutdown. Each thread gets its own connection; transactions
are explicit so the pass verifier can take the write lock before it reads.

Features:
- Thread-local SQLite connections (WAL journal, foreign keys, busy timeout)
- Idempotent schema creation and full reset
- Scoped transactions with rollback on every exit path
- Query helpers returning plain dictionaries
- Connectivity check for health probes
"""

import sqlite3
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
import os


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS students (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name VARCHAR(100) NOT NULL,
        email VARCHAR(255) NOT NULL UNIQUE COLLATE NOCASE,
        roll_number VARCHAR(50) NOT NULL UNIQUE COLLATE NOCASE,
        class_section VARCHAR(50),
        pass_generated BOOLEAN NOT NULL DEFAULT 0,
        pass_generated_at TIMESTAMP,
        qr_payload TEXT,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL,
        CHECK (pass_generated = 0 OR qr_payload IS NOT NULL)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pass_verifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        pass_id VARCHAR(64) NOT NULL,
        student_id INTEGER NOT NULL,
        verification_count INTEGER NOT NULL DEFAULT 0,
        last_verified_at TIMESTAMP,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL,
        FOREIGN KEY (student_id) REFERENCES students(id),
        UNIQUE (pass_id, student_id),
        CHECK (verification_count IN (0, 1))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pass_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id INTEGER NOT NULL,
        pass_id VARCHAR(64) NOT NULL,
        generated_at TIMESTAMP NOT NULL,
        email_status VARCHAR(20) NOT NULL DEFAULT 'pending',
        email_sent_at TIMESTAMP,
        error_message TEXT,
        FOREIGN KEY (student_id) REFERENCES students(id),
        CHECK (email_status IN ('pending', 'sent', 'failed'))
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_verifications_student ON pass_verifications(student_id)",
    "CREATE INDEX IF NOT EXISTS idx_history_student ON pass_history(student_id)",
    "CREATE INDEX IF NOT EXISTS idx_students_created ON students(created_at)",
]

TABLES = ['pass_history', 'pass_verifications', 'students']


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string, the format stored in every timestamp column."""
    return datetime.now(timezone.utc).isoformat()


class DatabaseManager:
    """
    Store client for the event pass system.

    Construct once, call initialize_database() at start-up and
    close_all_connections() at shutdown. Connections run in autocommit mode;
    use transaction() for anything that must be atomic.
    """

    def __init__(self, db_path, timeout=30.0):
        """
        Args:
            db_path (str): Path to the SQLite database file
            timeout (float): Seconds to wait on a locked database before failing
        """
        self.db_path = str(db_path)
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)
        self._local = threading.local()
        self._connections = []
        self._connections_lock = threading.Lock()

        # Ensure database directory exists
        directory = os.path.dirname(self.db_path)
        if directory and self.db_path != ':memory:':
            os.makedirs(directory, exist_ok=True)

    def _connect(self):
        connection = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            timeout=self.timeout,
            isolation_level=None
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        if self.db_path != ':memory:':
            connection.execute("PRAGMA journal_mode = WAL")
            connection.execute("PRAGMA synchronous = NORMAL")

        with self._connections_lock:
            self._connections.append(connection)
        return connection

    @contextmanager
    def get_connection(self):
        """
        Context manager for the calling thread's connection.

        Yields:
            sqlite3.Connection: Database connection object
        """
        if getattr(self._local, 'connection', None) is None:
            self._local.connection = self._connect()

        try:
            yield self._local.connection
        except sqlite3.Error as e:
            self.logger.error(f"Database operation failed: {str(e)}")
            raise

    @contextmanager
    def transaction(self, immediate=False):
        """
        Scoped transaction, committed on normal exit and rolled back on any
        exception (including KeyboardInterrupt and generator close).

        Args:
            immediate (bool): Take the write lock up front (BEGIN IMMEDIATE) so
                no other writer can slip in between our reads and writes.

        Yields:
            sqlite3.Connection: Database connection within transaction
        """
        with self.get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            try:
                yield conn
            except BaseException as e:
                conn.rollback()
                if isinstance(e, sqlite3.Error):
                    self.logger.error(f"Transaction rolled back: {str(e)}")
                raise
            else:
                try:
                    conn.commit()
                except BaseException as e:
                    conn.rollback()
                    self.logger.error(f"Commit failed, transaction rolled back: {str(e)}")
                    raise

    def initialize_database(self):
        """
        Create all tables and indexes. Idempotent.
        """
        try:
            with self.transaction() as conn:
                for statement in SCHEMA:
                    conn.execute(statement)

            self.logger.info(f"Database initialized at {self.db_path}")

        except Exception as e:
            self.logger.error(f"Failed to initialize database: {str(e)}")
            raise

    def reset_database(self):
        """Drop every table and recreate the schema. Destroys all data."""
        with self.transaction() as conn:
            for table in TABLES:
                conn.execute(f"DROP TABLE IF EXISTS {table}")
        self.logger.warning("Database reset: all tables dropped")
        self.initialize_database()

    def execute_query(self, query, params=None, fetch_all=True):
        """
        Execute a SELECT query and return results.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters
            fetch_all (bool): Whether to fetch all results or just one

        Returns:
            list or dict: Query results
        """
        with self.get_connection() as conn:
            cursor = conn.execute(query, params or ())

            if fetch_all:
                return [dict(row) for row in cursor.fetchall()]

            result = cursor.fetchone()
            return dict(result) if result else None

    def execute_update(self, query, params=None):
        """
        Execute a single INSERT, UPDATE, or DELETE statement (autocommitted).

        Returns:
            int: Last inserted row ID for INSERT, otherwise affected row count
        """
        with self.get_connection() as conn:
            cursor = conn.execute(query, params or ())

            if query.strip().upper().startswith('INSERT'):
                return cursor.lastrowid
            return cursor.rowcount

    def check_connection(self):
        """
        Run a trivial query and list the existing tables.

        Returns:
            dict: Connectivity status
        """
        try:
            with self.get_connection() as conn:
                conn.execute("SELECT 1").fetchone()
                tables = [
                    row['name'] for row in conn.execute(
                        "SELECT name FROM sqlite_master WHERE type = 'table' "
                        "AND name NOT LIKE 'sqlite_%' ORDER BY name"
                    )
                ]
            return {'connected': True, 'tables': tables}

        except sqlite3.Error as e:
            return {'connected': False, 'error': str(e)}

    def close_connection(self):
        """Close the calling thread's connection, if it has one."""
        connection = getattr(self._local, 'connection', None)
        if connection is None:
            return

        self._local.connection = None
        with self._connections_lock:
            if connection in self._connections:
                self._connections.remove(connection)
        connection.close()

    def close_all_connections(self):
        """Close the connections of every thread that used this manager."""
        with self._connections_lock:
            connections, self._connections = self._connections, []

        for connection in connections:
            try:
                connection.close()
            except sqlite3.ProgrammingError as e:
                self.logger.warning(f"Error closing connection: {str(e)}")

        self._local = threading.local()
