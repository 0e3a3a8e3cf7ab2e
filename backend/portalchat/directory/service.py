"""DuckDB-backed user directory.

The portal's account system is the source of truth for users. This service
is the read side messaging depends on: it resolves a user id to role,
department and active flag. ``upsert_user`` and ``load_seed_file`` exist so
the directory can be populated from the account system or from a YAML seed
file in development.

Database Schema:
    users table:
        - id: User id (primary key)
        - name, email, role, department
        - active: Whether the account may receive messages

Usage:
    directory = UserDirectoryService.get_instance()
    user = directory.get_user("64f0c2...")
"""
import logging
from pathlib import Path
from typing import Iterable, List, Optional

import duckdb
import yaml
from pydantic import ValidationError

from .schemas import User

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS users (
    id          VARCHAR PRIMARY KEY,
    name        VARCHAR NOT NULL,
    email       VARCHAR NOT NULL DEFAULT '',
    role        VARCHAR NOT NULL,
    department  VARCHAR NOT NULL DEFAULT '',
    active      BOOLEAN NOT NULL DEFAULT TRUE
)
"""

_COLUMNS = ["id", "name", "email", "role", "department", "active"]


class UserDirectoryService:
    """Singleton lookup service for portal users."""

    _instance: Optional["UserDirectoryService"] = None
    _default_db_path: str = "users.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        self._db_path = db_path or self._default_db_path
        self._conn: Optional[duckdb.DuckDBPyConnection] = duckdb.connect(self._db_path)
        self._conn.execute(_CREATE_TABLE)
        logger.info("[UserDirectory] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "UserDirectoryService":
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def get_user(self, user_id: str) -> Optional[User]:
        row = self._conn.execute(
            f"SELECT {', '.join(_COLUMNS)} FROM users WHERE id = ?", [user_id]
        ).fetchone()
        return self._row_to_user(row) if row else None

    def list_users(self, exclude_id: Optional[str] = None) -> List[User]:
        rows = self._conn.execute(
            f"SELECT {', '.join(_COLUMNS)} FROM users ORDER BY name, id"
        ).fetchall()
        users = []
        for row in rows:
            user = self._row_to_user(row)
            if user is not None and user.id != exclude_id:
                users.append(user)
        return users

    # -----------------------------------------------------------------------
    # Writes (account-system sync / seeding)
    # -----------------------------------------------------------------------

    def upsert_user(self, user: User) -> User:
        """Insert or replace a user in a single statement."""
        self._conn.execute(
            """
            INSERT INTO users (id, name, email, role, department, active)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (id) DO UPDATE SET
                name = excluded.name,
                email = excluded.email,
                role = excluded.role,
                department = excluded.department,
                active = excluded.active
            """,
            [user.id, user.name, user.email, user.role.value, user.department, user.active],
        )
        return user

    def upsert_many(self, users: Iterable[User]) -> int:
        count = 0
        for user in users:
            self.upsert_user(user)
            count += 1
        return count

    def load_seed_file(self, path: str) -> int:
        """Load users from a YAML file with a top-level ``users`` list.

        Returns:
            Number of users written.
        """
        seed_path = Path(path)
        if not seed_path.exists():
            logger.warning("[UserDirectory] Seed file not found: %s", seed_path)
            return 0
        with seed_path.open(encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
        users = []
        for index, entry in enumerate(data.get("users", [])):
            try:
                users.append(User(**entry))
            except ValidationError as exc:
                logger.warning(
                    "[UserDirectory] Skipping seed entry %d in %s: %s",
                    index, seed_path, exc.errors()[0]["msg"],
                )
        count = self.upsert_many(users)
        logger.info("[UserDirectory] Seeded %d users from %s", count, seed_path)
        return count

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    @staticmethod
    def _row_to_user(row) -> Optional[User]:
        d = dict(zip(_COLUMNS, row))
        d["active"] = bool(d["active"])
        try:
            return User(**d)
        except ValidationError:
            # Rows written by the account system before ids were canonical
            logger.warning("[UserDirectory] Ignoring user row with invalid data: id=%r", d["id"])
            return None


def get_directory() -> UserDirectoryService:
    """Return the directory singleton, opening the configured database."""
    from portalchat.config import get_config
    return UserDirectoryService.get_instance(get_config().storage.users_db)
