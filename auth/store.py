"""
auth/store.py -- SQLAlchemy Core persistence layer for identity records.

Pattern: Repository + Data Mapper.
IdentityStore is the repository; _row_to_identity / _identity_values are the
mappers. The account service and route code never touch SQL directly.

Unit of work:
  An IdentityStore owns one connection for its lifetime (one HTTP request,
  one CLI command). insert() and update() run inside the connection's open
  transaction; save() commits; close() discards anything not yet saved. A
  flow that fails halfway therefore never leaves a partial identity change
  in the database.

  Two requests mutating the same identity concurrently are not coordinated
  here: the later commit wins. Every flow touches at most one identity
  record, so no multi-record transaction is needed.

Security:
  All queries use bound parameters. No f-strings in SQL.

Email lookup:
  normalized_email holds the upper-cased email and carries the UNIQUE index.
  get_by_email() upper-cases its argument before comparing, so lookups are
  case-insensitive while the original spelling is kept in email for display.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Connection, Engine

from auth.models import Identity, Role, normalize_email

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_identities = Table(
    "identities",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False),
    Column("normalized_email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("role", String(20), nullable=False, server_default=Role.USER.value),
    Column("two_factor_enabled", Boolean, nullable=False, server_default="0"),
    Column("two_factor_secret", String(64)),  # base32, NULL until first enrollment
    Column("security_stamp", String(64), nullable=False),
    Column("avatar", Text),  # base64 image payload
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block on a writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_identity_engine(db_url: str) -> Engine:
    """Create the engine for db_url and make sure the identities table exists.

    Called once at startup; the returned Engine is shared by every
    IdentityStore opened afterwards.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for Identity records, scoped to a single unit of work.

    Usage:
        store = IdentityStore(engine)
        identity_id = store.insert(Identity(email="a@example.com", password_hash=hash_password("...")))
        store.save()
        store.close()
    """

    def __init__(self, engine: Engine) -> None:
        self._conn: Connection = engine.connect()

    def __enter__(self) -> "IdentityStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, identity_id: int) -> Identity | None:
        """Look up an identity by primary key. Returns None if not found."""
        row = self._conn.execute(_identities.select().where(_identities.c.id == identity_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_by_email(self, email: str) -> Identity | None:
        """Look up an identity by email, ignoring case. Returns None if not found."""
        row = self._conn.execute(
            _identities.select().where(_identities.c.normalized_email == normalize_email(email))
        ).fetchone()
        return _row_to_identity(row) if row is not None else None

    def list_all(self) -> list[Identity]:
        """Return every identity ordered by id."""
        rows = self._conn.execute(_identities.select().order_by(_identities.c.id)).fetchall()
        return [_row_to_identity(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes -- pending until save()
    # ------------------------------------------------------------------

    def insert(self, identity: Identity) -> int:
        """Stage a new identity and return its assigned id.

        The id is also written back onto the passed Identity. Raises
        sqlalchemy.exc.IntegrityError if the normalized email is taken.
        """
        if identity.created_at is None:
            identity.created_at = _now_iso()
        result = self._conn.execute(_identities.insert().values(**_identity_values(identity)))
        identity.id = result.inserted_primary_key[0]
        return identity.id

    def update(self, identity: Identity) -> bool:
        """Stage a full overwrite of an existing identity's mutable fields.

        Returns True if a row matched identity.id, False otherwise.
        """
        values = _identity_values(identity)
        values.pop("created_at")
        result = self._conn.execute(_identities.update().where(_identities.c.id == identity.id).values(**values))
        return result.rowcount > 0

    def save(self) -> None:
        """Commit everything staged since the last save."""
        self._conn.commit()

    def close(self) -> None:
        """Release the connection. Unsaved changes are rolled back."""
        self._conn.close()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _identity_values(identity: Identity) -> dict:
    return {
        "email": identity.email,
        "normalized_email": normalize_email(identity.email),
        "password_hash": identity.password_hash,
        "first_name": identity.first_name,
        "last_name": identity.last_name,
        "role": identity.role.value,
        "two_factor_enabled": identity.two_factor_enabled,
        "two_factor_secret": identity.two_factor_secret,
        "security_stamp": identity.security_stamp,
        "avatar": identity.avatar,
        "created_at": identity.created_at,
    }


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        email=row.email,
        normalized_email=row.normalized_email,
        password_hash=row.password_hash,
        first_name=row.first_name,
        last_name=row.last_name,
        role=Role(row.role),
        two_factor_enabled=bool(row.two_factor_enabled),
        two_factor_secret=row.two_factor_secret,
        security_stamp=row.security_stamp,
        avatar=row.avatar,
        created_at=row.created_at,
    )
