"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore and AttemptStore are the repositories; _row_to_* are the mappers.
Services and routes never touch SQL directly.

Tables:
  accounts        -- identity + password hash. email is UNIQUE; the core reads
                     by email, inserts on registration, and replaces the
                     hash on login upgrades and during a reset.
  failed_logins   -- one row per wrong-password attempt. Counted over a
                     trailing window, deleted on the next successful login.
  reset_requests  -- one row per issued reset code. Feeds the hourly limit
                     and the minimum-interval check; pruned after an hour.
  reset_tickets   -- at most one row per account (UNIQUE account_id). Written
                     only through a native upsert so two concurrent reset
                     requests cannot both insert. Consumed together with
                     the password change in one transaction. Never deleted.

Timestamps are stored as ISO 8601 UTC strings with fixed microsecond precision,
so lexicographic comparison in SQL equals chronological comparison.

Security:
  All queries use bound parameters. No f-strings in SQL.

Failures: every method lets sqlalchemy.exc.SQLAlchemyError propagate. The
services translate it into DependencyError with operation context.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import SingletonThreadPool

from auth.models import Account, ResetTicket

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(254), nullable=False, unique=True),
    Column("username", String(50), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_failed_logins = Table(
    "failed_logins",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", String(36), nullable=False, index=True),
    Column("attempt_time", String(32), nullable=False),
)

_reset_requests = Table(
    "reset_requests",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", String(36), nullable=False, index=True),
    Column("requested_at", String(32), nullable=False),
)

_reset_tickets = Table(
    "reset_tickets",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", String(36), nullable=False, unique=True),
    Column("otp_code", String(16), nullable=False),
    Column("requested_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("used", Integer, nullable=False, server_default="0"),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _is_memory_db(db_url: str) -> bool:
    url = make_url(db_url)
    return url.database in (None, "", ":memory:") or url.query.get("mode") == "memory"


def create_store_engine(db_url: str, timeout_secs: float = 5.0) -> Engine:
    """Build the engine shared by UserStore and AttemptStore.

    SQLite: check_same_thread=False because FastAPI runs sync handlers in a
    thread pool, and a busy timeout so a locked database fails the request
    instead of hanging it.
    """
    connect_args: dict = {}
    engine_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout_secs
        if _is_memory_db(db_url):
            # One connection per thread; a named shared-cache DB lives as long
            # as any of them stays open.
            engine_args["poolclass"] = SingletonThreadPool
    engine = create_engine(db_url, connect_args=connect_args, **engine_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    _metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _now_iso() -> str:
    return _iso(datetime.now(timezone.utc))


class Redemption(enum.Enum):
    """Outcome of AttemptStore.redeem_ticket()."""

    REDEEMED = "redeemed"
    INVALID_TICKET = "invalid_ticket"
    NO_ACCOUNT = "no_account"


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for Account entities.

    Usage:
        engine = create_store_engine("sqlite:///authcore.db")
        users = UserStore(engine)
        users.create_account(Account(email="a@example.com", username="a", password_hash=digest))
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get_by_email(self, email: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def create_account(self, account: Account) -> str:
        """Insert a new account and return its id.

        Raises sqlalchemy.exc.IntegrityError if the email is already taken.
        The caller turns that into a 409.
        """
        account_id = account.id or str(uuid.uuid4())
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.insert().values(
                    id=account_id,
                    email=account.email,
                    username=account.username,
                    password_hash=account.password_hash,
                    created_at=account.created_at or _now_iso(),
                )
            )
            conn.commit()
        return account_id

    def update_password_hash(self, email: str, password_hash: str, account_id: str | None = None) -> int:
        """Replace the stored hash in a single UPDATE. Returns rows touched.

        When account_id is given both keys must match, so a ticket issued for
        one account can never rewrite another account's password.
        """
        condition = _accounts.c.email == email
        if account_id is not None:
            condition = condition & (_accounts.c.id == account_id)
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(condition).values(password_hash=password_hash))
            conn.commit()
        return result.rowcount


class AttemptStore:
    """Repository for failed-login records, reset-request records and reset tickets."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Failed logins
    # ------------------------------------------------------------------

    def add_failed_login(self, account_id: str, attempt_time: datetime) -> None:
        with self.engine.connect() as conn:
            conn.execute(_failed_logins.insert().values(account_id=account_id, attempt_time=_iso(attempt_time)))
            conn.commit()

    def count_failed_logins(self, account_id: str, since: datetime) -> int:
        """Count attempts strictly after since."""
        stmt = (
            select(func.count())
            .select_from(_failed_logins)
            .where((_failed_logins.c.account_id == account_id) & (_failed_logins.c.attempt_time > _iso(since)))
        )
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar() or 0

    def clear_failed_logins(self, account_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_failed_logins.delete().where(_failed_logins.c.account_id == account_id))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Reset requests
    # ------------------------------------------------------------------

    def add_reset_request(self, account_id: str, requested_at: datetime) -> None:
        with self.engine.connect() as conn:
            conn.execute(_reset_requests.insert().values(account_id=account_id, requested_at=_iso(requested_at)))
            conn.commit()

    def count_reset_requests(self, account_id: str, since: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(_reset_requests)
            .where((_reset_requests.c.account_id == account_id) & (_reset_requests.c.requested_at > _iso(since)))
        )
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar() or 0

    def last_reset_request(self, account_id: str) -> datetime | None:
        stmt = select(func.max(_reset_requests.c.requested_at)).where(_reset_requests.c.account_id == account_id)
        with self.engine.connect() as conn:
            value = conn.execute(stmt).scalar()
        return _parse(value) if value else None

    def prune_reset_requests(self, before: datetime) -> int:
        """Delete reset-request rows older than before (all accounts)."""
        with self.engine.connect() as conn:
            result = conn.execute(_reset_requests.delete().where(_reset_requests.c.requested_at <= _iso(before)))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Reset tickets
    # ------------------------------------------------------------------

    def upsert_ticket(self, ticket: ResetTicket) -> None:
        """Insert the account's ticket or overwrite the existing one atomically.

        One INSERT ... ON CONFLICT (account_id) DO UPDATE statement -- never a
        read followed by a write -- so concurrent requests cannot leave two
        unconsumed tickets or lose an update.
        """
        values = {
            "account_id": ticket.account_id,
            "otp_code": ticket.otp_code,
            "requested_at": _iso(ticket.requested_at),
            "expires_at": _iso(ticket.expires_at),
            "used": 0,
        }
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(_reset_tickets).values(**values)
        elif dialect == "sqlite":
            stmt = sqlite.insert(_reset_tickets).values(**values)
        else:
            raise NotImplementedError(f"Ticket upsert is not supported on {dialect!r}")
        stmt = stmt.on_conflict_do_update(
            index_elements=[_reset_tickets.c.account_id],
            set_={
                "otp_code": stmt.excluded.otp_code,
                "requested_at": stmt.excluded.requested_at,
                "expires_at": stmt.excluded.expires_at,
                "used": 0,
            },
        )
        with self.engine.connect() as conn:
            conn.execute(stmt)
            conn.commit()

    def get_ticket(self, account_id: str) -> ResetTicket | None:
        with self.engine.connect() as conn:
            row = conn.execute(_reset_tickets.select().where(_reset_tickets.c.account_id == account_id)).fetchone()
        return _row_to_ticket(row) if row is not None else None

    def redeem_ticket(
        self,
        ticket_id: int,
        otp_code: str,
        now: datetime,
        account_id: str,
        email: str,
        password_hash: str,
    ) -> Redemption:
        """Consume a ticket and replace the account's password in one transaction.

        The ticket is consumed first with a compare-and-set on used = 0 that
        also re-checks the code and expiry, so of two concurrent redemptions
        only one gets past it; the other waits for the write lock and then
        matches no row. If the password UPDATE then matches no account, the
        consumption is rolled back with it.
        """
        with self.engine.connect() as conn:
            consumed = conn.execute(
                _reset_tickets.update()
                .where(
                    (_reset_tickets.c.id == ticket_id)
                    & (_reset_tickets.c.account_id == account_id)
                    & (_reset_tickets.c.used == 0)
                    & (_reset_tickets.c.otp_code == otp_code)
                    & (_reset_tickets.c.expires_at > _iso(now))
                )
                .values(used=1)
            ).rowcount
            if consumed == 0:
                conn.rollback()
                return Redemption.INVALID_TICKET

            updated = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c.email == email))
                .values(password_hash=password_hash)
            ).rowcount
            if updated == 0:
                conn.rollback()
                return Redemption.NO_ACCOUNT

            conn.commit()
        return Redemption.REDEEMED


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        username=row.username,
        password_hash=row.password_hash,
        created_at=row.created_at,
    )


def _row_to_ticket(row) -> ResetTicket:
    return ResetTicket(
        id=row.id,
        account_id=row.account_id,
        otp_code=row.otp_code,
        requested_at=_parse(row.requested_at),
        expires_at=_parse(row.expires_at),
        used=bool(row.used),
    )
