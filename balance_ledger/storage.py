"""
Ledger Store Module

Provides the abstract ledger store interface and implementations for in-memory
(testing), SQLite and PostgreSQL persistence. The store holds one balance row
per user, an append-only transaction log and the user directory table.

All balance mutations happen inside a unit of work: rows are locked
exclusively until the unit of work commits or rolls back, and every write made
inside it becomes visible together on commit or is discarded together on
rollback. Multi-row locks must be taken in ascending user id order.
"""

from abc import ABC, abstractmethod
from contextlib import closing, contextmanager
from typing import Callable, Dict, Iterable, Iterator, List, Optional, TypeVar
from pathlib import Path
import sqlite3
import threading

from .errors import LockOrderViolation, LockTimeout, StorageError
from .models import Balance, Transaction, User, parse_datetime, utcnow
from .money import ZERO, format_amount
from .logging_config import get_logger


T = TypeVar("T")

logger = get_logger("balance_ledger.storage")


class UnitOfWork(ABC):
    """
    One atomic group of reads and writes against the ledger store

    Tracks the balance rows locked so far and enforces the ascending lock
    order. Backends implement row acquisition and the actual writes.
    """

    def __init__(self):
        self._locked: Dict[int, Optional[Balance]] = {}
        self._highest_locked: Optional[int] = None
        self._finished = False

    @property
    def locked_user_ids(self) -> List[int]:
        """User ids locked by this unit of work, in acquisition order"""
        return list(self._locked)

    def lock_balance(self, user_id: int, create: bool = True) -> Optional[Balance]:
        """
        Lock a user's balance row for the rest of this unit of work

        Args:
            user_id: Owner of the balance row
            create: Create the row at zero if it does not exist yet

        Returns:
            The locked Balance, or None if the row is absent and create is False

        Raises:
            LockOrderViolation: If a higher user id is already locked
            LockTimeout: If the lock is not granted within the store's timeout
        """
        if self._finished:
            raise StorageError("Unit of work is already finished")

        if user_id in self._locked:
            row = self._locked[user_id]
            if row is None and create:
                row = self._acquire(user_id, create=True)
                self._locked[user_id] = row
            return row

        if self._highest_locked is not None and user_id < self._highest_locked:
            raise LockOrderViolation(user_id, self._highest_locked)

        row = self._acquire(user_id, create=create)
        self._locked[user_id] = row
        self._highest_locked = user_id
        return row

    def lock_balances(
        self, user_ids: Iterable[int], create: Iterable[int] = ()
    ) -> Dict[int, Optional[Balance]]:
        """Lock several balance rows in ascending user id order"""
        create_ids = set(create)
        return {
            user_id: self.lock_balance(user_id, create=user_id in create_ids)
            for user_id in sorted(set(user_ids))
        }

    def save_balance(self, balance: Balance) -> None:
        """Persist the new value of a row locked by this unit of work"""
        if self._locked.get(balance.user_id) is None:
            raise StorageError(f"Balance of user {balance.user_id} is not locked by this unit of work")
        if balance.balance < ZERO:
            raise StorageError(f"Refusing to store negative balance for user {balance.user_id}")
        self._write_balance(balance)
        self._locked[balance.user_id] = balance

    def append_transaction(self, transaction: Transaction) -> Transaction:
        """Append a transaction record; returns it with its assigned id"""
        if self._locked.get(transaction.user_id) is None:
            raise StorageError(f"Balance of user {transaction.user_id} is not locked by this unit of work")
        return self._insert_transaction(transaction)

    def user_exists(self, user_id: int) -> bool:
        """Check the users table through this unit of work's own connection"""
        if self._finished:
            raise StorageError("Unit of work is already finished")
        return self._user_exists(user_id)

    def commit(self) -> None:
        """Make every write of this unit of work visible and release its locks"""
        if self._finished:
            return
        self._finished = True
        self._commit()

    def rollback(self) -> None:
        """Discard every write of this unit of work and release its locks"""
        if self._finished:
            return
        self._finished = True
        self._rollback()

    @abstractmethod
    def _acquire(self, user_id: int, create: bool) -> Optional[Balance]:
        """Lock the row exclusively and return its current state"""
        pass

    @abstractmethod
    def _user_exists(self, user_id: int) -> bool:
        pass

    @abstractmethod
    def _write_balance(self, balance: Balance) -> None:
        pass

    @abstractmethod
    def _insert_transaction(self, transaction: Transaction) -> Transaction:
        pass

    @abstractmethod
    def _commit(self) -> None:
        pass

    @abstractmethod
    def _rollback(self) -> None:
        pass


class StorageInterface(ABC):
    """Abstract interface for ledger store backends"""

    @abstractmethod
    def initialize(self) -> None:
        """Create tables if they do not exist"""
        pass

    @abstractmethod
    def begin(self) -> UnitOfWork:
        """Start a unit of work"""
        pass

    @abstractmethod
    def get_balance(self, user_id: int) -> Optional[Balance]:
        """Read a committed balance row without locking it"""
        pass

    @abstractmethod
    def list_transactions(self, user_id: int, limit: Optional[int] = None) -> List[Transaction]:
        """Committed transactions of a user, oldest first (limit keeps the newest)"""
        pass

    @abstractmethod
    def count_transactions(self, user_id: Optional[int] = None) -> int:
        """Count transaction records, optionally for one user"""
        pass

    @abstractmethod
    def insert_user(self, name: str, email: str) -> User:
        """Add a user to the directory table"""
        pass

    @abstractmethod
    def load_user(self, user_id: int) -> Optional[User]:
        """Load a user from the directory table"""
        pass

    @abstractmethod
    def find_user_by_email(self, email: str) -> Optional[User]:
        """Load a user by e-mail address"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def user_exists(self, user_id: int) -> bool:
        """Check if a user exists"""
        return self.load_user(user_id) is not None

    @contextmanager
    def atomic(self) -> Iterator[UnitOfWork]:
        """Context manager for atomic operations"""
        uow = self.begin()
        try:
            yield uow
            uow.commit()
        except Exception:
            uow.rollback()
            raise

    def run_atomic(self, fn: Callable[[UnitOfWork], T]) -> T:
        """
        Run fn inside a single unit of work

        If fn raises, all of its writes are discarded and the exception
        propagates unchanged; otherwise its writes commit together.
        """
        with self.atomic() as uow:
            return fn(uow)


class InMemoryUnitOfWork(UnitOfWork):
    """Buffers writes and holds per-user locks until commit or rollback"""

    def __init__(self, storage: 'InMemoryStorage'):
        super().__init__()
        self._storage = storage
        self._held: List[threading.Lock] = []
        self._pending_balances: Dict[int, Balance] = {}
        self._pending_transactions: List[Transaction] = []

    def _acquire(self, user_id: int, create: bool) -> Optional[Balance]:
        if user_id not in self._locked:
            row_lock = self._storage._row_lock(user_id)
            timeout = self._storage.lock_timeout
            if timeout is None:
                row_lock.acquire()
            elif not row_lock.acquire(timeout=timeout):
                raise LockTimeout(user_id, timeout)
            self._held.append(row_lock)

        row = self._pending_balances.get(user_id)
        if row is None:
            row = self._storage.get_balance(user_id)
        if row is None and create:
            row = Balance(user_id=user_id, balance=ZERO)
            self._pending_balances[user_id] = row
        return row

    def _user_exists(self, user_id: int) -> bool:
        with self._storage._lock:
            return user_id in self._storage._users

    def _write_balance(self, balance: Balance) -> None:
        self._pending_balances[balance.user_id] = balance

    def _insert_transaction(self, transaction: Transaction) -> Transaction:
        stored = transaction.with_id(self._storage._next_transaction_id())
        self._pending_transactions.append(stored)
        return stored

    def _commit(self) -> None:
        try:
            self._storage._apply(self._pending_balances, self._pending_transactions)
        finally:
            self._release()

    def _rollback(self) -> None:
        self._pending_balances.clear()
        self._pending_transactions.clear()
        self._release()

    def _release(self) -> None:
        while self._held:
            self._held.pop().release()


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self, lock_timeout: Optional[float] = None):
        self.lock_timeout = lock_timeout
        self._balances: Dict[int, Dict] = {}
        self._transactions: List[Dict] = []
        self._users: Dict[int, Dict] = {}
        self._row_locks: Dict[int, threading.Lock] = {}
        self._transaction_seq = 0
        self._user_seq = 0
        self._lock = threading.RLock()

    def initialize(self) -> None:
        """Nothing to create for in-memory storage"""
        pass

    def begin(self) -> UnitOfWork:
        return InMemoryUnitOfWork(self)

    def _row_lock(self, user_id: int) -> threading.Lock:
        with self._lock:
            return self._row_locks.setdefault(user_id, threading.Lock())

    def _next_transaction_id(self) -> int:
        with self._lock:
            self._transaction_seq += 1
            return self._transaction_seq

    def _apply(self, balances: Dict[int, Balance], transactions: List[Transaction]) -> None:
        """Publish the writes of a committed unit of work"""
        with self._lock:
            for user_id, balance in balances.items():
                self._balances[user_id] = balance.to_dict()
            self._transactions.extend(t.to_dict() for t in transactions)

    def get_balance(self, user_id: int) -> Optional[Balance]:
        with self._lock:
            data = self._balances.get(user_id)
            return Balance.from_dict(data) if data else None

    def list_transactions(self, user_id: int, limit: Optional[int] = None) -> List[Transaction]:
        with self._lock:
            rows = [t for t in self._transactions if t["user_id"] == user_id]
        rows.sort(key=lambda t: t["id"])
        if limit is not None:
            rows = rows[-limit:] if limit > 0 else []
        return [Transaction.from_dict(row) for row in rows]

    def count_transactions(self, user_id: Optional[int] = None) -> int:
        with self._lock:
            if user_id is None:
                return len(self._transactions)
            return sum(1 for t in self._transactions if t["user_id"] == user_id)

    def insert_user(self, name: str, email: str) -> User:
        with self._lock:
            if any(u["email"] == email for u in self._users.values()):
                raise ValueError(f"User with email {email} already exists")
            self._user_seq += 1
            user = User(id=self._user_seq, name=name, email=email)
            self._users[user.id] = user.to_dict()
            return user

    def load_user(self, user_id: int) -> Optional[User]:
        with self._lock:
            data = self._users.get(user_id)
        return _user_from_row(data) if data else None

    def find_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            for data in self._users.values():
                if data["email"] == email:
                    return _user_from_row(data)
        return None

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS balances (
    user_id INTEGER PRIMARY KEY REFERENCES users(id),
    balance TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id),
    type TEXT NOT NULL CHECK (type IN ('deposit', 'withdraw', 'transfer_out', 'transfer_in')),
    amount TEXT NOT NULL,
    balance_before TEXT NOT NULL,
    balance_after TEXT NOT NULL,
    related_user_id INTEGER REFERENCES users(id),
    comment TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_transactions_user_id ON transactions(user_id, id);
"""


class SQLiteUnitOfWork(UnitOfWork):
    """
    Unit of work on its own SQLite connection

    The first row lock opens the transaction with BEGIN IMMEDIATE, which takes
    the database write lock; it is held until COMMIT or ROLLBACK.
    """

    def __init__(self, storage: 'SQLiteStorage'):
        super().__init__()
        self._storage = storage
        self._connection = storage._connect()
        self._in_transaction = False

    def _acquire(self, user_id: int, create: bool) -> Optional[Balance]:
        if not self._in_transaction:
            try:
                self._connection.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                if "locked" in str(e) or "busy" in str(e):
                    raise LockTimeout(user_id, self._storage.busy_timeout) from e
                raise
            self._in_transaction = True

        row = self._connection.execute(
            "SELECT * FROM balances WHERE user_id = ?", (user_id,)
        ).fetchone()
        if row is not None:
            return Balance.from_dict(dict(row))
        if not create:
            return None

        balance = Balance(user_id=user_id, balance=ZERO)
        self._connection.execute(
            "INSERT INTO balances (user_id, balance, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (user_id, format_amount(balance.balance),
             balance.created_at.isoformat(), balance.updated_at.isoformat())
        )
        return balance

    def _user_exists(self, user_id: int) -> bool:
        row = self._connection.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone()
        return row is not None

    def _write_balance(self, balance: Balance) -> None:
        self._connection.execute(
            "UPDATE balances SET balance = ?, updated_at = ? WHERE user_id = ?",
            (format_amount(balance.balance), balance.updated_at.isoformat(), balance.user_id)
        )

    def _insert_transaction(self, transaction: Transaction) -> Transaction:
        data = transaction.to_dict()
        cursor = self._connection.execute("""
            INSERT INTO transactions
                (user_id, type, amount, balance_before, balance_after,
                 related_user_id, comment, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (data["user_id"], data["type"], data["amount"], data["balance_before"],
              data["balance_after"], data["related_user_id"], data["comment"],
              data["created_at"]))
        return transaction.with_id(cursor.lastrowid)

    def _commit(self) -> None:
        try:
            if self._in_transaction:
                self._connection.execute("COMMIT")
        except Exception:
            self._connection.execute("ROLLBACK")
            raise
        finally:
            self._connection.close()

    def _rollback(self) -> None:
        try:
            if self._in_transaction:
                self._connection.execute("ROLLBACK")
        finally:
            self._connection.close()


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: str, busy_timeout: float = 60.0):
        if str(db_path) == ":memory:":
            raise ValueError("SQLiteStorage needs a database file; use InMemoryStorage for tests")
        self.db_path = str(db_path)
        self.busy_timeout = busy_timeout

    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly
        connection = sqlite3.connect(
            self.db_path, timeout=self.busy_timeout,
            isolation_level=None, check_same_thread=False
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        return connection

    def initialize(self) -> None:
        """Create schema and enable WAL mode for concurrent readers"""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as connection:
            connection.execute("PRAGMA journal_mode = WAL")
            connection.executescript(SQLITE_SCHEMA)
        logger.info(f"SQLite ledger store ready at {self.db_path}")

    def begin(self) -> UnitOfWork:
        return SQLiteUnitOfWork(self)

    def get_balance(self, user_id: int) -> Optional[Balance]:
        with closing(self._connect()) as connection:
            row = connection.execute(
                "SELECT * FROM balances WHERE user_id = ?", (user_id,)
            ).fetchone()
        return Balance.from_dict(dict(row)) if row else None

    def list_transactions(self, user_id: int, limit: Optional[int] = None) -> List[Transaction]:
        with closing(self._connect()) as connection:
            if limit is None:
                rows = connection.execute(
                    "SELECT * FROM transactions WHERE user_id = ? ORDER BY id", (user_id,)
                ).fetchall()
            else:
                rows = connection.execute("""
                    SELECT * FROM (
                        SELECT * FROM transactions WHERE user_id = ? ORDER BY id DESC LIMIT ?
                    ) ORDER BY id
                """, (user_id, max(limit, 0))).fetchall()
        return [Transaction.from_dict(dict(row)) for row in rows]

    def count_transactions(self, user_id: Optional[int] = None) -> int:
        with closing(self._connect()) as connection:
            if user_id is None:
                row = connection.execute("SELECT COUNT(*) AS count FROM transactions").fetchone()
            else:
                row = connection.execute(
                    "SELECT COUNT(*) AS count FROM transactions WHERE user_id = ?", (user_id,)
                ).fetchone()
        return row["count"]

    def insert_user(self, name: str, email: str) -> User:
        created_at = utcnow()
        with closing(self._connect()) as connection:
            try:
                cursor = connection.execute(
                    "INSERT INTO users (name, email, created_at) VALUES (?, ?, ?)",
                    (name, email, created_at.isoformat())
                )
            except sqlite3.IntegrityError as e:
                raise ValueError(f"User with email {email} already exists") from e
        return User(id=cursor.lastrowid, name=name, email=email, created_at=created_at)

    def load_user(self, user_id: int) -> Optional[User]:
        with closing(self._connect()) as connection:
            row = connection.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return _user_from_row(dict(row)) if row else None

    def find_user_by_email(self, email: str) -> Optional[User]:
        with closing(self._connect()) as connection:
            row = connection.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
        return _user_from_row(dict(row)) if row else None

    def close(self) -> None:
        """Connections are per call; nothing to close"""
        pass


POSTGRESQL_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id BIGSERIAL PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS balances (
    user_id BIGINT PRIMARY KEY REFERENCES users(id),
    balance NUMERIC(15, 2) NOT NULL CHECK (balance >= 0),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS transactions (
    id BIGSERIAL PRIMARY KEY,
    user_id BIGINT NOT NULL REFERENCES users(id),
    type TEXT NOT NULL CHECK (type IN ('deposit', 'withdraw', 'transfer_out', 'transfer_in')),
    amount NUMERIC(15, 2) NOT NULL CHECK (amount > 0),
    balance_before NUMERIC(15, 2) NOT NULL,
    balance_after NUMERIC(15, 2) NOT NULL,
    related_user_id BIGINT REFERENCES users(id),
    comment VARCHAR(255),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_transactions_user_id ON transactions(user_id, id);
"""


class PostgreSQLUnitOfWork(UnitOfWork):
    """Unit of work on a pooled connection using SELECT ... FOR UPDATE row locks"""

    def __init__(self, storage: 'PostgreSQLStorage'):
        super().__init__()
        self._storage = storage
        self._connection = storage._pool.getconn()
        try:
            self._cursor = self._connection.cursor()
            if storage.lock_timeout is not None:
                self._cursor.execute(
                    "SET LOCAL lock_timeout = %s", (f"{int(storage.lock_timeout * 1000)}ms",)
                )
        except Exception:
            # The connection state is unknown; drop it from the pool
            storage._pool.putconn(self._connection, close=True)
            raise

    def _acquire(self, user_id: int, create: bool) -> Optional[Balance]:
        errors = self._storage.psycopg2.errors
        try:
            if create:
                self._cursor.execute("""
                    INSERT INTO balances (user_id, balance) VALUES (%s, 0)
                    ON CONFLICT (user_id) DO NOTHING
                """, (user_id,))
            self._cursor.execute(
                "SELECT * FROM balances WHERE user_id = %s FOR UPDATE", (user_id,)
            )
        except errors.LockNotAvailable as e:
            raise LockTimeout(user_id, self._storage.lock_timeout) from e
        row = self._cursor.fetchone()
        return Balance.from_dict(dict(row)) if row else None

    def _user_exists(self, user_id: int) -> bool:
        self._cursor.execute("SELECT 1 FROM users WHERE id = %s", (user_id,))
        return self._cursor.fetchone() is not None

    def _write_balance(self, balance: Balance) -> None:
        self._cursor.execute(
            "UPDATE balances SET balance = %s, updated_at = %s WHERE user_id = %s",
            (balance.balance, balance.updated_at, balance.user_id)
        )

    def _insert_transaction(self, transaction: Transaction) -> Transaction:
        self._cursor.execute("""
            INSERT INTO transactions
                (user_id, type, amount, balance_before, balance_after,
                 related_user_id, comment, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id
        """, (transaction.user_id, transaction.transaction_type.value, transaction.amount,
              transaction.balance_before, transaction.balance_after,
              transaction.related_user_id, transaction.comment, transaction.created_at))
        return transaction.with_id(self._cursor.fetchone()["id"])

    def _commit(self) -> None:
        try:
            self._connection.commit()
        except Exception:
            self._connection.rollback()
            raise
        finally:
            self._cursor.close()
            self._storage._pool.putconn(self._connection)

    def _rollback(self) -> None:
        try:
            self._connection.rollback()
        finally:
            self._cursor.close()
            self._storage._pool.putconn(self._connection)


class PostgreSQLStorage(StorageInterface):
    """PostgreSQL storage backend with row-level locking"""

    def __init__(self, connection_string: str, lock_timeout: Optional[float] = None,
                 min_connections: int = 1, max_connections: int = 40):
        try:
            import psycopg2
            import psycopg2.errors
            import psycopg2.extras
            import psycopg2.pool
            self.psycopg2 = psycopg2
            self.extras = psycopg2.extras
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")

        self.connection_string = connection_string
        self.lock_timeout = lock_timeout
        self._pool = psycopg2.pool.ThreadedConnectionPool(
            min_connections, max_connections, connection_string,
            cursor_factory=self.extras.RealDictCursor
        )

    @contextmanager
    def _read(self):
        connection = self._pool.getconn()
        try:
            with connection.cursor() as cursor:
                yield cursor
            connection.commit()
        except Exception:
            connection.rollback()
            raise
        finally:
            self._pool.putconn(connection)

    def initialize(self) -> None:
        with self._read() as cursor:
            cursor.execute(POSTGRESQL_SCHEMA)
        logger.info("PostgreSQL ledger store ready")

    def begin(self) -> UnitOfWork:
        return PostgreSQLUnitOfWork(self)

    def get_balance(self, user_id: int) -> Optional[Balance]:
        with self._read() as cursor:
            cursor.execute("SELECT * FROM balances WHERE user_id = %s", (user_id,))
            row = cursor.fetchone()
        return Balance.from_dict(dict(row)) if row else None

    def list_transactions(self, user_id: int, limit: Optional[int] = None) -> List[Transaction]:
        with self._read() as cursor:
            if limit is None:
                cursor.execute(
                    "SELECT * FROM transactions WHERE user_id = %s ORDER BY id", (user_id,)
                )
            else:
                cursor.execute("""
                    SELECT * FROM (
                        SELECT * FROM transactions WHERE user_id = %s ORDER BY id DESC LIMIT %s
                    ) AS recent ORDER BY id
                """, (user_id, max(limit, 0)))
            rows = cursor.fetchall()
        return [Transaction.from_dict(dict(row)) for row in rows]

    def count_transactions(self, user_id: Optional[int] = None) -> int:
        with self._read() as cursor:
            if user_id is None:
                cursor.execute("SELECT COUNT(*) AS count FROM transactions")
            else:
                cursor.execute(
                    "SELECT COUNT(*) AS count FROM transactions WHERE user_id = %s", (user_id,)
                )
            return cursor.fetchone()["count"]

    def insert_user(self, name: str, email: str) -> User:
        try:
            with self._read() as cursor:
                cursor.execute(
                    "INSERT INTO users (name, email) VALUES (%s, %s) RETURNING *", (name, email)
                )
                row = cursor.fetchone()
        except self.psycopg2.errors.UniqueViolation as e:
            raise ValueError(f"User with email {email} already exists") from e
        return _user_from_row(dict(row))

    def load_user(self, user_id: int) -> Optional[User]:
        with self._read() as cursor:
            cursor.execute("SELECT * FROM users WHERE id = %s", (user_id,))
            row = cursor.fetchone()
        return _user_from_row(dict(row)) if row else None

    def find_user_by_email(self, email: str) -> Optional[User]:
        with self._read() as cursor:
            cursor.execute("SELECT * FROM users WHERE email = %s", (email,))
            row = cursor.fetchone()
        return _user_from_row(dict(row)) if row else None

    def close(self) -> None:
        """Close all pooled PostgreSQL connections"""
        self._pool.closeall()


def _user_from_row(data: Dict) -> User:
    return User(
        id=int(data["id"]),
        name=data["name"],
        email=data["email"],
        created_at=parse_datetime(data["created_at"]),
    )


def create_storage(database_url: str, lock_timeout: Optional[float] = None,
                   busy_timeout: float = 60.0, pool_min_connections: int = 1,
                   pool_max_connections: int = 40) -> StorageInterface:
    """
    Build and initialize a ledger store from a database URL

    Supported URLs:
        memory://                   in-memory store (tests, demos)
        sqlite:///path/to/file.db   SQLite file
        postgresql://user:pw@host/db
    """
    if database_url.startswith("memory://"):
        storage: StorageInterface = InMemoryStorage(lock_timeout=lock_timeout)
    elif database_url.startswith("sqlite:///"):
        storage = SQLiteStorage(database_url[len("sqlite:///"):], busy_timeout=busy_timeout)
    elif database_url.startswith(("postgresql://", "postgres://")):
        storage = PostgreSQLStorage(
            database_url, lock_timeout=lock_timeout,
            min_connections=pool_min_connections, max_connections=pool_max_connections
        )
    else:
        raise ValueError(f"Unsupported database URL: {database_url}")

    storage.initialize()
    return storage
