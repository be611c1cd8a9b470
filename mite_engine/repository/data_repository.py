"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional, Sequence

from mite_engine.domain.errors import StaleStateError
from mite_engine.domain.models import (
    InterventionSession,
    Item,
    ItemStatus,
    Location,
    OrderStatus,
    ServiceOrder,
    SessionState,
)
from mite_engine.utils.config import Settings, get_settings
from mite_engine.utils.logger import get_logger
from mite_engine.utils.timeutils import from_db, to_db, utc_now


logger = get_logger(__name__)

_UNSET: Any = object()


def _optional_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    return bool(value)


def _row_to_location(row: sqlite3.Row) -> Location:
    return Location(
        location_id=int(row["id"]),
        owner_id=str(row["owner_id"]),
        latitude=row["latitude"],
        longitude=row["longitude"],
        country=row["country"],
        state=row["state"],
        city=row["city"],
        district=row["district"],
        road=row["road"],
        house_number=row["house_number"],
        neighbourhood=row["neighbourhood"],
        floor_number=row["floor_number"],
        has_elevator=_optional_bool(row["has_elevator"]),
    )


def _row_to_item(row: sqlite3.Row) -> Item:
    return Item(
        item_id=int(row["id"]),
        owner_id=str(row["owner_id"]),
        name=str(row["name"]),
        material=str(row["material"]),
        thickness=str(row["thickness"]),
        risk_score=float(row["risk_score"]),
        status=ItemStatus(row["status"]),
        location_id=row["location_id"],
        active_session_id=row["active_session_id"],
        active_order_id=row["active_order_id"],
        updated_at=from_db(row["updated_at"]),
    )


def _row_to_session(row: sqlite3.Row) -> InterventionSession:
    return InterventionSession(
        session_id=int(row["id"]),
        item_id=int(row["item_id"]),
        initiator_id=str(row["initiator_id"]),
        start_time=from_db(row["start_time"]),
        end_time=from_db(row["end_time"]),
        is_self_service=bool(row["is_self_service"]),
        before_score=float(row["before_score"]),
        predicted_score=row["predicted_score"],
        after_score=row["after_score"],
        state=SessionState(row["state"]),
        created_at=from_db(row["created_at"]),
        closed_at=from_db(row["closed_at"]),
    )


def _row_to_order(row: sqlite3.Row) -> ServiceOrder:
    return ServiceOrder(
        order_id=int(row["id"]),
        item_id=int(row["item_id"]),
        requester_id=str(row["requester_id"]),
        assignee_id=row["assignee_id"],
        location_id=row["location_id"],
        session_id=int(row["session_id"]),
        status=OrderStatus(row["status"]),
        cost=row["cost"],
        is_paid=bool(row["is_paid"]),
        created_at=from_db(row["created_at"]),
        updated_at=from_db(row["updated_at"]),
        placed_photo_ref=row["placed_photo_ref"],
        execution_photo_ref=row["execution_photo_ref"],
    )


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic.

    Every status write is conditional on the status the caller last read.
    Multi-record transitions run inside `transaction()` so a lost conditional
    update rolls the whole transition back.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path, timeout=10.0)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialize writers with an immediate lock; commit or roll back as one."""
        connection = self._connect()
        try:
            connection.execute("BEGIN IMMEDIATE;")
            yield connection
            connection.commit()
        except BaseException:
            connection.rollback()
            raise
        finally:
            connection.close()

    @contextmanager
    def _use(self, conn: Optional[sqlite3.Connection]) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        with self.transaction() as connection:
            yield connection

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._use(None) as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Locations (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        owner_id TEXT NOT NULL,
                        latitude REAL,
                        longitude REAL,
                        country TEXT,
                        state TEXT,
                        city TEXT,
                        district TEXT,
                        road TEXT,
                        house_number TEXT,
                        neighbourhood TEXT,
                        floor_number INTEGER,
                        has_elevator INTEGER CHECK (has_elevator IN (0,1)),
                        created_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Items (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        owner_id TEXT NOT NULL,
                        name TEXT NOT NULL,
                        material TEXT NOT NULL DEFAULT 'Unknown',
                        thickness TEXT NOT NULL DEFAULT 'Medium',
                        risk_score REAL NOT NULL DEFAULT 0
                            CHECK (risk_score >= 0 AND risk_score <= 100),
                        status TEXT NOT NULL DEFAULT 'normal',
                        location_id INTEGER,
                        active_session_id INTEGER,
                        active_order_id INTEGER,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        FOREIGN KEY (location_id) REFERENCES Locations(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS InterventionSessions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        item_id INTEGER NOT NULL,
                        initiator_id TEXT NOT NULL,
                        start_time TEXT,
                        end_time TEXT,
                        is_self_service INTEGER NOT NULL CHECK (is_self_service IN (0,1)),
                        before_score REAL NOT NULL,
                        predicted_score REAL,
                        after_score REAL,
                        state TEXT NOT NULL DEFAULT 'open',
                        created_at TEXT NOT NULL,
                        closed_at TEXT,
                        FOREIGN KEY (item_id) REFERENCES Items(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ServiceOrders (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        item_id INTEGER NOT NULL,
                        requester_id TEXT NOT NULL,
                        assignee_id TEXT,
                        location_id INTEGER,
                        session_id INTEGER NOT NULL,
                        status TEXT NOT NULL DEFAULT 'pending',
                        cost REAL,
                        is_paid INTEGER NOT NULL DEFAULT 0 CHECK (is_paid IN (0,1)),
                        placed_photo_ref TEXT,
                        execution_photo_ref TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        FOREIGN KEY (item_id) REFERENCES Items(id),
                        FOREIGN KEY (location_id) REFERENCES Locations(id),
                        FOREIGN KEY (session_id) REFERENCES InterventionSessions(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_items_status
                    ON Items(status);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_orders_status
                    ON ServiceOrders(status);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_sessions_item
                    ON InterventionSessions(item_id, created_at);
                    """
                )
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    # --- Locations -------------------------------------------------------

    def create_location(
        self,
        owner_id: str,
        *,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        country: Optional[str] = None,
        state: Optional[str] = None,
        city: Optional[str] = None,
        district: Optional[str] = None,
        road: Optional[str] = None,
        house_number: Optional[str] = None,
        neighbourhood: Optional[str] = None,
        floor_number: Optional[int] = None,
        has_elevator: Optional[bool] = None,
    ) -> Location:
        with self._use(None) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Locations (
                    owner_id, latitude, longitude, country, state, city,
                    district, road, house_number, neighbourhood,
                    floor_number, has_elevator, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    owner_id,
                    latitude,
                    longitude,
                    country,
                    state,
                    city,
                    district,
                    road,
                    house_number,
                    neighbourhood,
                    floor_number,
                    None if has_elevator is None else int(has_elevator),
                    to_db(utc_now()),
                ),
            )
            location_id = int(cursor.lastrowid)
            return self.get_location(location_id, conn=conn)

    def get_location(
        self,
        location_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[Location]:
        with self._use(conn) as connection:
            row = connection.execute(
                "SELECT * FROM Locations WHERE id = ?;",
                (location_id,),
            ).fetchone()
            return None if row is None else _row_to_location(row)

    # --- Items -----------------------------------------------------------

    def create_item(
        self,
        owner_id: str,
        name: str,
        material: str,
        thickness: str,
        risk_score: float = 0.0,
        location_id: Optional[int] = None,
    ) -> Item:
        now = to_db(utc_now())
        with self._use(None) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Items (
                    owner_id, name, material, thickness, risk_score,
                    status, location_id, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    owner_id,
                    name,
                    material,
                    thickness,
                    risk_score,
                    ItemStatus.NORMAL.value,
                    location_id,
                    now,
                    now,
                ),
            )
            return self.get_item(int(cursor.lastrowid), conn=conn)

    def get_item(
        self,
        item_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[Item]:
        with self._use(conn) as connection:
            row = connection.execute(
                "SELECT * FROM Items WHERE id = ?;",
                (item_id,),
            ).fetchone()
            return None if row is None else _row_to_item(row)

    def list_items(self) -> list[Item]:
        with self._use(None) as conn:
            rows = conn.execute("SELECT * FROM Items ORDER BY id ASC;").fetchall()
            return [_row_to_item(row) for row in rows]

    def list_items_by_status(self, statuses: Iterable[ItemStatus]) -> list[Item]:
        status_values = [status.value for status in statuses]
        if not status_values:
            return []
        placeholders = ",".join("?" for _ in status_values)
        with self._use(None) as conn:
            rows = conn.execute(
                f"SELECT * FROM Items WHERE status IN ({placeholders}) ORDER BY id ASC;",
                tuple(status_values),
            ).fetchall()
            return [_row_to_item(row) for row in rows]

    def update_item_if_status(
        self,
        item_id: int,
        expected_status: ItemStatus,
        *,
        status: ItemStatus,
        risk_score: Any = _UNSET,
        active_session_id: Any = _UNSET,
        active_order_id: Any = _UNSET,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        """Conditional write: applies only while the item is `expected_status`."""
        assignments = ["status = ?", "updated_at = ?"]
        values: list[Any] = [status.value, to_db(utc_now())]
        if risk_score is not _UNSET:
            assignments.append("risk_score = ?")
            values.append(risk_score)
        if active_session_id is not _UNSET:
            assignments.append("active_session_id = ?")
            values.append(active_session_id)
        if active_order_id is not _UNSET:
            assignments.append("active_order_id = ?")
            values.append(active_order_id)
        values.extend([item_id, expected_status.value])

        with self._use(conn) as connection:
            cursor = connection.execute(
                f"""
                UPDATE Items
                SET {", ".join(assignments)}
                WHERE id = ? AND status = ?;
                """,
                tuple(values),
            )
            if cursor.rowcount != 1:
                raise StaleStateError(
                    f"Item {item_id} is no longer {expected_status.value}"
                )

    def compare_and_set_risk_score(
        self,
        item_id: int,
        expected_score: float,
        new_score: float,
    ) -> bool:
        """Write `new_score` only if nobody changed the score since it was read."""
        with self._use(None) as conn:
            cursor = conn.execute(
                """
                UPDATE Items
                SET risk_score = ?, updated_at = ?
                WHERE id = ? AND risk_score = ?;
                """,
                (new_score, to_db(utc_now()), item_id, expected_score),
            )
            return cursor.rowcount == 1

    # --- Intervention sessions ------------------------------------------

    def create_session(
        self,
        *,
        item_id: int,
        initiator_id: str,
        start_time: Optional[datetime],
        end_time: Optional[datetime],
        is_self_service: bool,
        before_score: float,
        predicted_score: Optional[float],
        conn: Optional[sqlite3.Connection] = None,
    ) -> InterventionSession:
        with self._use(conn) as connection:
            cursor = connection.execute(
                """
                INSERT INTO InterventionSessions (
                    item_id, initiator_id, start_time, end_time,
                    is_self_service, before_score, predicted_score,
                    state, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    item_id,
                    initiator_id,
                    to_db(start_time),
                    to_db(end_time),
                    int(is_self_service),
                    before_score,
                    predicted_score,
                    SessionState.OPEN.value,
                    to_db(utc_now()),
                ),
            )
            return self.get_session(int(cursor.lastrowid), conn=connection)

    def get_session(
        self,
        session_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[InterventionSession]:
        with self._use(conn) as connection:
            row = connection.execute(
                "SELECT * FROM InterventionSessions WHERE id = ?;",
                (session_id,),
            ).fetchone()
            return None if row is None else _row_to_session(row)

    def count_open_sessions(
        self,
        item_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> int:
        with self._use(conn) as connection:
            row = connection.execute(
                """
                SELECT COUNT(*) AS count FROM InterventionSessions
                WHERE item_id = ? AND state = ?;
                """,
                (item_id, SessionState.OPEN.value),
            ).fetchone()
            return int(row["count"])

    def close_session(
        self,
        session_id: int,
        *,
        state: SessionState,
        after_score: Optional[float] = None,
        closed_at: Optional[datetime] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        """Close an open session; the row itself is kept as audit history."""
        with self._use(conn) as connection:
            cursor = connection.execute(
                """
                UPDATE InterventionSessions
                SET state = ?, after_score = ?, closed_at = ?
                WHERE id = ? AND state = ?;
                """,
                (
                    state.value,
                    after_score,
                    to_db(closed_at or utc_now()),
                    session_id,
                    SessionState.OPEN.value,
                ),
            )
            if cursor.rowcount != 1:
                raise StaleStateError(f"Session {session_id} is no longer open")

    def list_sessions_for_item(self, item_id: int) -> list[InterventionSession]:
        with self._use(None) as conn:
            rows = conn.execute(
                """
                SELECT * FROM InterventionSessions
                WHERE item_id = ?
                ORDER BY created_at DESC, id DESC;
                """,
                (item_id,),
            ).fetchall()
            return [_row_to_session(row) for row in rows]

    # --- Service orders --------------------------------------------------

    def create_order(
        self,
        *,
        item_id: int,
        requester_id: str,
        location_id: Optional[int],
        session_id: int,
        cost: Optional[float],
        placed_photo_ref: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> ServiceOrder:
        now = to_db(utc_now())
        with self._use(conn) as connection:
            cursor = connection.execute(
                """
                INSERT INTO ServiceOrders (
                    item_id, requester_id, location_id, session_id,
                    status, cost, placed_photo_ref, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    item_id,
                    requester_id,
                    location_id,
                    session_id,
                    OrderStatus.PENDING.value,
                    cost,
                    placed_photo_ref,
                    now,
                    now,
                ),
            )
            return self.get_order(int(cursor.lastrowid), conn=connection)

    def get_order(
        self,
        order_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[ServiceOrder]:
        with self._use(conn) as connection:
            row = connection.execute(
                "SELECT * FROM ServiceOrders WHERE id = ?;",
                (order_id,),
            ).fetchone()
            return None if row is None else _row_to_order(row)

    def list_orders_by_status(self, status: OrderStatus) -> list[ServiceOrder]:
        with self._use(None) as conn:
            rows = conn.execute(
                """
                SELECT * FROM ServiceOrders
                WHERE status = ?
                ORDER BY created_at ASC, id ASC;
                """,
                (status.value,),
            ).fetchall()
            return [_row_to_order(row) for row in rows]

    def list_user_orders(self, user_id: str) -> list[ServiceOrder]:
        """Orders the user requested or was assigned, newest first."""
        with self._use(None) as conn:
            rows = conn.execute(
                """
                SELECT * FROM ServiceOrders
                WHERE requester_id = ? OR assignee_id = ?
                ORDER BY created_at DESC, id DESC;
                """,
                (user_id, user_id),
            ).fetchall()
            return [_row_to_order(row) for row in rows]

    def list_open_orders_with_locations(
        self,
        exclude_requester_id: Optional[str] = None,
    ) -> list[tuple[ServiceOrder, Optional[Location]]]:
        """Pending orders joined with their (possibly missing) location."""
        with self._use(None) as conn:
            rows = conn.execute(
                """
                SELECT o.*, l.id AS loc_id
                FROM ServiceOrders AS o
                LEFT JOIN Locations AS l ON l.id = o.location_id
                WHERE o.status = ?
                  AND (? IS NULL OR o.requester_id != ?)
                ORDER BY o.created_at ASC, o.id ASC;
                """,
                (OrderStatus.PENDING.value, exclude_requester_id, exclude_requester_id),
            ).fetchall()
            results: list[tuple[ServiceOrder, Optional[Location]]] = []
            for row in rows:
                location = None
                if row["loc_id"] is not None:
                    location = self.get_location(int(row["loc_id"]), conn=conn)
                results.append((_row_to_order(row), location))
            return results

    def update_order_if_status(
        self,
        order_id: int,
        expected_status: OrderStatus,
        *,
        status: OrderStatus,
        assignee_id: Any = _UNSET,
        execution_photo_ref: Any = _UNSET,
        require_unassigned: bool = False,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        """Conditional write: applies only while the order is `expected_status`."""
        assignments = ["status = ?", "updated_at = ?"]
        values: list[Any] = [status.value, to_db(utc_now())]
        if assignee_id is not _UNSET:
            assignments.append("assignee_id = ?")
            values.append(assignee_id)
        if execution_photo_ref is not _UNSET:
            assignments.append("execution_photo_ref = ?")
            values.append(execution_photo_ref)
        values.extend([order_id, expected_status.value])
        guard = " AND assignee_id IS NULL" if require_unassigned else ""

        with self._use(conn) as connection:
            cursor = connection.execute(
                f"""
                UPDATE ServiceOrders
                SET {", ".join(assignments)}
                WHERE id = ? AND status = ?{guard};
                """,
                tuple(values),
            )
            if cursor.rowcount != 1:
                raise StaleStateError(
                    f"Order {order_id} is no longer {expected_status.value}"
                )

    def mark_order_paid(self, order_id: int) -> None:
        with self._use(None) as conn:
            conn.execute(
                "UPDATE ServiceOrders SET is_paid = 1, updated_at = ? WHERE id = ?;",
                (to_db(utc_now()), order_id),
            )

    def count_orders(self, statuses: Sequence[OrderStatus] | None = None) -> int:
        """Return persisted order count for diagnostics and tests."""
        with self._use(None) as conn:
            if not statuses:
                row = conn.execute("SELECT COUNT(*) AS count FROM ServiceOrders;").fetchone()
            else:
                placeholders = ",".join("?" for _ in statuses)
                row = conn.execute(
                    f"SELECT COUNT(*) AS count FROM ServiceOrders WHERE status IN ({placeholders});",
                    tuple(status.value for status in statuses),
                ).fetchone()
            return int(row["count"])
