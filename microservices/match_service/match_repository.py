"""
Match Service Data Repository

Data access layer - PostgreSQL (asyncpg)

`atomic_update` is the compare-and-swap the engines rely on: the predicate
and the patch go into one UPDATE ... WHERE ... RETURNING statement. When
item exclusivity is part of the predicate, the transaction first takes an
advisory lock on the shopper request so sibling claims serialize and the
NOT EXISTS sub-query sees every committed assignment.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from core.postgres_client import PostgresClientWrapper

from .models import (
    BagItem,
    Match,
    MatchFilter,
    MatchPredicate,
    MatchStatus,
    PaymentStatus,
    PinRecord,
    RELEASED_STATUSES,
    ShopperRequest,
    ShopperRequestStatus,
    Trip,
)

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

_MATCH_COLUMNS = (
    "match_id", "shopper_request_id", "trip_id", "shopper_id", "traveler_id",
    "status", "payment_status", "match_score",
    "candidate_items", "assigned_items", "released_items",
    "receipt_url", "cancellation_reason", "cancelled_by", "rejection_reason", "dispute_reason",
    "pin_hash", "pin_salt", "pin_issued_at", "pin_expires_at", "pin_attempt_count", "pin_store_location",
    "claimed_at", "approved_at", "cooldown_expires_at", "purchase_deadline_at", "purchased_at", "boarded_at",
    "delivered_to_vendor_at", "completed_at", "cancelled_at", "rejected_at", "disputed_at", "paid_at",
    "created_at", "updated_at",
)

_ENUM_FIELDS = {"status", "payment_status"}


def _pin_columns(record: Optional[PinRecord]) -> Dict[str, Any]:
    if record is None:
        return {
            "pin_hash": None,
            "pin_salt": None,
            "pin_issued_at": None,
            "pin_expires_at": None,
            "pin_attempt_count": 0,
            "pin_store_location": None,
        }
    return {
        "pin_hash": record.pin_hash,
        "pin_salt": record.salt,
        "pin_issued_at": record.issued_at,
        "pin_expires_at": record.expires_at,
        "pin_attempt_count": record.attempt_count,
        "pin_store_location": record.store_location,
    }


def _to_columns(patch: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a model-level patch into column values"""
    columns: Dict[str, Any] = {}
    for field, value in patch.items():
        if field == "verification_pin":
            columns.update(_pin_columns(value))
        elif field in _ENUM_FIELDS:
            columns[field] = value.value if hasattr(value, "value") else value
        elif field not in _MATCH_COLUMNS:
            raise ValueError(f"Unknown match field in patch: {field}")
        else:
            columns[field] = value
    return columns


def _row_to_match(row) -> Match:
    data = dict(row)
    pin = None
    if data.get("pin_hash"):
        pin = PinRecord(
            pin_hash=data["pin_hash"],
            salt=data["pin_salt"],
            issued_at=data["pin_issued_at"],
            expires_at=data["pin_expires_at"],
            attempt_count=data["pin_attempt_count"] or 0,
            store_location=data.get("pin_store_location"),
        )
    for column in ("pin_hash", "pin_salt", "pin_issued_at", "pin_expires_at", "pin_attempt_count", "pin_store_location"):
        data.pop(column, None)

    data["status"] = MatchStatus(data["status"])
    data["payment_status"] = PaymentStatus(data["payment_status"])
    for column in ("candidate_items", "assigned_items", "released_items"):
        data[column] = list(data.get(column) or [])
    data["verification_pin"] = pin
    return Match(**data)


class MatchRepository:
    """Match persistence - PostgreSQL (asyncpg)"""

    def __init__(self, db: PostgresClientWrapper, schema: str = "match"):
        self.db = db
        self.schema = schema
        self.matches_table = f"{schema}.matches"

    async def initialize(self) -> None:
        await self.db.connect()
        logger.info("Match repository initialized with PostgreSQL")

    async def apply_migrations(self) -> None:
        for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
            await self.db.execute(path.read_text())
            logger.info(f"Applied migration {path.name}")

    async def close(self) -> None:
        await self.db.close()
        logger.info("Match repository database connection closed")

    async def health_check(self) -> bool:
        return await self.db.health_check()

    # ====================
    # Reads
    # ====================

    async def get_match(self, match_id: str) -> Optional[Match]:
        row = await self.db.query_row(
            f"SELECT * FROM {self.matches_table} WHERE match_id = $1",
            match_id,
        )
        return _row_to_match(row) if row else None

    async def find_matches(self, match_filter: MatchFilter) -> List[Match]:
        clauses: List[str] = []
        args: List[Any] = []

        def bind(value: Any) -> str:
            args.append(value)
            return f"${len(args)}"

        if match_filter.shopper_request_id is not None:
            clauses.append(f"shopper_request_id = {bind(match_filter.shopper_request_id)}")
        if match_filter.trip_id is not None:
            clauses.append(f"trip_id = {bind(match_filter.trip_id)}")
        if match_filter.shopper_id is not None:
            clauses.append(f"shopper_id = {bind(match_filter.shopper_id)}")
        if match_filter.traveler_id is not None:
            clauses.append(f"traveler_id = {bind(match_filter.traveler_id)}")
        if match_filter.statuses is not None:
            clauses.append(f"status = ANY({bind([s.value for s in match_filter.statuses])}::text[])")

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self.db.query(
            f"SELECT * FROM {self.matches_table} {where} ORDER BY created_at",
            *args,
        )
        return [_row_to_match(row) for row in rows]

    # ====================
    # Writes
    # ====================

    async def create_match(self, match: Match) -> Match:
        values = match.model_dump(exclude={"verification_pin"})
        values.update(_to_columns({"verification_pin": match.verification_pin}))
        values["status"] = match.status.value
        values["payment_status"] = match.payment_status.value

        columns = list(_MATCH_COLUMNS)
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        row = await self.db.query_row(
            f"INSERT INTO {self.matches_table} ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *",
            *[values[c] for c in columns],
        )
        return _row_to_match(row)

    async def atomic_update(
        self,
        match_id: str,
        predicate: MatchPredicate,
        patch: Dict[str, Any],
    ) -> Optional[Match]:
        """Conditional update; None means the predicate no longer holds"""
        columns = _to_columns(patch)
        sql, args = self._build_conditional_update(match_id, predicate, columns)

        async with self.db.transaction() as conn:
            if predicate.exclusive_items:
                request_id = await conn.fetchval(
                    f"SELECT shopper_request_id FROM {self.matches_table} WHERE match_id = $1",
                    match_id,
                )
                if request_id is None:
                    return None
                await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", request_id)

            row = await conn.fetchrow(sql, *args)

        if row is None:
            logger.debug(f"Conditional update on match {match_id} matched no row")
            return None
        return _row_to_match(row)

    def _build_conditional_update(
        self,
        match_id: str,
        predicate: MatchPredicate,
        columns: Dict[str, Any],
    ) -> Tuple[str, List[Any]]:
        args: List[Any] = []

        def bind(value: Any) -> str:
            args.append(value)
            return f"${len(args)}"

        assignments = ", ".join(f"{column} = {bind(value)}" for column, value in columns.items())
        conditions = [
            f"m.match_id = {bind(match_id)}",
            f"m.status = {bind(predicate.expected_status.value)}",
        ]

        if predicate.expected_payment_status is not None:
            conditions.append(f"m.payment_status = {bind(predicate.expected_payment_status.value)}")
        if predicate.expected_pin_hash is not None:
            conditions.append(f"m.pin_hash = {bind(predicate.expected_pin_hash)}")
        if predicate.expected_pin_attempts is not None:
            conditions.append(f"m.pin_attempt_count = {bind(predicate.expected_pin_attempts)}")
        if predicate.exclusive_items:
            released = bind([s.value for s in RELEASED_STATUSES])
            items = bind(list(predicate.exclusive_items))
            conditions.append(
                f"""NOT EXISTS (
                    SELECT 1 FROM {self.matches_table} o
                    WHERE o.shopper_request_id = m.shopper_request_id
                      AND o.match_id <> m.match_id
                      AND NOT (o.status = ANY({released}::text[]))
                      AND o.assigned_items && {items}::text[]
                )"""
            )

        sql = (
            f"UPDATE {self.matches_table} AS m SET {assignments} "
            f"WHERE {' AND '.join(conditions)} RETURNING m.*"
        )
        return sql, args


class ShopperRequestRepository:
    """Shopper request reads - PostgreSQL (asyncpg)"""

    def __init__(self, db: PostgresClientWrapper, schema: str = "match"):
        self.db = db
        self.schema = schema

    async def get_shopper_request(self, request_id: str) -> Optional[ShopperRequest]:
        row = await self.db.query_row(
            f"SELECT * FROM {self.schema}.shopper_requests WHERE request_id = $1",
            request_id,
        )
        if not row:
            return None

        item_rows = await self.db.query(
            f"SELECT * FROM {self.schema}.bag_items WHERE request_id = $1 ORDER BY item_id",
            request_id,
        )
        return ShopperRequest(
            request_id=row["request_id"],
            shopper_id=row["shopper_id"],
            destination_country=row["destination_country"],
            destination_city=row["destination_city"],
            status=ShopperRequestStatus(row["status"]),
            bag_items=[
                BagItem(**{**dict(item), "photos": list(item["photos"] or [])})
                for item in item_rows
            ],
        )


class TripRepository:
    """Trip reads - PostgreSQL (asyncpg)"""

    def __init__(self, db: PostgresClientWrapper, schema: str = "match"):
        self.db = db
        self.schema = schema

    async def get_trip(self, trip_id: str) -> Optional[Trip]:
        row = await self.db.query_row(
            f"SELECT * FROM {self.schema}.trips WHERE trip_id = $1",
            trip_id,
        )
        return Trip(**dict(row)) if row else None
