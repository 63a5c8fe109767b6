"""SQLite storage implementation for the rental listing synchronization service."""

import json
import uuid
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, Optional

import aiosqlite

from rental_sync.models.domain import (
    Apartment,
    ApartmentStatus,
    AppCredential,
    ConfirmedRef,
    ExternalRef,
    PendingRef,
    Platform,
    SyncFailure,
    UserToken,
)
from rental_sync.storage.base import StorageInterface

APARTMENT_COLUMNS = (
    "id",
    "title",
    "address",
    "street",
    "street_number",
    "postal_code",
    "city",
    "price",
    "area",
    "description",
    "photos",
    "status",
    "contract_end_date",
    "available_from",
    "number_of_rooms",
    "heating",
    "floor",
    "finishing_status",
    "rent_charges",
    "deposit",
    "has_elevator",
    "city_id",
    "street_name",
    "lat",
    "lon",
)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


class SQLiteStorage(StorageInterface):
    """SQLite implementation of StorageInterface."""

    def __init__(self, database_path: str = "data/rental_sync.db"):
        """Initialize SQLite storage.

        Args:
            database_path: Path to the SQLite database file.
        """
        self.database_path = database_path
        self._initialized = False

    async def _ensure_initialized(self) -> None:
        """Ensure database schema is initialized."""
        if self._initialized:
            return

        # Ensure data directory exists
        db_path = Path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

        async with aiosqlite.connect(self.database_path) as db:
            await db.execute("PRAGMA foreign_keys = ON")
            await db.executescript(self._get_schema())
            await db.commit()

        self._initialized = True

    def _get_schema(self) -> str:
        """Return the database schema SQL."""
        return """
        CREATE TABLE IF NOT EXISTS apartments (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            address TEXT DEFAULT '',
            street TEXT DEFAULT '',
            street_number TEXT DEFAULT '',
            postal_code TEXT DEFAULT '',
            city TEXT DEFAULT '',
            price REAL NOT NULL DEFAULT 0,
            area REAL NOT NULL DEFAULT 0,
            description TEXT DEFAULT '',
            photos TEXT DEFAULT '[]',
            status TEXT NOT NULL DEFAULT 'AVAILABLE',
            contract_end_date TEXT,
            available_from TEXT,
            number_of_rooms INTEGER,
            heating TEXT,
            floor TEXT,
            finishing_status TEXT,
            rent_charges REAL,
            deposit REAL,
            has_elevator BOOLEAN DEFAULT FALSE,
            city_id INTEGER,
            street_name TEXT DEFAULT '',
            lat REAL,
            lon REAL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_apartments_status
        ON apartments(status);

        -- One reference per (apartment, platform); state tags pending vs confirmed
        CREATE TABLE IF NOT EXISTS external_refs (
            apartment_id TEXT NOT NULL,
            platform TEXT NOT NULL,
            state TEXT NOT NULL CHECK (state IN ('pending', 'confirmed')),
            ref TEXT NOT NULL,
            url TEXT,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (apartment_id, platform),
            FOREIGN KEY (apartment_id) REFERENCES apartments(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_external_refs_lookup
        ON external_refs(platform, ref, state);

        CREATE TABLE IF NOT EXISTS app_credentials (
            platform TEXT PRIMARY KEY,
            client_id TEXT,
            client_secret TEXT,
            api_key TEXT,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS user_tokens (
            platform TEXT NOT NULL,
            principal_id TEXT NOT NULL,
            access_token TEXT,
            refresh_token TEXT,
            expires_at TEXT,
            is_active BOOLEAN DEFAULT FALSE,
            last_sync_at TEXT,
            last_error TEXT,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (platform, principal_id)
        );

        CREATE TABLE IF NOT EXISTS sync_failures (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            platform TEXT NOT NULL,
            transaction_id TEXT,
            object_id TEXT,
            event_type TEXT,
            error TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_sync_failures_created_at
        ON sync_failures(created_at DESC);
        """

    # Apartment methods

    def _apartment_values(self, apartment: Apartment) -> tuple:
        """Flatten an apartment into column values (APARTMENT_COLUMNS order)."""
        return (
            apartment.id,
            apartment.title,
            apartment.address,
            apartment.street,
            apartment.street_number,
            apartment.postal_code,
            apartment.city,
            apartment.price,
            apartment.area,
            apartment.description,
            json.dumps(apartment.photos),
            apartment.status.value,
            apartment.contract_end_date.isoformat() if apartment.contract_end_date else None,
            apartment.available_from.isoformat() if apartment.available_from else None,
            apartment.number_of_rooms,
            apartment.heating,
            apartment.floor,
            apartment.finishing_status,
            apartment.rent_charges,
            apartment.deposit,
            apartment.has_elevator,
            apartment.city_id,
            apartment.street_name,
            apartment.lat,
            apartment.lon,
        )

    async def create_apartment(self, apartment: Apartment) -> Apartment:
        """Create a new apartment record."""
        await self._ensure_initialized()

        if apartment.id is None:
            apartment = apartment.model_copy(update={"id": uuid.uuid4().hex})

        placeholders = ", ".join("?" for _ in APARTMENT_COLUMNS)
        async with aiosqlite.connect(self.database_path) as db:
            await db.execute(
                f"INSERT INTO apartments ({', '.join(APARTMENT_COLUMNS)}) "
                f"VALUES ({placeholders})",
                self._apartment_values(apartment),
            )
            await db.commit()

        for platform, ref in apartment.external_ids.items():
            await self.set_external_ref(apartment.id, platform, ref)

        return await self.get_apartment(apartment.id)  # type: ignore

    async def get_apartment(self, apartment_id: str) -> Optional[Apartment]:
        """Get an apartment by ID."""
        await self._ensure_initialized()

        async with aiosqlite.connect(self.database_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM apartments WHERE id = ?",
                (apartment_id,),
            )
            row = await cursor.fetchone()
            if row is None:
                return None

            refs = await self._load_refs(db, [apartment_id])
            return self._row_to_apartment(row, refs.get(apartment_id, {}))

    async def update_apartment(self, apartment: Apartment) -> Apartment:
        """Update an existing apartment's own fields."""
        await self._ensure_initialized()

        if apartment.id is None:
            raise ValueError("Apartment ID is required for update")

        assignments = ", ".join(f"{column} = ?" for column in APARTMENT_COLUMNS[1:])
        values = self._apartment_values(apartment)
        async with aiosqlite.connect(self.database_path) as db:
            await db.execute(
                f"UPDATE apartments SET {assignments}, updated_at = CURRENT_TIMESTAMP "
                "WHERE id = ?",
                (*values[1:], apartment.id),
            )
            await db.commit()

        return await self.get_apartment(apartment.id)  # type: ignore

    async def list_apartments(
        self, status: Optional[ApartmentStatus] = None
    ) -> list[Apartment]:
        """List apartments in insertion order."""
        await self._ensure_initialized()

        query = "SELECT * FROM apartments WHERE 1=1"
        params: list = []

        if status is not None:
            query += " AND status = ?"
            params.append(status.value)

        query += " ORDER BY rowid ASC"

        async with aiosqlite.connect(self.database_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
            refs = await self._load_refs(db, [row["id"] for row in rows])

            return [self._row_to_apartment(row, refs.get(row["id"], {})) for row in rows]

    async def _load_refs(
        self, db: aiosqlite.Connection, apartment_ids: Iterable[str]
    ) -> dict[str, dict[Platform, ExternalRef]]:
        """Load external references grouped by apartment."""
        ids = list(apartment_ids)
        if not ids:
            return {}

        placeholders = ", ".join("?" for _ in ids)
        cursor = await db.execute(
            "SELECT apartment_id, platform, state, ref, url FROM external_refs "
            f"WHERE apartment_id IN ({placeholders})",
            ids,
        )
        rows = await cursor.fetchall()

        refs: dict[str, dict[Platform, ExternalRef]] = {}
        for apartment_id, platform, state, ref, url in rows:
            if state == "pending":
                value: ExternalRef = PendingRef(transaction_id=ref, url=url)
            else:
                value = ConfirmedRef(listing_id=ref, url=url)
            refs.setdefault(apartment_id, {})[Platform(platform)] = value
        return refs

    def _row_to_apartment(
        self, row: aiosqlite.Row, refs: dict[Platform, ExternalRef]
    ) -> Apartment:
        """Convert a database row to an Apartment model."""
        return Apartment(
            id=row["id"],
            title=row["title"],
            address=row["address"] or "",
            street=row["street"] or "",
            street_number=row["street_number"] or "",
            postal_code=row["postal_code"] or "",
            city=row["city"] or "",
            price=row["price"],
            area=row["area"],
            description=row["description"] or "",
            photos=json.loads(row["photos"]) if row["photos"] else [],
            status=ApartmentStatus(row["status"]),
            contract_end_date=_parse_date(row["contract_end_date"]),
            available_from=_parse_date(row["available_from"]),
            number_of_rooms=row["number_of_rooms"],
            heating=row["heating"],
            floor=row["floor"],
            finishing_status=row["finishing_status"],
            rent_charges=row["rent_charges"],
            deposit=row["deposit"],
            has_elevator=bool(row["has_elevator"]),
            city_id=row["city_id"],
            street_name=row["street_name"] or "",
            lat=row["lat"],
            lon=row["lon"],
            external_ids=refs,
            created_at=_parse_datetime(row["created_at"]),
            updated_at=_parse_datetime(row["updated_at"]),
        )

    # External reference methods

    async def set_external_ref(
        self,
        apartment_id: str,
        platform: Platform,
        ref: Optional[ExternalRef],
    ) -> None:
        """Store or clear the external listing reference of an apartment."""
        await self._ensure_initialized()

        async with aiosqlite.connect(self.database_path) as db:
            if ref is None:
                await db.execute(
                    "DELETE FROM external_refs WHERE apartment_id = ? AND platform = ?",
                    (apartment_id, platform.value),
                )
            else:
                await db.execute(
                    """
                    INSERT OR REPLACE INTO external_refs
                    (apartment_id, platform, state, ref, url, updated_at)
                    VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                    """,
                    (apartment_id, platform.value, ref.state, ref.value, ref.url),
                )
            await db.commit()

    async def find_apartments_by_pending_ref(
        self, platform: Platform, transaction_id: str
    ) -> list[Apartment]:
        """Find apartments whose reference is pending on the given transaction id."""
        await self._ensure_initialized()

        async with aiosqlite.connect(self.database_path) as db:
            cursor = await db.execute(
                """
                SELECT apartment_id FROM external_refs
                WHERE platform = ? AND ref = ? AND state = 'pending'
                """,
                (platform.value, transaction_id),
            )
            rows = await cursor.fetchall()

        apartments = []
        for (apartment_id,) in rows:
            apartment = await self.get_apartment(apartment_id)
            if apartment is not None:
                apartments.append(apartment)
        return apartments

    async def confirm_pending_ref(
        self,
        platform: Platform,
        transaction_id: str,
        listing_id: str,
        url: Optional[str] = None,
    ) -> Optional[str]:
        """Promote a pending reference to a confirmed listing id."""
        await self._ensure_initialized()

        async with aiosqlite.connect(self.database_path) as db:
            cursor = await db.execute(
                """
                SELECT apartment_id, url FROM external_refs
                WHERE platform = ? AND ref = ? AND state = 'pending'
                """,
                (platform.value, transaction_id),
            )
            rows = await cursor.fetchall()
            if len(rows) != 1:
                return None

            apartment_id, pending_url = rows[0]
            cursor = await db.execute(
                """
                UPDATE external_refs SET
                    state = 'confirmed',
                    ref = ?,
                    url = ?,
                    updated_at = CURRENT_TIMESTAMP
                WHERE apartment_id = ? AND platform = ? AND ref = ? AND state = 'pending'
                """,
                (listing_id, url or pending_url, apartment_id, platform.value, transaction_id),
            )
            await db.commit()

            return apartment_id if cursor.rowcount == 1 else None

    # Credential methods

    async def get_app_credential(self, platform: Platform) -> Optional[AppCredential]:
        """Get the application-level credential of a platform."""
        await self._ensure_initialized()

        async with aiosqlite.connect(self.database_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                """
                SELECT platform, client_id, client_secret, api_key, updated_at
                FROM app_credentials
                WHERE platform = ?
                """,
                (platform.value,),
            )
            row = await cursor.fetchone()

            if row is None:
                return None

            return self._row_to_app_credential(row)

    async def save_app_credential(self, credential: AppCredential) -> AppCredential:
        """Create or replace the application-level credential of a platform."""
        await self._ensure_initialized()

        async with aiosqlite.connect(self.database_path) as db:
            await db.execute(
                """
                INSERT OR REPLACE INTO app_credentials
                (platform, client_id, client_secret, api_key, updated_at)
                VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
                """,
                (
                    credential.platform.value,
                    credential.client_id,
                    credential.client_secret,
                    credential.api_key,
                ),
            )
            await db.commit()

        return await self.get_app_credential(credential.platform)  # type: ignore

    async def list_app_credentials(self) -> list[AppCredential]:
        """List application-level credentials of all platforms."""
        await self._ensure_initialized()

        async with aiosqlite.connect(self.database_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                """
                SELECT platform, client_id, client_secret, api_key, updated_at
                FROM app_credentials
                ORDER BY platform
                """
            )
            rows = await cursor.fetchall()

            return [self._row_to_app_credential(row) for row in rows]

    def _row_to_app_credential(self, row: aiosqlite.Row) -> AppCredential:
        return AppCredential(
            platform=Platform(row["platform"]),
            client_id=row["client_id"],
            client_secret=row["client_secret"],
            api_key=row["api_key"],
            updated_at=_parse_datetime(row["updated_at"]),
        )

    async def get_user_token(
        self, platform: Platform, principal_id: str
    ) -> Optional[UserToken]:
        """Get the tokens of a principal for a platform."""
        await self._ensure_initialized()

        async with aiosqlite.connect(self.database_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                """
                SELECT platform, principal_id, access_token, refresh_token, expires_at,
                       is_active, last_sync_at, last_error, updated_at
                FROM user_tokens
                WHERE platform = ? AND principal_id = ?
                """,
                (platform.value, principal_id),
            )
            row = await cursor.fetchone()

            if row is None:
                return None

            return self._row_to_user_token(row)

    async def save_user_token(self, token: UserToken) -> UserToken:
        """Create or replace the tokens of a principal."""
        await self._ensure_initialized()

        async with aiosqlite.connect(self.database_path) as db:
            await db.execute(
                """
                INSERT OR REPLACE INTO user_tokens
                (platform, principal_id, access_token, refresh_token, expires_at,
                 is_active, last_sync_at, last_error, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                """,
                (
                    token.platform.value,
                    token.principal_id,
                    token.access_token,
                    token.refresh_token,
                    token.expires_at.isoformat() if token.expires_at else None,
                    token.is_active,
                    token.last_sync_at.isoformat() if token.last_sync_at else None,
                    token.last_error,
                ),
            )
            await db.commit()

        return await self.get_user_token(token.platform, token.principal_id)  # type: ignore

    async def mark_token_error(
        self, platform: Platform, principal_id: str, error: str
    ) -> None:
        """Record the last error of a principal's tokens without touching them."""
        await self._ensure_initialized()

        async with aiosqlite.connect(self.database_path) as db:
            await db.execute(
                """
                UPDATE user_tokens SET last_error = ?, updated_at = CURRENT_TIMESTAMP
                WHERE platform = ? AND principal_id = ?
                """,
                (error, platform.value, principal_id),
            )
            await db.commit()

    async def list_user_tokens(self, principal_id: str) -> list[UserToken]:
        """List the tokens of a principal across platforms."""
        await self._ensure_initialized()

        async with aiosqlite.connect(self.database_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                """
                SELECT platform, principal_id, access_token, refresh_token, expires_at,
                       is_active, last_sync_at, last_error, updated_at
                FROM user_tokens
                WHERE principal_id = ?
                ORDER BY platform
                """,
                (principal_id,),
            )
            rows = await cursor.fetchall()

            return [self._row_to_user_token(row) for row in rows]

    def _row_to_user_token(self, row: aiosqlite.Row) -> UserToken:
        return UserToken(
            platform=Platform(row["platform"]),
            principal_id=row["principal_id"],
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            expires_at=_parse_datetime(row["expires_at"]),
            is_active=bool(row["is_active"]),
            last_sync_at=_parse_datetime(row["last_sync_at"]),
            last_error=row["last_error"],
            updated_at=_parse_datetime(row["updated_at"]),
        )

    # Failure log methods

    async def record_sync_failure(self, failure: SyncFailure) -> SyncFailure:
        """Append an entry to the synchronization failure log."""
        await self._ensure_initialized()

        async with aiosqlite.connect(self.database_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO sync_failures
                (platform, transaction_id, object_id, event_type, error)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    failure.platform.value,
                    failure.transaction_id,
                    failure.object_id,
                    failure.event_type,
                    failure.error,
                ),
            )
            await db.commit()

            return failure.model_copy(update={"id": cursor.lastrowid})

    async def list_sync_failures(self, limit: int = 50) -> list[SyncFailure]:
        """List failure log entries, most recent first."""
        await self._ensure_initialized()

        async with aiosqlite.connect(self.database_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                """
                SELECT id, platform, transaction_id, object_id, event_type, error, created_at
                FROM sync_failures
                ORDER BY id DESC
                LIMIT ?
                """,
                (limit,),
            )
            rows = await cursor.fetchall()

            return [
                SyncFailure(
                    id=row["id"],
                    platform=Platform(row["platform"]),
                    transaction_id=row["transaction_id"],
                    object_id=row["object_id"],
                    event_type=row["event_type"],
                    error=row["error"],
                    created_at=_parse_datetime(row["created_at"]),
                )
                for row in rows
            ]
