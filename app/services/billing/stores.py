"""Persistence backends for profiles and subscription snapshots."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from threading import Lock
from typing import Any, Protocol, TypeVar

import httpx
import sqlalchemy as sa
from pydantic import BaseModel, ValidationError
from sqlalchemy import event
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from app.config import Settings, settings
from app.models.billing import Profile, SubscriptionRecord, utcnow
from app.models.profile import ProfileRow
from app.models.subscription import SubscriptionRow
from app.observability.metrics import metrics
from app.services.billing.errors import ConfigurationError, PersistenceError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class BillingStore(Protocol):
    """Persistence contract for the ``profiles`` and ``stripe_subscriptions`` tables."""

    def get_profile(self, profile_id: str) -> Profile | None:
        ...

    def find_profile_by_email(self, email: str) -> Profile | None:
        ...

    def create_profile(self, profile_id: str, email: str) -> Profile:
        ...

    def get_subscription(self, profile_id: str) -> SubscriptionRecord | None:
        ...

    def upsert_subscription(self, record: SubscriptionRecord) -> None:
        ...

    def set_premium(self, profile_id: str, is_premium: bool) -> None:
        ...

    def ping(self) -> bool:
        ...


class InMemoryBillingStore(BillingStore):
    """Thread-safe store used for local development and tests."""

    def __init__(self) -> None:
        self._profiles: dict[str, Profile] = {}
        self._subscriptions: dict[str, SubscriptionRecord] = {}
        self._lock = Lock()

    def get_profile(self, profile_id: str) -> Profile | None:
        with self._lock:
            return self._profiles.get(profile_id)

    def find_profile_by_email(self, email: str) -> Profile | None:
        with self._lock:
            for profile in self._profiles.values():
                if profile.email == email:
                    return profile
        return None

    def create_profile(self, profile_id: str, email: str) -> Profile:
        with self._lock:
            existing = self._profiles.get(profile_id)
            if existing:
                return existing
            if any(profile.email == email for profile in self._profiles.values()):
                raise PersistenceError(f"Email already registered to another profile: {email}")
            profile = Profile(id=profile_id, email=email, updated_at=utcnow())
            self._profiles[profile_id] = profile
        logger.info("billing.store.profile_created", extra={"profile_id": profile_id, "backend": "memory"})
        return profile

    def get_subscription(self, profile_id: str) -> SubscriptionRecord | None:
        with self._lock:
            return self._subscriptions.get(profile_id)

    def upsert_subscription(self, record: SubscriptionRecord) -> None:
        with self._lock:
            if record.user_id not in self._profiles:
                raise PersistenceError(
                    f"Profile {record.user_id} does not exist; refusing orphan subscription row"
                )
            self._subscriptions[record.user_id] = record
        metrics.increment("billing.store.subscription_upserted", tags={"backend": "memory"})

    def set_premium(self, profile_id: str, is_premium: bool) -> None:
        with self._lock:
            profile = self._profiles.get(profile_id)
            if profile is None:
                raise PersistenceError(f"Profile {profile_id} does not exist")
            self._profiles[profile_id] = profile.model_copy(
                update={"is_premium": is_premium, "updated_at": utcnow()}
            )

    def ping(self) -> bool:
        return True

    def subscription_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)


class SQLBillingStore(BillingStore):
    """SQLModel-backed store writing directly to Postgres (or SQLite locally)."""

    def __init__(
        self,
        database_url: str,
        *,
        pool_min_size: int | None = None,
        pool_max_size: int | None = None,
        auto_create_schema: bool = False,
    ) -> None:
        if not database_url:
            raise ValueError("DATABASE_URL is required for SQLBillingStore.")

        parsed_url = make_url(database_url)
        sync_url, connect_args, drivername = _coerce_sync_database_url(parsed_url)
        pool_min = max(pool_min_size or settings.db_pool_min_size, 1)
        pool_max = max(pool_max_size or settings.db_pool_max_size, pool_min)
        is_sqlite = drivername.startswith("sqlite")
        engine_kwargs: dict[str, Any] = {
            "echo": settings.debug and not is_sqlite,
            "connect_args": connect_args,
            "pool_pre_ping": not is_sqlite,
        }
        if is_sqlite and parsed_url.database in (None, "", ":memory:"):
            engine_kwargs["poolclass"] = StaticPool
        elif not is_sqlite:
            engine_kwargs["pool_size"] = pool_min
            engine_kwargs["max_overflow"] = max(pool_max - pool_min, 0)

        self._engine: Engine = create_engine(sync_url, **engine_kwargs)
        if is_sqlite:
            event.listen(self._engine, "connect", _enable_sqlite_foreign_keys)
        if auto_create_schema:
            SQLModel.metadata.create_all(self._engine)
        self._backend = "sqlite" if is_sqlite else "postgres"

    @property
    def engine(self) -> Engine:
        return self._engine

    def dispose(self) -> None:
        """Close the underlying SQLAlchemy engine."""
        self._engine.dispose()

    def get_profile(self, profile_id: str) -> Profile | None:
        with self._guard("get_profile", profile_id=profile_id), self._session() as session:
            row = session.get(ProfileRow, profile_id)
            return row.to_profile() if row else None

    def find_profile_by_email(self, email: str) -> Profile | None:
        with self._guard("find_profile_by_email"), self._session() as session:
            row = session.exec(select(ProfileRow).where(ProfileRow.email == email)).first()
            return row.to_profile() if row else None

    def create_profile(self, profile_id: str, email: str) -> Profile:
        try:
            with self._session() as session:
                row = ProfileRow(id=profile_id, email=email, is_premium=False, updated_at=utcnow())
                session.add(row)
                session.commit()
                session.refresh(row)
                logger.info(
                    "billing.store.profile_created",
                    extra={"profile_id": profile_id, "backend": self._backend},
                )
                return row.to_profile()
        except IntegrityError as exc:
            existing = self.get_profile(profile_id)
            if existing:
                return existing
            logger.warning(
                "billing.store.profile_conflict",
                extra={"profile_id": profile_id, "backend": self._backend},
            )
            raise PersistenceError("Failed to create user profile") from exc
        except SQLAlchemyError as exc:
            logger.exception(
                "billing.store.error",
                extra={"operation": "create_profile", "profile_id": profile_id},
            )
            raise PersistenceError("Failed to create user profile") from exc

    def get_subscription(self, profile_id: str) -> SubscriptionRecord | None:
        with self._guard("get_subscription", profile_id=profile_id), self._session() as session:
            row = session.get(SubscriptionRow, profile_id)
            return row.to_record() if row else None

    def upsert_subscription(self, record: SubscriptionRecord) -> None:
        """Insert or overwrite the row for ``record.user_id`` in a single statement."""
        values = SubscriptionRow.column_values(record)
        table = SubscriptionRow.__table__
        with self._guard("upsert_subscription", profile_id=record.user_id), self._session() as session:
            insert = _dialect_insert(self._engine.dialect.name)
            if insert is None:
                session.merge(_row_from_values(values))
            else:
                statement = insert(table).values(**values)
                statement = statement.on_conflict_do_update(
                    index_elements=[table.c.user_id],
                    set_={key: statement.excluded[key] for key in values if key != "user_id"},
                )
                session.execute(statement)
            session.commit()
        metrics.increment("billing.store.subscription_upserted", tags={"backend": self._backend})

    def set_premium(self, profile_id: str, is_premium: bool) -> None:
        with self._guard("set_premium", profile_id=profile_id), self._session() as session:
            session.execute(
                sa.update(ProfileRow)
                .where(ProfileRow.id == profile_id)
                .values(is_premium=is_premium, updated_at=utcnow())
            )
            session.commit()

    def ping(self) -> bool:
        try:
            with self._engine.connect() as connection:
                connection.execute(sa.text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.exception("billing.store.ping_failed", extra={"backend": self._backend})
            return False

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with Session(self._engine) as session:
            yield session

    @contextmanager
    def _guard(self, operation: str, *, profile_id: str | None = None) -> Iterator[None]:
        try:
            yield
        except (SQLAlchemyError, ValidationError) as exc:
            logger.exception(
                "billing.store.error",
                extra={"operation": operation, "profile_id": profile_id, "backend": self._backend},
            )
            raise PersistenceError(f"Store operation {operation} failed") from exc


class SupabaseBillingStore(BillingStore):
    """Writes profiles and subscriptions through Supabase REST (PostgREST)."""

    def __init__(
        self,
        *,
        base_url: str,
        service_key: str,
        timeout: float = 10.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        if not base_url or not service_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required for SupabaseBillingStore.")
        self._base = base_url.rstrip("/")
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout)
        self._headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }

    def close(self) -> None:
        if self._owns_http_client:
            self._http.close()

    def _table_url(self, table: str) -> str:
        return f"{self._base}/rest/v1/{table}"

    def get_profile(self, profile_id: str) -> Profile | None:
        rows = self._select("profiles", {"id": f"eq.{profile_id}"})
        return _decode_row(Profile, rows[0], "profiles") if rows else None

    def find_profile_by_email(self, email: str) -> Profile | None:
        rows = self._select("profiles", {"email": f"eq.{email}"})
        return _decode_row(Profile, rows[0], "profiles") if rows else None

    def create_profile(self, profile_id: str, email: str) -> Profile:
        response = self._request(
            "POST",
            "profiles",
            json={"id": profile_id, "email": email},
            params={"on_conflict": "id"},
            prefer="resolution=ignore-duplicates,return=representation",
        )
        rows = _json_rows(response)
        if rows:
            return _decode_row(Profile, rows[0], "profiles")
        existing = self.get_profile(profile_id)
        if existing is None:
            raise PersistenceError("Failed to create user profile")
        return existing

    def get_subscription(self, profile_id: str) -> SubscriptionRecord | None:
        rows = self._select("stripe_subscriptions", {"user_id": f"eq.{profile_id}"})
        return _decode_row(SubscriptionRecord, rows[0], "stripe_subscriptions") if rows else None

    def upsert_subscription(self, record: SubscriptionRecord) -> None:
        self._request(
            "POST",
            "stripe_subscriptions",
            json=record.model_dump(mode="json"),
            params={"on_conflict": "user_id"},
            prefer="resolution=merge-duplicates,return=minimal",
        )
        metrics.increment("billing.store.subscription_upserted", tags={"backend": "supabase"})

    def set_premium(self, profile_id: str, is_premium: bool) -> None:
        self._request(
            "PATCH",
            "profiles",
            json={"is_premium": is_premium, "updated_at": utcnow().isoformat()},
            params={"id": f"eq.{profile_id}"},
            prefer="return=minimal",
        )

    def ping(self) -> bool:
        try:
            self._select("profiles", {"select": "id", "limit": "1"})
        except PersistenceError:
            return False
        return True

    def _select(self, table: str, filters: dict[str, str]) -> list[dict[str, Any]]:
        params = {"select": "*", "limit": "1", **filters}
        return _json_rows(self._request("GET", table, params=params))

    def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer
        try:
            response = self._http.request(
                method, self._table_url(table), params=params, json=json, headers=headers
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "billing.store.http_error",
                extra={"table": table, "method": method, "error": str(exc)},
            )
            raise PersistenceError(f"Supabase request to {table} failed: {exc}") from exc
        if response.status_code >= 400:
            logger.warning(
                "billing.store.rejected",
                extra={
                    "table": table,
                    "method": method,
                    "status": response.status_code,
                    "detail": response.text[:200],
                },
            )
            raise PersistenceError(f"Supabase {method} {table} failed: {response.status_code}")
        return response


def _json_rows(response: httpx.Response) -> list[dict[str, Any]]:
    if not response.content:
        return []
    try:
        payload = response.json()
    except ValueError as exc:
        raise PersistenceError("Failed to decode Supabase response JSON.") from exc
    if isinstance(payload, dict):
        return [payload]
    return [row for row in payload if isinstance(row, dict)] if isinstance(payload, list) else []


def _decode_row(model: type[ModelT], row: dict[str, Any], table: str) -> ModelT:
    try:
        return model.model_validate(row)
    except ValidationError as exc:
        logger.warning(
            "billing.store.invalid_row",
            extra={"table": table, "fields": [str(err.get("loc")) for err in exc.errors()]},
        )
        raise PersistenceError(f"Stored {table} row could not be decoded") from exc


def _enable_sqlite_foreign_keys(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _dialect_insert(dialect_name: str) -> Any:
    if dialect_name == "postgresql":
        return postgresql.insert
    if dialect_name == "sqlite":
        return sqlite.insert
    return None


def _row_from_values(values: dict[str, Any]) -> SubscriptionRow:
    fields = dict(values)
    fields["subscription_metadata"] = fields.pop("metadata", {})
    return SubscriptionRow(**fields)


def _coerce_sync_database_url(url: URL) -> tuple[str, dict[str, Any], str]:
    """Convert async connection strings into sync SQLAlchemy URLs."""
    drivername = url.drivername
    connect_args: dict[str, Any] = {}
    if drivername.endswith("+asyncpg"):
        drivername = drivername.replace("+asyncpg", "+psycopg2")
    elif drivername.endswith("+psycopg"):
        drivername = drivername.replace("+psycopg", "+psycopg2")
    elif drivername.endswith("+aiosqlite"):
        drivername = drivername.replace("+aiosqlite", "")
    sync_url = url.set(drivername=drivername)
    query = dict(sync_url.query) if sync_url.query else {}
    removed_ssl = query.pop("ssl", None) is not None
    sync_url = sync_url.set(query=query)

    host = (url.host or "").lower()
    if drivername.startswith("postgresql") and "sslmode" not in query:
        if removed_ssl or "supabase.co" in host:
            connect_args["sslmode"] = "require"
    if drivername.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
    return sync_url.render_as_string(hide_password=False), connect_args, drivername


def build_billing_store(config: Settings | None = None) -> BillingStore:
    """Instantiate the store: direct SQL when DATABASE_URL is set, Supabase REST otherwise."""
    resolved = config or settings
    if resolved.database_url:
        store = SQLBillingStore(
            resolved.database_url,
            pool_min_size=resolved.db_pool_min_size,
            pool_max_size=resolved.db_pool_max_size,
        )
        logger.info("billing.store.initialized", extra={"backend": "database"})
        return store
    if resolved.supabase_url and resolved.supabase_service_key:
        logger.info("billing.store.initialized", extra={"backend": "supabase"})
        return SupabaseBillingStore(
            base_url=resolved.supabase_url,
            service_key=resolved.supabase_service_key,
            timeout=resolved.supabase_timeout_seconds,
        )
    raise ConfigurationError("Missing required configuration: SUPABASE_URL, SUPABASE_SERVICE_KEY")
