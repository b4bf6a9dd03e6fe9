# repair_planner/tools/store_connect.py
"""
Document store gateway over SQLAlchemy's asyncio extension.

Each logical collection is a table of JSON documents keyed by id, with the
partition key value and a version token (etag) kept beside the body. Every write
issues a fresh etag; the part quantity deduction is a compare-and-swap on it.
"""
from __future__ import annotations

import functools
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

from dotenv import load_dotenv
from pydantic import BaseModel
from sqlalchemy import JSON, Column, DateTime, Index, MetaData, String, Table, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from repair_planner.definitions import CONFIG_DIR
from repair_planner.errors import DocumentStoreError
from repair_planner.utils.contracts import Part, Technician, WorkOrder, utc_now
from repair_planner.utils.logger import get_logger
from repair_planner.utils.utilities import config_param, get_profile, store_url

load_dotenv()

M = TypeVar("M", bound=BaseModel)

DEFAULT_CONTAINERS: Dict[str, Dict[str, str]] = {
    "technicians": {"name": "technicians", "partition_key": "department"},
    "parts": {"name": "parts", "partition_key": "category"},
    "work_orders": {"name": "work_orders", "partition_key": "status"},
}

# dialects with a native INSERT ... ON CONFLICT DO UPDATE
_UPSERT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def _new_etag() -> str:
    return uuid.uuid4().hex


def _store_call(fn):
    """Surface driver/network failures as DocumentStoreError."""
    @functools.wraps(fn)
    async def wrapper(self: "DocumentStore", *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except SQLAlchemyError as e:
            self.log.error("%s failed: %s", fn.__name__, e)
            raise DocumentStoreError(f"{fn.__name__} failed: {e}") from e
    return wrapper


class DocumentStore:

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        page_size: int = 100,
        containers: Optional[Dict[str, Dict[str, str]]] = None,
    ):
        """
        Args:
            engine: async engine created with an async driver (sqlite+aiosqlite, postgresql+asyncpg, ...)
            page_size: rows fetched per round trip when draining a full scan
            containers: logical collection -> {"name": table name, "partition_key": document field}
        """
        self.log = get_logger(self.__class__.__name__)
        self.engine = engine
        self.page_size = max(1, int(page_size))

        self._metadata = MetaData()
        self._tables: Dict[str, Table] = {}
        self._partition_keys: Dict[str, str] = {}
        for key, default in DEFAULT_CONTAINERS.items():
            conf = {**default, **((containers or {}).get(key) or {})}
            name = conf["name"]
            self._tables[key] = Table(
                name,
                self._metadata,
                Column("id", String(255), primary_key=True),
                Column("partition_key", String(255), nullable=False, default=""),
                Column("body", JSON, nullable=False),
                Column("etag", String(64), nullable=False),
                Column("updated_at", DateTime(timezone=True), nullable=False),
                Index(f"idx_{name}_partition", "partition_key"),
            )
            self._partition_keys[key] = conf["partition_key"]

        self.SessionLocal = async_sessionmaker(self.engine, expire_on_commit=False)
        self._containers_ready = False

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def from_url(cls, url: str, *, engine_kwargs: Optional[Dict[str, Any]] = None, **kwargs: Any) -> DocumentStore:
        engine_kwargs = dict(engine_kwargs or {})
        if ":memory:" in url:
            # one shared connection, otherwise every checkout sees a fresh empty database
            engine_kwargs.setdefault("poolclass", StaticPool)
        else:
            engine_kwargs.setdefault("pool_pre_ping", True)
        return cls(create_async_engine(url, **engine_kwargs), **kwargs)

    @classmethod
    def from_profile(cls, db_profile: Optional[str] = None,
                     config_file: str = f"{CONFIG_DIR}/store_config.yaml") -> DocumentStore:
        config = config_param(config_file=config_file, field="store") or {}
        profile_name, profile = get_profile(config, name=db_profile)
        store = cls.from_url(
            store_url(profile),
            engine_kwargs={"echo": bool(profile.get("echo", False))},
            page_size=int(profile.get("page_size", 100)),
            containers=config.get("containers"),
        )
        store.log.info("Document store profile: %r", profile_name)
        return store

    async def __aenter__(self) -> DocumentStore:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self.engine.dispose()
        self._containers_ready = False

    @_store_call
    async def ensure_containers(self) -> None:
        """Create the collections if they do not exist. Only the first successful call touches the database."""
        if self._containers_ready:
            return
        async with self.engine.begin() as conn:
            await conn.run_sync(self._metadata.create_all)
        self._containers_ready = True

    # ------------------------------------------------------------------
    # Generic document access
    # ------------------------------------------------------------------
    async def _read_all(self, container: str, model: Type[M]) -> List[M]:
        table = self._tables[container]
        results: List[M] = []
        last_id: Optional[str] = None
        async with self.SessionLocal() as sess:
            while True:
                stmt = select(table.c.id, table.c.body).order_by(table.c.id).limit(self.page_size)
                if last_id is not None:
                    stmt = stmt.where(table.c.id > last_id)
                rows = (await sess.execute(stmt)).all()
                results.extend(model.model_validate(body) for _, body in rows)
                if len(rows) < self.page_size:
                    break
                last_id = rows[-1][0]
        return results

    async def _read_by_id(self, container: str, doc_id: str) -> Optional[Tuple[Dict[str, Any], str]]:
        table = self._tables[container]
        async with self.SessionLocal() as sess:
            row = (await sess.execute(
                select(table.c.body, table.c.etag).where(table.c.id == doc_id)
            )).first()
        return (row[0], row[1]) if row else None

    async def _upsert(self, container: str, doc_id: str, body: Dict[str, Any]) -> str:
        table = self._tables[container]
        partition = str(body.get(self._partition_keys[container]) or "")
        etag = _new_etag()
        values = {"partition_key": partition, "body": body, "etag": etag, "updated_at": utc_now()}
        dialect_insert = _UPSERT_INSERTS.get(self.engine.dialect.name)
        async with self.SessionLocal() as sess:
            async with sess.begin():
                if dialect_insert is not None:
                    stmt = dialect_insert(table).values(id=doc_id, **values)
                    await sess.execute(stmt.on_conflict_do_update(index_elements=[table.c.id], set_=values))
                else:
                    # no native upsert: replace first, insert only when nothing was there
                    result = await sess.execute(update(table).where(table.c.id == doc_id).values(**values))
                    if result.rowcount == 0:
                        await sess.execute(insert(table).values(id=doc_id, **values))
        return etag

    async def _replace_if_match(self, container: str, doc_id: str, body: Dict[str, Any], etag: str) -> bool:
        """Conditional replace: writes only while the stored etag still equals `etag`."""
        table = self._tables[container]
        partition = str(body.get(self._partition_keys[container]) or "")
        async with self.SessionLocal() as sess:
            async with sess.begin():
                result = await sess.execute(
                    update(table)
                    .where(table.c.id == doc_id, table.c.etag == etag)
                    .values(partition_key=partition, body=body, etag=_new_etag(), updated_at=utc_now())
                )
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Technicians
    # ------------------------------------------------------------------
    @_store_call
    async def list_technicians(self) -> List[Technician]:
        results = await self._read_all("technicians", Technician)
        self.log.info("Fetched %d technicians from document store", len(results))
        return results

    @_store_call
    async def query_technicians_by_skills(self, skills: Sequence[str] | None) -> List[Technician]:
        """Technicians sharing at least one skill with `skills`, compared case-insensitively."""
        wanted = {s.lower() for s in (skills or []) if s}
        if not wanted:
            return []
        technicians = await self._read_all("technicians", Technician)
        filtered = [t for t in technicians if any(s.lower() in wanted for s in t.skills)]
        self.log.info("Found %d technicians matching skills", len(filtered))
        return filtered

    @_store_call
    async def upsert_technician(self, technician: Technician) -> Technician:
        if not technician.id:
            technician.id = str(uuid.uuid4())
        await self._upsert("technicians", technician.id, technician.to_document())
        return technician

    # ------------------------------------------------------------------
    # Parts
    # ------------------------------------------------------------------
    @_store_call
    async def list_parts(self) -> List[Part]:
        results = await self._read_all("parts", Part)
        self.log.info("Fetched %d parts from document store", len(results))
        return results

    async def _read_part(self, part_number: str) -> Optional[Tuple[Part, str]]:
        table = self._tables["parts"]
        stmt = (
            select(table.c.body, table.c.etag)
            .where(table.c.body["partNumber"].as_string() == part_number)
            .order_by(table.c.id)
            .limit(1)
        )
        async with self.SessionLocal() as sess:
            row = (await sess.execute(stmt)).first()
        if row is None:
            return None
        return Part.model_validate(row[0]), row[1]

    @_store_call
    async def find_part_by_number(self, part_number: str) -> Optional[Part]:
        found = await self._read_part(part_number)
        return found[0] if found else None

    @_store_call
    async def upsert_part(self, part: Part) -> Part:
        if not part.id:
            part.id = str(uuid.uuid4())
        await self._upsert("parts", part.id, part.to_document())
        return part

    @_store_call
    async def try_deduct_part_quantity(self, part_number: str, quantity: int) -> bool:
        """
        Optimistic decrement of a part's quantityAvailable.

        Returns False without writing when the part is missing, the quantity is not
        positive or exceeds stock, or the record changed between read and write.
        Conflicts are not retried here.
        """
        if quantity <= 0:
            self.log.warning("Rejected deduction of %d units of %s", quantity, part_number)
            return False

        found = await self._read_part(part_number)
        if found is None:
            self.log.info("Part %s not found; nothing deducted", part_number)
            return False

        part, etag = found
        if part.quantity_available < quantity:
            self.log.info("Insufficient stock for %s: requested %d, available %d",
                          part_number, quantity, part.quantity_available)
            return False

        part.quantity_available -= quantity
        replaced = await self._replace_if_match("parts", part.id, part.to_document(), etag)
        if not replaced:
            self.log.warning("Version conflict deducting %d units of %s; caller may retry", quantity, part_number)
        return replaced

    # ------------------------------------------------------------------
    # Work orders
    # ------------------------------------------------------------------
    @_store_call
    async def upsert_work_order(self, wo: WorkOrder) -> WorkOrder:
        """Create or replace by id; assigns an id when missing and stamps updatedAt."""
        wo.updated_at = utc_now()
        if not wo.id or not wo.id.strip():
            wo.id = str(uuid.uuid4())
        await self._upsert("work_orders", wo.id, wo.to_document())
        self.log.info("Saved work order %s (id=%s, status=%s, assignedTo=%s)",
                      wo.work_order_number, wo.id, wo.status, wo.assigned_to)
        return wo

    @_store_call
    async def get_work_order(self, work_order_id: str) -> Optional[WorkOrder]:
        found = await self._read_by_id("work_orders", work_order_id)
        return WorkOrder.model_validate(found[0]) if found else None

    @_store_call
    async def list_work_orders(self) -> List[WorkOrder]:
        return await self._read_all("work_orders", WorkOrder)


_STORE_CACHE: dict[str | None, DocumentStore] = {}


def get_store(db_profile: str | None = None) -> DocumentStore:
    """
    Return a cached DocumentStore for the given profile.
    If db_profile is None, falls back to the config's default profile.
    """
    if db_profile not in _STORE_CACHE:
        _STORE_CACHE[db_profile] = DocumentStore.from_profile(db_profile=db_profile)
    return _STORE_CACHE[db_profile]
