from __future__ import annotations

import datetime as _dt
from typing import Any, Dict, List, Optional, Tuple

import orjson
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    func,
    select,
)
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import StorageQuotaExceeded
from .schemas import AuditEvent
from .settings import settings


Base = declarative_base()


def _utc_now_iso() -> str:
    return _dt.datetime.now(tz=_dt.timezone.utc).isoformat()


class Entry(Base):
    __tablename__ = "entries"
    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(String, nullable=False)


class Audit(Base):
    __tablename__ = "audit"
    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(String, nullable=False)
    step = Column(String, nullable=False)
    status = Column(String, nullable=False)
    ts_iso = Column(String, nullable=False)
    ts_ns = Column(Integer, nullable=False)
    input_digest = Column(String, nullable=True)
    output_digest = Column(String, nullable=True)
    prev_event_hash = Column(String, nullable=False)
    event_hash = Column(String, nullable=False)
    details_json = Column(Text, nullable=False)


# SQLite reports "database is locked" as OperationalError when another context holds the write lock
_write_retry = retry(
    reraise=True,
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.05, max=0.5),
    retry=retry_if_exception_type(OperationalError),
)


def dumps(value: Any) -> str:
    return orjson.dumps(value, option=orjson.OPT_SORT_KEYS).decode()


class LocalStore:
    """Durable key -> JSON store for one device.

    Keys are logical purposes ("applicationFormData") or prefixed collections
    ("submittedApplications/<id>"). `quota_bytes` caps the summed size of all
    values, the way a browser caps localStorage.
    """

    def __init__(self, url: Optional[str] = None, quota_bytes: Optional[int] = None) -> None:
        self.url = url or settings.storage_url()
        self.quota_bytes = quota_bytes if quota_bytes is not None else settings.storage.get("quota_bytes")
        self.engine = create_engine(self.url, echo=False, future=True)
        self._session = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, future=True)
        Base.metadata.create_all(self.engine)

    def get_raw(self, key: str) -> Optional[str]:
        with self._session() as session:
            row = session.get(Entry, key)
            return row.value if row else None

    def get(self, key: str, default: Any = None) -> Any:
        raw = self.get_raw(key)
        if raw is None:
            return default
        return orjson.loads(raw)

    @_write_retry
    def set_raw(self, key: str, raw: str) -> None:
        with self._session() as session:
            self._check_quota(session, key, raw)
            row = session.get(Entry, key)
            if row:
                row.value = raw
                row.updated_at = _utc_now_iso()
            else:
                session.add(Entry(key=key, value=raw, updated_at=_utc_now_iso()))
            session.commit()

    def set(self, key: str, value: Any) -> None:
        self.set_raw(key, dumps(value))

    @_write_retry
    def remove(self, key: str) -> None:
        with self._session() as session:
            session.execute(delete(Entry).where(Entry.key == key))
            session.commit()

    def keys(self, prefix: str = "") -> List[str]:
        with self._session() as session:
            stmt = select(Entry.key).where(Entry.key.startswith(prefix, autoescape=True)).order_by(Entry.key.asc())
            return list(session.execute(stmt).scalars().all())

    def items(self, prefix: str = "") -> List[Tuple[str, Any]]:
        """Enumerate (key, value) pairs under a prefix; unparsable values are skipped."""
        with self._session() as session:
            stmt = select(Entry).where(Entry.key.startswith(prefix, autoescape=True)).order_by(Entry.key.asc())
            rows = session.execute(stmt).scalars().all()
            out: List[Tuple[str, Any]] = []
            for r in rows:
                try:
                    out.append((r.key, orjson.loads(r.value)))
                except orjson.JSONDecodeError:
                    continue
            return out

    def total_bytes(self) -> int:
        with self._session() as session:
            total = session.execute(select(func.sum(func.length(Entry.value)))).scalar()
            return int(total or 0)

    def _check_quota(self, session, key: str, raw: str) -> None:
        if not self.quota_bytes:
            return
        others = session.execute(
            select(func.sum(func.length(Entry.value))).where(Entry.key != key)
        ).scalar()
        needed = int(others or 0) + len(raw)
        if needed > self.quota_bytes:
            raise StorageQuotaExceeded(key, needed, int(self.quota_bytes))

    # Audit helpers

    @_write_retry
    def append_audit(self, event: AuditEvent) -> None:
        with self._session() as session:
            session.add(
                Audit(
                    subject_id=event.subject_id,
                    step=event.step,
                    status=event.status,
                    ts_iso=event.ts_iso,
                    ts_ns=event.ts_ns,
                    input_digest=event.input_digest,
                    output_digest=event.output_digest,
                    prev_event_hash=event.prev_event_hash,
                    event_hash=event.event_hash,
                    details_json=dumps(event.details),
                )
            )
            session.commit()

    def get_last_audit_hash(self, subject_id: str) -> Optional[str]:
        with self._session() as session:
            stmt = select(Audit).where(Audit.subject_id == subject_id).order_by(Audit.id.desc()).limit(1)
            row = session.execute(stmt).scalars().first()
            return row.event_hash if row else None

    def get_audit_for(self, subject_id: str) -> List[Dict[str, Any]]:
        with self._session() as session:
            stmt = select(Audit).where(Audit.subject_id == subject_id).order_by(Audit.id.asc())
            rows = session.execute(stmt).scalars().all()
            return [
                {
                    "step": r.step,
                    "status": r.status,
                    "prev_event_hash": r.prev_event_hash,
                    "event_hash": r.event_hash,
                    "details": orjson.loads(r.details_json),
                }
                for r in rows
            ]

    def dispose(self) -> None:
        self.engine.dispose()
