# sitegen/storage/database.py
"""
Database models and SQL-backed collaborators
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, DateTime, Float, Index, Integer, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
import structlog

logger = structlog.get_logger()

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Site(Base):
    """Site row; only the columns the engine writes"""
    __tablename__ = "sites"

    id = Column(String(64), primary_key=True)
    status = Column(String(20), nullable=False, default="collecting")
    current_build_version = Column(String(40))
    quality_score = Column(Float)
    error = Column(Text)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class AuditLog(Base):
    """Workflow audit trail"""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(String(64), nullable=False)
    entity_id = Column(String(64), nullable=False)
    action = Column(String(64), nullable=False)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("idx_audit_entity", "entity_id"),
        Index("idx_audit_action", "action"),
    )


class DatabaseManager:
    """Engine and session factory"""

    def __init__(self, database_url: str, echo: bool = False):
        if not database_url:
            raise ValueError("Database URL not configured")
        kwargs: Dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, **kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)

    def create_tables(self):
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables created")

    def get_session(self):
        return self.SessionLocal()

    def close(self):
        self.engine.dispose()
        logger.info("Database connections closed")


class SqlStatusSink:
    """StatusSink writing to the ``sites`` table"""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def _update(self, entity_id: str, status: str, fields: Dict[str, Any]) -> None:
        with self.db.get_session() as session:
            site = session.get(Site, entity_id)
            if site is None:
                site = Site(id=entity_id)
                session.add(site)
            site.status = status
            for name in ("current_build_version", "quality_score", "error"):
                if name in fields:
                    setattr(site, name, fields[name])
            session.commit()

    async def update_status(self, entity_id: str, status: str, **fields: Any) -> None:
        await asyncio.to_thread(self._update, entity_id, status, fields)

    def get(self, entity_id: str) -> Optional[Dict[str, Any]]:
        with self.db.get_session() as session:
            site = session.get(Site, entity_id)
            if site is None:
                return None
            return {
                "id": site.id,
                "status": site.status,
                "current_build_version": site.current_build_version,
                "quality_score": site.quality_score,
                "error": site.error,
            }


class SqlAuditLog:
    """WorkflowLog sink writing to the ``audit_logs`` table"""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def _insert(self, org_id: str, entity_id: str, action: str, metadata: Dict[str, Any]) -> None:
        with self.db.get_session() as session:
            session.add(AuditLog(org_id=org_id, entity_id=entity_id, action=action, details=metadata))
            session.commit()

    async def record(self, org_id: str, entity_id: str, action: str, metadata: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._insert, org_id, entity_id, action, metadata)

    def entries(self, entity_id: str) -> List[Dict[str, Any]]:
        with self.db.get_session() as session:
            rows = (
                session.query(AuditLog)
                .filter(AuditLog.entity_id == entity_id)
                .order_by(AuditLog.id)
                .all()
            )
            return [{"action": r.action, "org_id": r.org_id, "metadata": r.details} for r in rows]
