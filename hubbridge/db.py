import logging, uuid
from pathlib import Path
from typing import Any, Dict, List, Optional
from sqlalchemy import create_engine, select
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool

log = logging.getLogger("audit")

class Base(DeclarativeBase):
    pass

class AuditLog:
    """Append-only record of every service invocation the bridge issued."""

    def __init__(self, db_url: str):
        url = make_url(db_url)
        self._db_path = None
        kwargs: Dict[str, Any] = {"future": True}
        if url.get_backend_name() == "sqlite":
            kwargs["connect_args"] = {"check_same_thread": False}
            if url.database in (None, "", ":memory:"):
                kwargs["poolclass"] = StaticPool
            else:
                self._db_path = Path(url.database)
        self.engine = create_engine(url, **kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, future=True)

    def init(self):
        if self._db_path is not None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        from . import models  # noqa: F401  registers tables on Base
        Base.metadata.create_all(self.engine)

    def record(self, actor: str, action: str, target_type: str, target_id: str,
               payload: Dict[str, Any], outcome: str) -> Optional[str]:
        from .models import Audit
        entry_id = uuid.uuid4().hex
        try:
            with self.SessionLocal() as s:
                s.add(Audit(id=entry_id, actor=actor, action=action, target_type=target_type,
                            target_id=target_id, payload=payload, outcome=outcome))
                s.commit()
        except SQLAlchemyError:
            log.exception("Could not record %s on %s", action, target_id)
            return None
        return entry_id

    def recent(self, limit: int = 50) -> List[Dict[str, Any]]:
        from .models import Audit
        with self.SessionLocal() as s:
            rows = s.scalars(select(Audit).order_by(Audit.ts.desc(), Audit.id).limit(limit)).all()
            return [{
                "id": a.id,
                "ts": a.ts.isoformat() if a.ts else None,
                "actor": a.actor,
                "action": a.action,
                "target_type": a.target_type,
                "target_id": a.target_id,
                "payload": a.payload,
                "outcome": a.outcome,
            } for a in rows]

    def dispose(self):
        self.engine.dispose()
