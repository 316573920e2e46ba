from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session
from dbmonitor.api.deps import get_db, get_cache, get_connector
from dbmonitor.context import get_or_build_context, record_to_dict, snapshot_to_dict
from dbmonitor.infrastructure.cache import ContextCache
from dbmonitor.security.crypto import EncryptionError
from dbmonitor.targets import DuplicateTargetError, InvalidTargetError, register_target, register_target_from_url, reprobe_target
from dbmonitor.watchlist import enable_query_alert, disable_query_alert, list_alert_queries
from dbmonitor import repository

router = APIRouter(prefix="/targets", tags=["targets"])


class TargetIn(BaseModel):
    database_url: str | None = None
    host: str | None = None
    port: int = 5432
    database_name: str | None = None
    username: str | None = None
    password: str | None = None
    db_type: str = "postgresql"
    owner: str | None = None

    @model_validator(mode="after")
    def _url_or_fields(self):
        if not self.database_url and not all([self.host, self.database_name, self.username, self.password]):
            raise ValueError("provide database_url or host, database_name, username and password")
        return self


class TargetOut(BaseModel):
    id: int
    owner: str
    host: str
    port: int
    database_name: str
    db_type: str
    monitoring_enabled: bool


class AlertIn(BaseModel):
    query: str = Field(min_length=1)


def _target_out(t) -> TargetOut:
    return TargetOut(id=t.id, owner=t.owner, host=t.host, port=t.port, database_name=t.database_name, db_type=t.db_type, monitoring_enabled=t.monitoring_enabled)


def _require_target(db: Session, target_id: int):
    target = repository.get_target(db, target_id)
    if target is None:
        raise HTTPException(status_code=404, detail="target not found")
    return target


@router.post("", response_model=TargetOut, status_code=201)
def create_target(body: TargetIn, db: Session = Depends(get_db), connect=Depends(get_connector)):
    try:
        if body.database_url:
            target = register_target_from_url(db, body.database_url, owner=body.owner, connect=connect)
        else:
            target = register_target(
                db,
                host=body.host,
                port=body.port,
                database_name=body.database_name,
                username=body.username,
                password=body.password,
                owner=body.owner,
                db_type=body.db_type,
                connect=connect,
            )
    except DuplicateTargetError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidTargetError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EncryptionError as e:
        raise HTTPException(status_code=500, detail=f"credential encryption unavailable: {e}")
    return _target_out(target)


@router.post("/{target_id}/probe", response_model=TargetOut)
def probe_target(target_id: int, db: Session = Depends(get_db), connect=Depends(get_connector)):
    target = reprobe_target(db, target_id, connect=connect)
    if target is None:
        raise HTTPException(status_code=404, detail="target not found")
    return _target_out(target)


@router.get("/{target_id}/queries")
def list_queries(target_id: int, limit: int = Query(100, ge=1, le=500), db: Session = Depends(get_db)):
    _require_target(db, target_id)
    return [record_to_dict(r) for r in repository.recent_query_records(db, target_id, limit=limit)]


@router.get("/{target_id}/tables")
def list_tables(target_id: int, db: Session = Depends(get_db)):
    _require_target(db, target_id)
    return [snapshot_to_dict(s) for s in repository.table_snapshots(db, target_id)]


@router.get("/{target_id}/suggestions")
def current_suggestions(target_id: int, db: Session = Depends(get_db)):
    _require_target(db, target_id)
    current = repository.get_suggestion_set(db, target_id)
    if current is None:
        # not yet synthesised is a normal state
        return {"target_id": target_id, "suggestions": [], "source": None, "updated_at": None}
    return {
        "target_id": target_id,
        "suggestions": current.suggestions,
        "source": current.source,
        "updated_at": current.updated_at.isoformat(),
    }


@router.get("/{target_id}/context")
def database_context(target_id: int, db: Session = Depends(get_db), cache: ContextCache = Depends(get_cache)):
    _require_target(db, target_id)
    return get_or_build_context(db, target_id, cache)


@router.post("/{target_id}/alerts", status_code=201)
def add_alert(target_id: int, body: AlertIn, db: Session = Depends(get_db), cache: ContextCache = Depends(get_cache)):
    _require_target(db, target_id)
    try:
        record, created = enable_query_alert(db, target_id, body.query, cache=cache)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"id": record.id, "query_hash": record.query_hash, "alerts_enabled": record.alerts_enabled, "created": created}


@router.delete("/{target_id}/alerts/{query_hash}")
def remove_alert(target_id: int, query_hash: str, db: Session = Depends(get_db), cache: ContextCache = Depends(get_cache)):
    record = disable_query_alert(db, target_id, query_hash, cache=cache)
    if record is None:
        raise HTTPException(status_code=404, detail="query not found")
    return {"id": record.id, "query_hash": record.query_hash, "alerts_enabled": record.alerts_enabled}


@router.get("/{target_id}/alerts")
def alert_queries(target_id: int, db: Session = Depends(get_db)):
    _require_target(db, target_id)
    return list_alert_queries(db, target_id)
