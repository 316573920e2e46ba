"""FastAPI dependencies; tests replace these through app.dependency_overrides."""
from __future__ import annotations
from fastapi import HTTPException
from dbmonitor.infrastructure.cache import ContextCache
from dbmonitor.infrastructure.db import SessionLocal
from dbmonitor.infrastructure.target_connection import open_target
from dbmonitor.llm import TextGenerator, TextGenerationError


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_cache() -> ContextCache:
    return ContextCache()


def get_connector():
    return open_target


def get_generator() -> TextGenerator:
    try:
        return TextGenerator()
    except TextGenerationError as e:
        raise HTTPException(status_code=503, detail=str(e))
