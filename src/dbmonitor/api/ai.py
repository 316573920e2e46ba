"""Interactive chat over a target's cached database context (Server-Sent Events)."""
from __future__ import annotations
import json
import logging
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from dbmonitor.api.deps import get_db, get_cache, get_generator
from dbmonitor.context import get_or_build_context
from dbmonitor.infrastructure.cache import ContextCache
from dbmonitor.llm import TextGenerator, TextGenerationError
from dbmonitor import repository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])

CHAT_INSTRUCTION = (
    "You are a PostgreSQL performance assistant. Answer using the database context below when it is relevant; "
    "say so when the context does not contain what is needed."
)


class ChatIn(BaseModel):
    target_id: int
    message: str = Field(min_length=1)


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


@router.post("/stream")
def stream_chat(body: ChatIn, db: Session = Depends(get_db), cache: ContextCache = Depends(get_cache), generator: TextGenerator = Depends(get_generator)):
    if repository.get_target(db, body.target_id) is None:
        raise HTTPException(status_code=404, detail="target not found")
    context = get_or_build_context(db, body.target_id, cache)
    system = CHAT_INSTRUCTION + context.get("narrative", "")

    def events():
        try:
            for chunk in generator.stream(system, body.message):
                yield _sse({"text": chunk})
        except TextGenerationError as e:
            logger.warning("chat stream for target %s failed: %s", body.target_id, e)
            yield _sse({"error": str(e)})
        yield _sse({"done": True})

    return StreamingResponse(events(), media_type="text/event-stream")
