"""
Bracket Action API Route

Single JSON-in / plain-text-out endpoint driving the bracket engines:

  {"action": "buildBracket", "tournament": "<id>"}
  {"action": "updateMatch", "tournament": "<id>", "matchId": "<id>", "time": "<ISO-8601>"}

The response body is empty on success and a human-readable message on
failure; the status is always 200. Work on one tournament is serialized
with a per-tournament lock, and nothing is written unless the whole
build or update succeeds.
"""
import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse
from sqlmodel import Session

from bracket_service.database import get_session
from bracket_service.exceptions import (
    BracketIntegrityError,
    BracketServiceError,
    InvalidRequestError,
    RecordNotFoundError,
    UnschedulableMatchError,
)
from bracket_service.services.bracket_builder import BracketBuilder
from bracket_service.services.bracket_store import load_records, save_records
from bracket_service.services.match_progression import MatchProgressionService
from bracket_service.utils.timestamps import parse_timestamp, utc_now

logger = logging.getLogger(__name__)

router = APIRouter()

# Only tournaments with a request in flight have an entry
_tournament_locks: Dict[str, threading.Lock] = {}
_lock_users: Dict[str, int] = {}
_registry_lock = threading.Lock()


@contextmanager
def _tournament_lock(tournament_id: str) -> Iterator[None]:
    with _registry_lock:
        lock = _tournament_locks.setdefault(tournament_id, threading.Lock())
        _lock_users[tournament_id] = _lock_users.get(tournament_id, 0) + 1
    try:
        with lock:
            yield
    finally:
        with _registry_lock:
            _lock_users[tournament_id] -= 1
            if not _lock_users[tournament_id]:
                del _lock_users[tournament_id]
                del _tournament_locks[tournament_id]


# ============================================================================
# Actions
# ============================================================================


def build_bracket(session: Session, tournament_id: str) -> None:
    """Rebuild every division of the tournament and persist the new graph."""
    records = load_records(session, tournament_id)
    previous_match_ids = list(records.matches)
    BracketBuilder(records.tournament, records.matches, records.teams, records.fields).build()
    save_records(session, records, previous_match_ids)


def update_match(session: Session, tournament_id: str, match_id: str, current_time: datetime) -> None:
    """Apply a decided match and persist the re-planned bracket."""
    records = load_records(session, tournament_id)
    if match_id not in records.matches:
        raise RecordNotFoundError(f"No match with ID '{match_id}'")
    service = MatchProgressionService(
        records.tournament,
        records.matches,
        records.teams,
        records.fields,
        current_time=current_time,
    )
    service.apply_result(match_id)
    save_records(session, records)


def _require_string(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise InvalidRequestError(f"Missing '{key}'")
    return value


def _parse_time(value: Optional[Any]) -> datetime:
    if value is None:
        return utc_now()
    if not isinstance(value, str):
        raise InvalidRequestError(f"Invalid 'time' format: {value!r}")
    try:
        return parse_timestamp(value)
    except ValueError:
        raise InvalidRequestError(f"Invalid 'time' format: {value}")


def dispatch_action(session: Session, payload: Any) -> None:
    """
    Validate the request and run the requested action.

    Raises BracketServiceError subclasses; the caller turns them into the
    response text.
    """
    if not isinstance(payload, dict):
        raise InvalidRequestError("Request body must be a JSON object")

    action = payload.get("action")
    if not isinstance(action, str) or not action:
        raise InvalidRequestError("Missing 'action'")
    if action not in ("buildBracket", "updateMatch"):
        raise InvalidRequestError(f"Unknown action: {action}")

    tournament_id = _require_string(payload, "tournament")

    if action == "buildBracket":
        with _tournament_lock(tournament_id):
            build_bracket(session, tournament_id)
        return

    match_id = _require_string(payload, "matchId")
    current_time = _parse_time(payload.get("time"))
    with _tournament_lock(tournament_id):
        update_match(session, tournament_id, match_id, current_time)


# ============================================================================
# Endpoint
# ============================================================================


@router.post("/brackets", response_class=PlainTextResponse)
async def bracket_action(request: Request, session: Session = Depends(get_session)):
    body = await request.body()
    try:
        payload = json.loads(body or b"null")
    except ValueError as e:
        return PlainTextResponse(f"Invalid JSON: {e}")

    try:
        await run_in_threadpool(dispatch_action, session, payload)
    except BracketIntegrityError as e:
        session.rollback()
        logger.exception("Bracket integrity failure for request %s", payload)
        return PlainTextResponse(str(e))
    except UnschedulableMatchError as e:
        session.rollback()
        logger.error("Scheduling gave up: %s", e)
        return PlainTextResponse(str(e))
    except BracketServiceError as e:
        session.rollback()
        logger.info("Bracket request rejected: %s", e)
        return PlainTextResponse(str(e))
    return PlainTextResponse("")
