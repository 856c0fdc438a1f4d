import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import ValidationError
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.database import dialect_insert
from app.errors import StoreError
from app.logging_config import get_logger
from app.models import BotSession
from app.schemas.session import BotSessionState, SessionPayload

logger = get_logger("session_service")

SESSION_TTL_MINUTES = 30
SESSION_CACHE_PREFIX = "wabot:session:"
DEFAULT_STEP = "welcome"


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def session_expiry(ttl_minutes: int = SESSION_TTL_MINUTES, now: Optional[datetime] = None) -> datetime:
    return (now or datetime.now(timezone.utc)) + timedelta(minutes=ttl_minutes)


def default_session_state(
    user_id: str,
    ttl_minutes: int = SESSION_TTL_MINUTES,
    now: Optional[datetime] = None,
) -> BotSessionState:
    """State used when a user has no live session."""
    return BotSessionState(
        user_id=user_id,
        payload=SessionPayload(),
        step=DEFAULT_STEP,
        expires_at=session_expiry(ttl_minutes, now),
    )


def _cache_key(user_id: str) -> str:
    return f"{SESSION_CACHE_PREFIX}{user_id}"


def _read_cached_session(cache, user_id: str) -> Optional[BotSessionState]:
    if cache is None:
        return None
    try:
        raw = cache.get(_cache_key(user_id))
        if raw is None:
            return None
        return BotSessionState.model_validate_json(raw)
    except (RedisError, ValidationError) as e:
        logger.warning(f"Session cache read failed, using database: {e}")
        return None


def invalidate_session(cache, user_id: str) -> None:
    if cache is None:
        return
    try:
        cache.delete(_cache_key(user_id))
    except RedisError as e:
        logger.warning(f"Session cache invalidation failed: {e}", extra={"context": {"user_id": user_id}})


def cache_session(cache, state: BotSessionState, now: Optional[datetime] = None) -> None:
    """
    Write session state to the cache with a TTL matching its expiry.

    A failed write drops the key instead, so a later read goes to the
    database rather than to an older cached step.
    """
    if cache is None:
        return
    now = now or datetime.now(timezone.utc)
    ttl_seconds = int((_as_utc(state.expires_at) - now).total_seconds())
    if ttl_seconds <= 0:
        invalidate_session(cache, state.user_id)
        return
    try:
        cache.set(_cache_key(state.user_id), state.model_dump_json(), ex=ttl_seconds)
    except RedisError as e:
        logger.warning(f"Session cache write failed: {e}", extra={"context": {"user_id": state.user_id}})
        invalidate_session(cache, state.user_id)


def get_session(
    db: Session,
    user_id: str,
    cache=None,
    now: Optional[datetime] = None,
) -> Optional[BotSessionState]:
    """Return the user's session only while its expiry is strictly in the future."""
    now = now or datetime.now(timezone.utc)

    cached = _read_cached_session(cache, user_id)
    if cached is not None and _as_utc(cached.expires_at) > now:
        return cached

    try:
        row = (
            db.query(BotSession)
            .filter(BotSession.phone_number == user_id, BotSession.expires_at > now)
            .first()
        )
    except SQLAlchemyError as e:
        logger.error(f"Loading session failed for {user_id}: {e}")
        raise StoreError("get_session", str(e)) from e

    if row is None:
        return None

    state = BotSessionState(
        user_id=row.phone_number,
        payload=SessionPayload.model_validate(row.session_data or {}),
        step=row.current_step or DEFAULT_STEP,
        expires_at=_as_utc(row.expires_at),
    )
    cache_session(cache, state, now)
    return state


def save_session(
    db: Session,
    user_id: str,
    payload: SessionPayload,
    step: str,
    expires_at: datetime,
) -> BotSessionState:
    """Upsert the user's session, overwriting payload, step and expiry."""
    now = datetime.now(timezone.utc)
    table = BotSession.__table__

    stmt = dialect_insert(db, table).values(
        id=uuid.uuid4(),
        phone_number=user_id,
        session_data=payload.to_storage(),
        current_step=step,
        expires_at=expires_at,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.phone_number],
        set_={
            "session_data": stmt.excluded.session_data,
            "current_step": stmt.excluded.current_step,
            "expires_at": stmt.excluded.expires_at,
            "updated_at": stmt.excluded.updated_at,
        },
    )

    try:
        db.execute(stmt)
        db.flush()
    except SQLAlchemyError as e:
        logger.error(f"Saving session failed for {user_id}: {e}")
        raise StoreError("save_session", str(e)) from e

    return BotSessionState(user_id=user_id, payload=payload, step=step, expires_at=expires_at)
