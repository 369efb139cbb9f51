from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime

import redis

from tabletop.api.models import FogOfWarState, Polygon
from tabletop.errors import ForbiddenError, InternalError, PreconditionFailedError
from tabletop.session_store import get_map, list_tokens
from tabletop.visibility import to_polygon_models, vision_polygons_for


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _fog_key(session_id: str) -> str:
    return f"vtt:session:{session_id}:fog"


@contextmanager
def _store_errors() -> Iterator[None]:
    try:
        yield
    except redis.RedisError as e:
        raise InternalError("Fog of war store unavailable") from e


def _require_dm(actor_is_dm: bool, *, action: str) -> None:
    if not actor_is_dm:
        raise ForbiddenError(f"Only the DM can {action} fog of war")


def _save(*, r: redis.Redis, state: FogOfWarState) -> FogOfWarState:
    state.updated_at = _now()
    with _store_errors():
        r.set(_fog_key(state.session_id), state.model_dump_json())
    return state


def get_fog(*, r: redis.Redis, session_id: str) -> FogOfWarState | None:
    with _store_errors():
        raw = r.get(_fog_key(session_id))
    if not raw:
        return None
    return FogOfWarState.model_validate_json(raw)


def append_areas(*, r: redis.Redis, session_id: str, polygons: Sequence[Polygon]) -> FogOfWarState:
    """Append polygons to the revealed set, creating the record if needed.

    Runs as an optimistic WATCH/MULTI transaction so concurrent appends are
    never lost; redis-py retries the callable on conflict.
    """

    key = _fog_key(session_id)

    def _append(pipe: redis.client.Pipeline) -> FogOfWarState:
        raw = pipe.get(key)
        if raw:
            state = FogOfWarState.model_validate_json(raw)
        else:
            state = FogOfWarState(session_id=session_id, updated_at=_now())
        state.revealed_areas.extend(list(p) for p in polygons)
        state.updated_at = _now()
        pipe.multi()
        pipe.set(key, state.model_dump_json())
        return state

    with _store_errors():
        return r.transaction(_append, key, value_from_callable=True)


def reveal_area(*, r: redis.Redis, session_id: str, polygon: Polygon, actor_is_dm: bool) -> FogOfWarState:
    """Append one polygon. The caller has already checked it has at least 3 points.

    Repeated reveals of the same polygon are stored again, not deduplicated.
    """

    _require_dm(actor_is_dm, action="reveal")
    return append_areas(r=r, session_id=session_id, polygons=[polygon])


def replace_fog(
    *,
    r: redis.Redis,
    session_id: str,
    revealed_areas: list[Polygon],
    actor_is_dm: bool,
) -> FogOfWarState:
    _require_dm(actor_is_dm, action="update")
    return _save(r=r, state=FogOfWarState(session_id=session_id, revealed_areas=revealed_areas, updated_at=_now()))


def clear_fog(*, r: redis.Redis, session_id: str, actor_is_dm: bool) -> FogOfWarState:
    # Plain SET: a racing reveal may land before or after; last write wins.
    _require_dm(actor_is_dm, action="clear")
    return _save(r=r, state=FogOfWarState(session_id=session_id, updated_at=_now()))


def auto_reveal(*, r: redis.Redis, session_id: str, actor_is_dm: bool) -> FogOfWarState:
    """Reveal what every vision-casting token in the session currently sees.

    New FOV polygons are appended to the existing set as-is (no merging).
    Raises PreconditionFailedError when the session has no map.
    """

    _require_dm(actor_is_dm, action="auto-reveal")

    map_state = get_map(r=r, session_id=session_id)
    if map_state is None:
        raise PreconditionFailedError("No map uploaded for this session")

    polygons = vision_polygons_for(map_state=map_state, tokens=list_tokens(r=r, session_id=session_id))
    return append_areas(r=r, session_id=session_id, polygons=to_polygon_models(polygons))
