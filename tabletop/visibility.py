from __future__ import annotations

from collections.abc import Iterable

import redis

from tabletop.api.models import MapState, Polygon, PointModel, Token, VisionResponse
from tabletop.core.vision import Point, merge_polygons, token_vision
from tabletop.session_store import get_map, list_tokens


def _to_models(points: Iterable[Point]) -> Polygon:
    return [PointModel.from_point(p) for p in points]


def vision_polygons_for(*, map_state: MapState, tokens: Iterable[Token]) -> list[list[Point]]:
    """Per-token FOV polygons for every token that casts vision."""

    walls = [w.to_segment() for w in map_state.walls]
    polygons: list[list[Point]] = []
    for token in tokens:
        if not token.vision_radius:
            continue
        polygon = token_vision(Point(token.x, token.y), token.vision_radius, walls, map_state.grid_size)
        if polygon:
            polygons.append(polygon)
    return polygons


def relevant_tokens(*, tokens: Iterable[Token], user_id: str, is_dm: bool) -> list[Token]:
    # DM sees through every token; players only through their own.
    return [t for t in tokens if is_dm or t.owner_id == user_id]


def compute_session_vision(*, r: redis.Redis, session_id: str, user_id: str, is_dm: bool) -> VisionResponse:
    """Vision for the caller: per-token FOV polygons plus their crude merge.

    A session without a map has no walls to see through, so nothing is returned.
    """

    map_state = get_map(r=r, session_id=session_id)
    if map_state is None:
        return VisionResponse()

    tokens = relevant_tokens(tokens=list_tokens(r=r, session_id=session_id), user_id=user_id, is_dm=is_dm)
    polygons = vision_polygons_for(map_state=map_state, tokens=tokens)

    return VisionResponse(
        polygons=[_to_models(p) for p in polygons],
        merged=_to_models(merge_polygons(polygons)),
    )


def to_polygon_models(polygons: Iterable[Iterable[Point]]) -> list[Polygon]:
    return [_to_models(p) for p in polygons]
