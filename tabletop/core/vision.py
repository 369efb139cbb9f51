"""Line-of-sight and field-of-view geometry.

All coordinates are grid units. Nothing here performs I/O or raises on
degenerate input; callers validate polygon shapes before using them.
"""
from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

# Below this cross-product magnitude two segments are treated as parallel (never blocking).
PARALLEL_EPSILON = 1e-4

# Points closer than this on both axes are considered the same point when merging.
MERGE_TOLERANCE = 0.1

FEET_PER_GRID_SQUARE = 5.0

MIN_RAY_COUNT = 32


@dataclass(frozen=True, slots=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True, slots=True)
class Segment:
    x1: float
    y1: float
    x2: float
    y2: float

    @staticmethod
    def between(a: Point, b: Point) -> "Segment":
        return Segment(a.x, a.y, b.x, b.y)


# Walls are opaque segments loaded with the map.
Wall = Segment


def intersects(a: Segment, b: Segment) -> bool:
    """Whether two segments cross, endpoints included.

    Parallel (and collinear) segments are reported as non-intersecting.
    """

    d1x = a.x2 - a.x1
    d1y = a.y2 - a.y1
    d2x = b.x2 - b.x1
    d2y = b.y2 - b.y1

    denominator = d1x * d2y - d1y * d2x
    if abs(denominator) < PARALLEL_EPSILON:
        return False

    t1 = ((b.x1 - a.x1) * d2y - (b.y1 - a.y1) * d2x) / denominator
    t2 = ((b.x1 - a.x1) * d1y - (b.y1 - a.y1) * d1x) / denominator

    return 0 <= t1 <= 1 and 0 <= t2 <= 1


def has_line_of_sight(origin: Point, target: Point, walls: Iterable[Wall]) -> bool:
    sight = Segment.between(origin, target)
    return not any(intersects(sight, wall) for wall in walls)


def ray_count(radius: float) -> int:
    return max(MIN_RAY_COUNT, math.floor(radius * 2))


def field_of_view(origin: Point, radius: float, walls: Sequence[Wall], step: float = 1.0) -> list[Point]:
    """Cast equally spaced rays around `origin` and return one boundary point per ray.

    Each ray is walked outward in `step` increments up to `radius`; the first
    sampled distance whose sight line crosses a wall ends the ray there.
    This approximates the visible region; precision is bounded by `step`
    and the ray count.
    """

    rays = ray_count(radius)
    points: list[Point] = []

    for i in range(rays):
        angle = (i / rays) * math.pi * 2
        cos_a = math.cos(angle)
        sin_a = math.sin(angle)
        reach = radius

        if step > 0:
            distance = step
            while distance <= radius:
                candidate = Point(origin.x + cos_a * distance, origin.y + sin_a * distance)
                if not has_line_of_sight(origin, candidate, walls):
                    reach = min(reach, distance)
                    break
                distance += step

        points.append(Point(origin.x + cos_a * reach, origin.y + sin_a * reach))

    return points


def _angle_from(origin: Point, p: Point) -> float:
    return math.atan2(p.y - origin.y, p.x - origin.x)


def vision_polygon(origin: Point, fov_points: Iterable[Point]) -> list[Point]:
    """Fan polygon: origin followed by the boundary points sorted by angle."""

    ordered = sorted(fov_points, key=lambda p: _angle_from(origin, p))
    return [origin, *ordered]


def token_vision(
    position: Point,
    vision_radius_feet: float | None,
    walls: Sequence[Wall],
    grid_size: float,
) -> list[Point]:
    if not vision_radius_feet or vision_radius_feet <= 0:
        return []

    radius = vision_radius_feet / FEET_PER_GRID_SQUARE
    return vision_polygon(position, field_of_view(position, radius, walls, grid_size))


def _near(a: Point, b: Point) -> bool:
    return abs(a.x - b.x) < MERGE_TOLERANCE and abs(a.y - b.y) < MERGE_TOLERANCE


def merge_polygons(polygons: Sequence[Sequence[Point]]) -> list[Point]:
    """Combine polygons into one point list, dropping near-duplicate points.

    This is not a geometric union: overlapping shapes are not collapsed.
    A point is kept only if no earlier point in the concatenation is near it.
    """

    if not polygons:
        return []
    if len(polygons) == 1:
        return list(polygons[0])

    all_points = [p for polygon in polygons for p in polygon]
    return [p for idx, p in enumerate(all_points) if not any(_near(q, p) for q in all_points[:idx])]
