from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from datetime import UTC, datetime

import redis

from tabletop.api.models import MapState, MapUploadRequest, WallModel
from tabletop.errors import BadRequestError
from tabletop.session_store import save_map


@dataclass(slots=True)
class ParsedVTT:
    walls: list[WallModel] = field(default_factory=list)
    doors: list[WallModel] = field(default_factory=list)


def _parse_segment(line: str) -> WallModel | None:
    parts = [p.strip() for p in line.split(",")]
    if len(parts) != 4:
        return None
    try:
        x1, y1, x2, y2 = (float(p) for p in parts)
    except ValueError:
        return None
    return WallModel(x1=x1, y1=y1, x2=x2, y2=y2)


def parse_vtt(content: str) -> ParsedVTT:
    """Parse the sectioned VTT text format.

    Sections start with `[walls]`, `[doors]` or `[lights]`; wall and door lines
    are `x1,y1,x2,y2` in grid units. Malformed lines are skipped. Lights are
    not used by the vision engine.
    """

    parsed = ParsedVTT()
    section = ""
    for raw in content.splitlines():
        line = raw.strip()
        if line.startswith("[") and line.endswith("]"):
            section = line[1:-1].strip().lower()
            continue
        if not line:
            continue

        if section == "walls":
            seg = _parse_segment(line)
            if seg is not None:
                parsed.walls.append(seg)
        elif section == "doors":
            seg = _parse_segment(line)
            if seg is not None:
                parsed.doors.append(seg)

    return parsed


def upload_map(*, r: redis.Redis, session_id: str, payload: MapUploadRequest) -> MapState:
    try:
        content = base64.b64decode(payload.vtt_file, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise BadRequestError("vtt_file must be base64-encoded UTF-8 text") from e

    parsed = parse_vtt(content)
    map_state = MapState(
        session_id=session_id,
        name=payload.name,
        width=payload.width,
        height=payload.height,
        grid_size=payload.grid_size,
        walls=parsed.walls,
        doors=parsed.doors,
        uploaded_at=datetime.now(tz=UTC),
    )
    save_map(r=r, map_state=map_state)
    return map_state
