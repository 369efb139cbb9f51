from __future__ import annotations

from datetime import UTC, datetime

from tabletop.api.models import MapState
from tabletop.session_store import create_token, save_map


def _h(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


def _seed(r, session_id: str, player_id: str) -> None:  # type: ignore[no-untyped-def]
    save_map(
        r=r,
        map_state=MapState(
            session_id=session_id, name="Hall", width=50, height=50, grid_size=1, uploaded_at=datetime.now(tz=UTC)
        ),
    )
    create_token(r=r, session_id=session_id, fields={"name": "Mine", "x": 10, "y": 10, "vision_radius": 30, "owner_id": player_id})
    create_token(r=r, session_id=session_id, fields={"name": "Theirs", "x": 30, "y": 30, "vision_radius": 30, "owner_id": "p2"})
    create_token(r=r, session_id=session_id, fields={"name": "Blind", "x": 20, "y": 20, "owner_id": player_id})


def test_vision_without_map_is_empty(client_and_redis, table) -> None:
    client, _ = client_and_redis

    res = client.get(f"/sessions/{table.session_id}/vision", headers=_h(table.dm_id))
    assert res.json() == {"polygons": [], "merged": []}


def test_player_sees_only_through_own_tokens(client_and_redis, table) -> None:
    client, r = client_and_redis
    _seed(r, table.session_id, table.player_id)

    vision = client.get(f"/sessions/{table.session_id}/vision", headers=_h(table.player_id)).json()

    assert len(vision["polygons"]) == 1
    assert vision["polygons"][0][0] == {"x": 10.0, "y": 10.0}
    assert vision["merged"] == vision["polygons"][0]


def test_dm_sees_through_every_token(client_and_redis, table) -> None:
    client, r = client_and_redis
    _seed(r, table.session_id, table.player_id)

    vision = client.get(f"/sessions/{table.session_id}/vision", headers=_h(table.dm_id)).json()

    assert len(vision["polygons"]) == 2
    # Disjoint fans share no near-duplicate points, so the merge keeps all of them.
    assert len(vision["merged"]) == sum(len(p) for p in vision["polygons"])


def test_vision_requires_access(client_and_redis, table) -> None:
    client, _ = client_and_redis

    assert client.get(f"/sessions/{table.session_id}/vision", headers=_h(table.outsider_id)).status_code == 403
