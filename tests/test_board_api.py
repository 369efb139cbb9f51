from __future__ import annotations

from datetime import UTC, datetime, timedelta

from tabletop.session_store import add_campaign_member, create_token, delete_token, initiative_order


def _h(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


T0 = datetime(2026, 3, 1, 20, 0, tzinfo=UTC)
STROKE = [{"x": 0, "y": 0}, {"x": 10, "y": 5}]


def test_drawings_listed_in_creation_order(client_and_redis, table) -> None:
    client, _ = client_and_redis
    sid = table.session_id

    res = client.post(f"/sessions/{sid}/drawings", json={"path": STROKE}, headers=_h(table.player_id))
    assert res.status_code == 201
    first = res.json()
    assert (first["color"], first["stroke_width"], first["user_id"]) == ("#000000", 2, table.player_id)

    res = client.post(
        f"/sessions/{sid}/drawings",
        json={"path": STROKE + [{"x": 20, "y": 0}], "color": "#00ff00", "stroke_width": 5},
        headers=_h(table.dm_id),
    )
    assert res.status_code == 201

    drawings = client.get(f"/sessions/{sid}/drawings", headers=_h(table.player_id)).json()["drawings"]
    assert [d["user_id"] for d in drawings] == [table.player_id, table.dm_id]
    assert drawings[1]["path"][2] == {"x": 20.0, "y": 0.0}


def test_drawing_needs_two_points(client_and_redis, table) -> None:
    client, _ = client_and_redis

    res = client.post(f"/sessions/{table.session_id}/drawings", json={"path": STROKE[:1]}, headers=_h(table.dm_id))
    assert res.status_code == 400
    assert "at least 2 points" in res.json()["detail"]

    res = client.post(
        f"/sessions/{table.session_id}/drawings", json={"path": STROKE, "stroke_width": 21}, headers=_h(table.dm_id)
    )
    assert res.status_code == 422


def test_drawing_access(client_and_redis, table) -> None:
    client, r = client_and_redis
    sid = table.session_id
    add_campaign_member(r=r, campaign_id=table.campaign_id, user_id="player-2")

    assert client.get(f"/sessions/{sid}/drawings", headers=_h(table.outsider_id)).status_code == 403
    assert client.post(f"/sessions/{sid}/drawings", json={"path": STROKE}, headers=_h(table.outsider_id)).status_code == 403

    mine = client.post(f"/sessions/{sid}/drawings", json={"path": STROKE}, headers=_h(table.player_id)).json()
    other = client.post(f"/sessions/{sid}/drawings", json={"path": STROKE}, headers=_h("player-2")).json()

    res = client.delete(f"/drawings/{other['drawing_id']}", headers=_h(table.player_id))
    assert res.status_code == 403
    assert res.json()["detail"] == "You can only delete your own drawings"

    assert client.delete(f"/drawings/{mine['drawing_id']}", headers=_h(table.player_id)).json() == {"success": True}
    assert client.delete(f"/drawings/{other['drawing_id']}", headers=_h(table.dm_id)).status_code == 200
    assert client.delete(f"/drawings/{mine['drawing_id']}", headers=_h(table.dm_id)).status_code == 404
    assert client.get(f"/sessions/{sid}/drawings", headers=_h(table.dm_id)).json() == {"drawings": []}


def test_spell_effect_lifecycle(client_and_redis, table) -> None:
    client, _ = client_and_redis
    sid = table.session_id

    res = client.post(
        f"/sessions/{sid}/spell-effects",
        json={"type": "SPHERE", "x": 100, "y": 100, "radius": 20},
        headers=_h(table.player_id),
    )
    assert res.status_code == 201
    fireball = res.json()
    assert (fireball["color"], fireball["opacity"], fireball["width"]) == ("#ff0000", 0.3, None)

    res = client.patch(
        f"/spell-effects/{fireball['effect_id']}", json={"x": 140, "opacity": 0.5}, headers=_h(table.player_id)
    )
    assert res.status_code == 200
    moved = res.json()
    assert (moved["x"], moved["y"], moved["radius"], moved["opacity"]) == (140, 100, 20, 0.5)
    assert moved["updated_at"] >= fireball["updated_at"]

    client.post(f"/sessions/{sid}/spell-effects", json={"type": "CONE", "x": 0, "y": 0, "angle": 90}, headers=_h(table.dm_id))
    effects = client.get(f"/sessions/{sid}/spell-effects", headers=_h(table.player_id)).json()["effects"]
    assert [e["type"] for e in effects] == ["SPHERE", "CONE"]

    assert client.delete(f"/spell-effects/{fireball['effect_id']}", headers=_h(table.dm_id)).status_code == 200
    assert client.patch(f"/spell-effects/{fireball['effect_id']}", json={"x": 1}, headers=_h(table.dm_id)).status_code == 404


def test_spell_effect_validation_and_ownership(client_and_redis, table) -> None:
    client, r = client_and_redis
    sid = table.session_id
    add_campaign_member(r=r, campaign_id=table.campaign_id, user_id="player-2")

    assert (
        client.post(f"/sessions/{sid}/spell-effects", json={"type": "AURA", "x": 0, "y": 0}, headers=_h(table.dm_id)).status_code
        == 422
    )
    assert (
        client.post(
            f"/sessions/{sid}/spell-effects", json={"type": "LINE", "x": 0, "y": 0, "opacity": 1.5}, headers=_h(table.dm_id)
        ).status_code
        == 422
    )

    wall = client.post(f"/sessions/{sid}/spell-effects", json={"type": "LINE", "x": 0, "y": 0}, headers=_h(table.player_id)).json()

    res = client.patch(f"/spell-effects/{wall['effect_id']}", json={"x": 5}, headers=_h("player-2"))
    assert res.status_code == 403
    assert res.json()["detail"] == "You can only update your own effects"
    assert client.delete(f"/spell-effects/{wall['effect_id']}", headers=_h("player-2")).status_code == 403
    assert client.patch(f"/spell-effects/{wall['effect_id']}", json={"x": 5}, headers=_h(table.dm_id)).status_code == 200


def test_initiative_order(client_and_redis, table) -> None:
    client, r = client_and_redis
    sid = table.session_id
    goblin = create_token(r=r, session_id=sid, fields={"name": "Goblin", "x": 0, "y": 0}, now=T0)
    ranger = create_token(
        r=r,
        session_id=sid,
        fields={"name": "Ranger", "x": 0, "y": 0, "owner_id": table.player_id},
        now=T0 + timedelta(seconds=1),
    )
    wolf = create_token(r=r, session_id=sid, fields={"name": "Wolf", "x": 0, "y": 0}, now=T0 + timedelta(seconds=2))

    order = client.get(f"/sessions/{sid}/initiative", headers=_h(table.player_id)).json()["order"]
    assert [(e["name"], e["initiative"]) for e in order] == [("Goblin", 0), ("Ranger", 0), ("Wolf", 0)]

    client.put(f"/sessions/{sid}/initiative", json={"token_id": wolf.token_id, "initiative": 12}, headers=_h(table.dm_id))
    res = client.put(
        f"/sessions/{sid}/initiative", json={"token_id": ranger.token_id, "initiative": 12}, headers=_h(table.dm_id)
    )
    assert res.status_code == 200
    # Ties keep creation order.
    assert [(e["name"], e["initiative"]) for e in res.json()["order"]] == [("Ranger", 12), ("Wolf", 12), ("Goblin", 0)]
    assert res.json()["order"][0]["owner_id"] == table.player_id

    delete_token(r=r, token=wolf)
    assert [e.token_id for e in initiative_order(r=r, session_id=sid)] == [ranger.token_id, goblin.token_id]


def test_initiative_is_set_by_the_dm_only(client_and_redis, table) -> None:
    client, r = client_and_redis
    sid = table.session_id
    token = create_token(r=r, session_id=sid, fields={"name": "Goblin", "x": 0, "y": 0})
    elsewhere = create_token(r=r, session_id="other-session", fields={"name": "Imp", "x": 0, "y": 0})

    res = client.put(f"/sessions/{sid}/initiative", json={"token_id": token.token_id, "initiative": 3}, headers=_h(table.player_id))
    assert res.status_code == 403
    assert res.json()["detail"] == "Only the DM can set initiative"

    assert client.put(f"/sessions/{sid}/initiative", json={"token_id": "nope", "initiative": 3}, headers=_h(table.dm_id)).status_code == 404
    assert (
        client.put(
            f"/sessions/{sid}/initiative", json={"token_id": elsewhere.token_id, "initiative": 3}, headers=_h(table.dm_id)
        ).status_code
        == 404
    )
    assert client.get(f"/sessions/{sid}/initiative", headers=_h(table.outsider_id)).status_code == 403
