from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import redis

from tabletop.api.models import (
    Campaign,
    ChatMessage,
    ChatMessageType,
    Drawing,
    EffectType,
    GameSession,
    InitiativeEntry,
    MapState,
    Polygon,
    SpellEffect,
    Token,
)
from tabletop.errors import NotFoundError


KEY_PREFIX = "vtt:"


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _new_id() -> str:
    return uuid4().hex


def _campaign_key(campaign_id: str) -> str:
    return f"{KEY_PREFIX}campaign:{campaign_id}"


def _members_key(campaign_id: str) -> str:
    return f"{KEY_PREFIX}campaign:{campaign_id}:members"


def _session_key(session_id: str) -> str:
    return f"{KEY_PREFIX}session:{session_id}"


def _participants_key(session_id: str) -> str:
    return f"{_session_key(session_id)}:participants"


def _map_key(session_id: str) -> str:
    return f"{_session_key(session_id)}:map"


def _tokens_key(session_id: str) -> str:
    return f"{_session_key(session_id)}:tokens"


def _tokens_updated_key(session_id: str) -> str:
    return f"{_tokens_key(session_id)}:updated"


def _chat_key(session_id: str) -> str:
    return f"{_session_key(session_id)}:chat"


def _chat_created_key(session_id: str) -> str:
    return f"{_chat_key(session_id)}:created"


def _token_index_key() -> str:
    # token_id -> session_id, so token routes don't need the session in the path.
    return f"{KEY_PREFIX}token-sessions"


def _drawings_key(session_id: str) -> str:
    return f"{_session_key(session_id)}:drawings"


def _drawings_created_key(session_id: str) -> str:
    return f"{_drawings_key(session_id)}:created"


def _drawing_index_key() -> str:
    return f"{KEY_PREFIX}drawing-sessions"


def _effects_key(session_id: str) -> str:
    return f"{_session_key(session_id)}:effects"


def _effects_created_key(session_id: str) -> str:
    return f"{_effects_key(session_id)}:created"


def _effect_index_key() -> str:
    return f"{KEY_PREFIX}effect-sessions"


def _initiative_key(session_id: str) -> str:
    # token_id -> initiative score
    return f"{_session_key(session_id)}:initiative"


# ---- campaigns & sessions ----


def create_campaign(*, r: redis.Redis, name: str, dm_id: str) -> Campaign:
    campaign = Campaign(campaign_id=_new_id(), name=name, dm_id=dm_id, created_at=_now())
    r.set(_campaign_key(campaign.campaign_id), campaign.model_dump_json())
    return campaign


def get_campaign(*, r: redis.Redis, campaign_id: str) -> Campaign | None:
    raw = r.get(_campaign_key(campaign_id))
    if not raw:
        return None
    return Campaign.model_validate_json(raw)


def require_campaign(*, r: redis.Redis, campaign_id: str) -> Campaign:
    campaign = get_campaign(r=r, campaign_id=campaign_id)
    if campaign is None:
        raise NotFoundError("Campaign not found")
    return campaign


def add_campaign_member(*, r: redis.Redis, campaign_id: str, user_id: str) -> None:
    r.sadd(_members_key(campaign_id), user_id)


def is_campaign_member(*, r: redis.Redis, campaign_id: str, user_id: str) -> bool:
    return bool(r.sismember(_members_key(campaign_id), user_id))


def create_session(*, r: redis.Redis, campaign_id: str, name: str) -> GameSession:
    session = GameSession(session_id=_new_id(), campaign_id=campaign_id, name=name, created_at=_now())
    r.set(_session_key(session.session_id), session.model_dump_json())
    return session


def get_session(*, r: redis.Redis, session_id: str) -> GameSession | None:
    raw = r.get(_session_key(session_id))
    if not raw:
        return None
    return GameSession.model_validate_json(raw)


def require_session(*, r: redis.Redis, session_id: str) -> GameSession:
    session = get_session(r=r, session_id=session_id)
    if session is None:
        raise NotFoundError("Session not found")
    return session


def add_participant(*, r: redis.Redis, session_id: str, user_id: str) -> None:
    r.sadd(_participants_key(session_id), user_id)


def is_participant(*, r: redis.Redis, session_id: str, user_id: str) -> bool:
    return bool(r.sismember(_participants_key(session_id), user_id))


# ---- maps ----


def save_map(*, r: redis.Redis, map_state: MapState) -> None:
    r.set(_map_key(map_state.session_id), map_state.model_dump_json())


def get_map(*, r: redis.Redis, session_id: str) -> MapState | None:
    raw = r.get(_map_key(session_id))
    if not raw:
        return None
    return MapState.model_validate_json(raw)


# ---- tokens ----


def save_token(*, r: redis.Redis, token: Token, now: datetime | None = None) -> Token:
    """Persist a token and bump its `updated_at`, which is what the change feed watches."""

    token.updated_at = now or _now()
    pipe = r.pipeline()
    pipe.hset(_tokens_key(token.session_id), token.token_id, token.model_dump_json())
    pipe.zadd(_tokens_updated_key(token.session_id), {token.token_id: token.updated_at.timestamp()})
    pipe.hset(_token_index_key(), token.token_id, token.session_id)
    pipe.execute()
    return token


def create_token(*, r: redis.Redis, session_id: str, fields: dict[str, Any], now: datetime | None = None) -> Token:
    ts = now or _now()
    token = Token(token_id=_new_id(), session_id=session_id, created_at=ts, updated_at=ts, **fields)
    return save_token(r=r, token=token, now=ts)


def get_token(*, r: redis.Redis, token_id: str) -> Token | None:
    session_id = r.hget(_token_index_key(), token_id)
    if not session_id:
        return None
    raw = r.hget(_tokens_key(session_id), token_id)
    if not raw:
        return None
    return Token.model_validate_json(raw)


def require_token(*, r: redis.Redis, token_id: str) -> Token:
    token = get_token(r=r, token_id=token_id)
    if token is None:
        raise NotFoundError("Token not found")
    return token


def delete_token(*, r: redis.Redis, token: Token) -> None:
    pipe = r.pipeline()
    pipe.hdel(_tokens_key(token.session_id), token.token_id)
    pipe.zrem(_tokens_updated_key(token.session_id), token.token_id)
    pipe.hdel(_token_index_key(), token.token_id)
    pipe.hdel(_initiative_key(token.session_id), token.token_id)
    pipe.execute()


def list_tokens(*, r: redis.Redis, session_id: str) -> list[Token]:
    tokens = [Token.model_validate_json(raw) for raw in r.hvals(_tokens_key(session_id))]
    tokens.sort(key=lambda t: t.created_at)
    return tokens


def tokens_updated_since(*, r: redis.Redis, session_id: str, since: datetime) -> list[Token]:
    """Tokens whose `updated_at` is strictly after `since`."""

    ids = r.zrangebyscore(_tokens_updated_key(session_id), f"({since.timestamp()}", "+inf")
    if not ids:
        return []
    raws = r.hmget(_tokens_key(session_id), ids)
    return [Token.model_validate_json(raw) for raw in raws if raw]


# ---- initiative ----


def set_initiative(*, r: redis.Redis, session_id: str, token_id: str, initiative: int) -> None:
    r.hset(_initiative_key(session_id), token_id, initiative)


def initiative_order(*, r: redis.Redis, session_id: str) -> list[InitiativeEntry]:
    """Every token in the session, highest initiative first. Unscored tokens count as 0."""

    scores = r.hgetall(_initiative_key(session_id))
    entries = [
        InitiativeEntry(
            token_id=token.token_id,
            name=token.name,
            initiative=int(scores.get(token.token_id, 0)),
            owner_id=token.owner_id,
        )
        for token in list_tokens(r=r, session_id=session_id)
    ]
    # sort is stable, so ties stay in creation order
    entries.sort(key=lambda e: e.initiative, reverse=True)
    return entries


# ---- chat ----


def add_chat_message(
    *,
    r: redis.Redis,
    session_id: str,
    user_id: str,
    content: str,
    type: ChatMessageType = ChatMessageType.text,
    now: datetime | None = None,
) -> ChatMessage:
    message = ChatMessage(
        message_id=_new_id(),
        session_id=session_id,
        user_id=user_id,
        content=content,
        type=type,
        created_at=now or _now(),
    )
    pipe = r.pipeline()
    pipe.hset(_chat_key(session_id), message.message_id, message.model_dump_json())
    pipe.zadd(_chat_created_key(session_id), {message.message_id: message.created_at.timestamp()})
    pipe.execute()
    return message


def _load_messages(*, r: redis.Redis, session_id: str, ids: list[str]) -> list[ChatMessage]:
    if not ids:
        return []
    raws = r.hmget(_chat_key(session_id), ids)
    return [ChatMessage.model_validate_json(raw) for raw in raws if raw]


def list_messages(
    *,
    r: redis.Redis,
    session_id: str,
    limit: int = 50,
    before: str | None = None,
) -> tuple[list[ChatMessage], str | None]:
    """Newest `limit` messages (older than `before` if given), oldest first.

    Returns the page and the cursor for the next older page, if any.
    """

    index_key = _chat_created_key(session_id)
    start = 0
    if before is not None:
        rev_rank = r.zrevrank(index_key, before)
        if rev_rank is None:
            raise NotFoundError("Cursor message not found")
        start = rev_rank + 1

    # One extra entry tells us whether an older page exists.
    ids = r.zrevrange(index_key, start, start + limit)
    page_ids = ids[:limit]
    next_cursor = page_ids[-1] if len(ids) > limit else None

    page = _load_messages(r=r, session_id=session_id, ids=list(reversed(page_ids)))
    return page, next_cursor


def messages_created_since(*, r: redis.Redis, session_id: str, since: datetime) -> list[ChatMessage]:
    """Messages created strictly after `since`, in ascending creation order."""

    ids = r.zrangebyscore(_chat_created_key(session_id), f"({since.timestamp()}", "+inf")
    return _load_messages(r=r, session_id=session_id, ids=list(ids))


# ---- drawings ----


def create_drawing(
    *,
    r: redis.Redis,
    session_id: str,
    user_id: str,
    path: Polygon,
    color: str = "#000000",
    stroke_width: int = 2,
    now: datetime | None = None,
) -> Drawing:
    drawing = Drawing(
        drawing_id=_new_id(),
        session_id=session_id,
        user_id=user_id,
        path=path,
        color=color,
        stroke_width=stroke_width,
        created_at=now or _now(),
    )
    pipe = r.pipeline()
    pipe.hset(_drawings_key(session_id), drawing.drawing_id, drawing.model_dump_json())
    pipe.zadd(_drawings_created_key(session_id), {drawing.drawing_id: drawing.created_at.timestamp()})
    pipe.hset(_drawing_index_key(), drawing.drawing_id, session_id)
    pipe.execute()
    return drawing


def get_drawing(*, r: redis.Redis, drawing_id: str) -> Drawing | None:
    session_id = r.hget(_drawing_index_key(), drawing_id)
    if not session_id:
        return None
    raw = r.hget(_drawings_key(session_id), drawing_id)
    if not raw:
        return None
    return Drawing.model_validate_json(raw)


def require_drawing(*, r: redis.Redis, drawing_id: str) -> Drawing:
    drawing = get_drawing(r=r, drawing_id=drawing_id)
    if drawing is None:
        raise NotFoundError("Drawing not found")
    return drawing


def list_drawings(*, r: redis.Redis, session_id: str) -> list[Drawing]:
    """Oldest first."""

    ids = r.zrange(_drawings_created_key(session_id), 0, -1)
    if not ids:
        return []
    raws = r.hmget(_drawings_key(session_id), ids)
    return [Drawing.model_validate_json(raw) for raw in raws if raw]


def delete_drawing(*, r: redis.Redis, drawing: Drawing) -> None:
    pipe = r.pipeline()
    pipe.hdel(_drawings_key(drawing.session_id), drawing.drawing_id)
    pipe.zrem(_drawings_created_key(drawing.session_id), drawing.drawing_id)
    pipe.hdel(_drawing_index_key(), drawing.drawing_id)
    pipe.execute()


# ---- spell effects ----


def save_spell_effect(*, r: redis.Redis, effect: SpellEffect, now: datetime | None = None) -> SpellEffect:
    effect.updated_at = now or _now()
    pipe = r.pipeline()
    pipe.hset(_effects_key(effect.session_id), effect.effect_id, effect.model_dump_json())
    # Creation order never changes, so only the first write lands in the index.
    pipe.zadd(_effects_created_key(effect.session_id), {effect.effect_id: effect.created_at.timestamp()}, nx=True)
    pipe.hset(_effect_index_key(), effect.effect_id, effect.session_id)
    pipe.execute()
    return effect


def create_spell_effect(
    *,
    r: redis.Redis,
    session_id: str,
    user_id: str,
    type: EffectType,
    fields: dict[str, Any],
    now: datetime | None = None,
) -> SpellEffect:
    ts = now or _now()
    effect = SpellEffect(
        effect_id=_new_id(),
        session_id=session_id,
        user_id=user_id,
        type=type,
        created_at=ts,
        updated_at=ts,
        **fields,
    )
    return save_spell_effect(r=r, effect=effect, now=ts)


def get_spell_effect(*, r: redis.Redis, effect_id: str) -> SpellEffect | None:
    session_id = r.hget(_effect_index_key(), effect_id)
    if not session_id:
        return None
    raw = r.hget(_effects_key(session_id), effect_id)
    if not raw:
        return None
    return SpellEffect.model_validate_json(raw)


def require_spell_effect(*, r: redis.Redis, effect_id: str) -> SpellEffect:
    effect = get_spell_effect(r=r, effect_id=effect_id)
    if effect is None:
        raise NotFoundError("Effect not found")
    return effect


def list_spell_effects(*, r: redis.Redis, session_id: str) -> list[SpellEffect]:
    ids = r.zrange(_effects_created_key(session_id), 0, -1)
    if not ids:
        return []
    raws = r.hmget(_effects_key(session_id), ids)
    return [SpellEffect.model_validate_json(raw) for raw in raws if raw]


def delete_spell_effect(*, r: redis.Redis, effect: SpellEffect) -> None:
    pipe = r.pipeline()
    pipe.hdel(_effects_key(effect.session_id), effect.effect_id)
    pipe.zrem(_effects_created_key(effect.session_id), effect.effect_id)
    pipe.hdel(_effect_index_key(), effect.effect_id)
    pipe.execute()
