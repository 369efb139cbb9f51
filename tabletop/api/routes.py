from __future__ import annotations

import logging

import redis
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from tabletop.access import SessionAccess, check_session_access, require_dm, require_owner_or_dm
from tabletop.api.deps import get_current_user_id, get_feed_settings, get_redis
from tabletop.api.models import (
    Campaign,
    CampaignCreateRequest,
    ChatMessage,
    DiceRollRequest,
    DiceRollResponse,
    Drawing,
    DrawingCreateRequest,
    DrawingListResponse,
    FogOfWarState,
    FogUpdateRequest,
    GameSession,
    InitiativeOrder,
    InitiativeSetRequest,
    MapState,
    MapUploadRequest,
    MemberAddRequest,
    MessagePage,
    Polygon,
    RevealAreaRequest,
    SendMessageRequest,
    SessionCreateRequest,
    SpellEffect,
    SpellEffectCreateRequest,
    SpellEffectListResponse,
    SpellEffectUpdateRequest,
    SuccessResponse,
    Token,
    TokenCreateRequest,
    TokenListResponse,
    TokenUpdateRequest,
    VisionResponse,
)
from tabletop.change_feed import ChangeFeed
from tabletop.dice import roll_to_chat
from tabletop.errors import BadRequestError, ForbiddenError, TabletopError
from tabletop.fog_store import auto_reveal, clear_fog, get_fog, replace_fog, reveal_area
from tabletop.maps import upload_map
from tabletop.session_store import (
    add_campaign_member,
    add_chat_message,
    add_participant,
    create_campaign,
    create_drawing,
    create_session,
    create_spell_effect,
    create_token,
    delete_drawing,
    delete_spell_effect,
    delete_token,
    get_map,
    initiative_order,
    is_campaign_member,
    list_drawings,
    list_messages,
    list_spell_effects,
    list_tokens,
    require_campaign,
    require_drawing,
    require_session,
    require_spell_effect,
    require_token,
    save_spell_effect,
    save_token,
    set_initiative,
)
from tabletop.settings import FeedSettings
from tabletop.streams import SSE_HEADERS, live_session_stream
from tabletop.visibility import compute_session_vision

logger = logging.getLogger(__name__)

router = APIRouter()

MIN_POLYGON_POINTS = 3
MIN_DRAWING_POINTS = 2


def _http_error(e: TabletopError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=str(e))


def _session_access(r: redis.Redis, session_id: str, user_id: str) -> SessionAccess:
    try:
        return check_session_access(r=r, session_id=session_id, user_id=user_id)
    except TabletopError as e:
        raise _http_error(e) from e


def _validate_polygon(polygon: Polygon) -> None:
    if len(polygon) < MIN_POLYGON_POINTS:
        raise BadRequestError(f"A polygon needs at least {MIN_POLYGON_POINTS} points")


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


# ---- campaigns & sessions ----


@router.post("/campaigns", response_model=Campaign, status_code=status.HTTP_201_CREATED)
async def create_campaign_route(
    payload: CampaignCreateRequest,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> Campaign:
    return create_campaign(r=r, name=payload.name, dm_id=user_id)


@router.post("/campaigns/{campaign_id}/members", response_model=SuccessResponse)
async def add_member_route(
    campaign_id: str,
    payload: MemberAddRequest,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> SuccessResponse:
    try:
        campaign = require_campaign(r=r, campaign_id=campaign_id)
        if campaign.dm_id != user_id:
            raise ForbiddenError("Only the DM can add campaign members")
    except TabletopError as e:
        raise _http_error(e) from e

    add_campaign_member(r=r, campaign_id=campaign_id, user_id=payload.user_id)
    return SuccessResponse()


@router.post("/campaigns/{campaign_id}/sessions", response_model=GameSession, status_code=status.HTTP_201_CREATED)
async def create_session_route(
    campaign_id: str,
    payload: SessionCreateRequest,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> GameSession:
    try:
        campaign = require_campaign(r=r, campaign_id=campaign_id)
        if campaign.dm_id != user_id:
            raise ForbiddenError("Only the DM can create sessions")
    except TabletopError as e:
        raise _http_error(e) from e

    return create_session(r=r, campaign_id=campaign_id, name=payload.name)


@router.post("/sessions/{session_id}/join", response_model=SuccessResponse)
async def join_session_route(
    session_id: str,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> SuccessResponse:
    try:
        session = require_session(r=r, session_id=session_id)
        campaign = require_campaign(r=r, campaign_id=session.campaign_id)
    except TabletopError as e:
        raise _http_error(e) from e

    if campaign.dm_id == user_id:
        return SuccessResponse()
    if not is_campaign_member(r=r, campaign_id=campaign.campaign_id, user_id=user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You need a character linked to this campaign to join the session",
        )

    add_participant(r=r, session_id=session_id, user_id=user_id)
    return SuccessResponse()


# ---- live updates ----


@router.get("/sessions/{session_id}/events")
async def session_events_route(
    session_id: str,
    request: Request,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
    settings: FeedSettings = Depends(get_feed_settings),
) -> StreamingResponse:
    """Server-sent events: `tokens`, `messages` and `ping` deltas.

    Access is checked once here, not per tick. No backlog is replayed; clients
    re-read full state after (re)connecting.
    """

    _session_access(r, session_id, user_id)

    feed = ChangeFeed(r=r, session_id=session_id)
    return StreamingResponse(
        live_session_stream(request=request, feed=feed, settings=settings),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


# ---- fog of war ----


@router.get("/sessions/{session_id}/fog", response_model=FogOfWarState | None)
async def get_fog_route(
    session_id: str,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> FogOfWarState | None:
    _session_access(r, session_id, user_id)
    return get_fog(r=r, session_id=session_id)


@router.post("/sessions/{session_id}/fog/reveal", response_model=FogOfWarState)
async def reveal_area_route(
    session_id: str,
    payload: RevealAreaRequest,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> FogOfWarState:
    access = _session_access(r, session_id, user_id)
    try:
        require_dm(access, action="reveal fog of war")
        _validate_polygon(payload.polygon)
        return reveal_area(r=r, session_id=session_id, polygon=payload.polygon, actor_is_dm=access.is_dm)
    except TabletopError as e:
        raise _http_error(e) from e


@router.put("/sessions/{session_id}/fog", response_model=FogOfWarState)
async def update_fog_route(
    session_id: str,
    payload: FogUpdateRequest,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> FogOfWarState:
    access = _session_access(r, session_id, user_id)
    try:
        require_dm(access, action="update fog of war")
        for polygon in payload.revealed_areas:
            _validate_polygon(polygon)
        return replace_fog(r=r, session_id=session_id, revealed_areas=payload.revealed_areas, actor_is_dm=access.is_dm)
    except TabletopError as e:
        raise _http_error(e) from e


@router.post("/sessions/{session_id}/fog/clear", response_model=SuccessResponse)
async def clear_fog_route(
    session_id: str,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> SuccessResponse:
    access = _session_access(r, session_id, user_id)
    try:
        clear_fog(r=r, session_id=session_id, actor_is_dm=access.is_dm)
    except TabletopError as e:
        raise _http_error(e) from e
    return SuccessResponse()


@router.post("/sessions/{session_id}/fog/auto-reveal", response_model=FogOfWarState)
async def auto_reveal_route(
    session_id: str,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> FogOfWarState:
    access = _session_access(r, session_id, user_id)
    try:
        return auto_reveal(r=r, session_id=session_id, actor_is_dm=access.is_dm)
    except TabletopError as e:
        raise _http_error(e) from e


# ---- vision & maps ----


@router.get("/sessions/{session_id}/vision", response_model=VisionResponse)
async def vision_route(
    session_id: str,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> VisionResponse:
    access = _session_access(r, session_id, user_id)
    return compute_session_vision(r=r, session_id=session_id, user_id=user_id, is_dm=access.is_dm)


@router.put("/sessions/{session_id}/map", response_model=MapState)
async def upload_map_route(
    session_id: str,
    payload: MapUploadRequest,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> MapState:
    access = _session_access(r, session_id, user_id)
    try:
        require_dm(access, action="upload maps")
        return upload_map(r=r, session_id=session_id, payload=payload)
    except TabletopError as e:
        raise _http_error(e) from e


@router.get("/sessions/{session_id}/map", response_model=MapState)
async def get_map_route(
    session_id: str,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> MapState:
    _session_access(r, session_id, user_id)
    map_state = get_map(r=r, session_id=session_id)
    if map_state is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No map uploaded for this session")
    return map_state


# ---- tokens ----


@router.get("/sessions/{session_id}/tokens", response_model=TokenListResponse)
async def list_tokens_route(
    session_id: str,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> TokenListResponse:
    _session_access(r, session_id, user_id)
    return TokenListResponse(tokens=list_tokens(r=r, session_id=session_id))


@router.post("/sessions/{session_id}/tokens", response_model=Token, status_code=status.HTTP_201_CREATED)
async def create_token_route(
    session_id: str,
    payload: TokenCreateRequest,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> Token:
    access = _session_access(r, session_id, user_id)
    fields = payload.model_dump()
    if not access.is_dm:
        if payload.owner_id not in (None, user_id):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You can only create your own tokens")
        fields["owner_id"] = user_id
    return create_token(r=r, session_id=session_id, fields=fields)


@router.patch("/tokens/{token_id}", response_model=Token)
async def update_token_route(
    token_id: str,
    payload: TokenUpdateRequest,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> Token:
    try:
        token = require_token(r=r, token_id=token_id)
        access = check_session_access(r=r, session_id=token.session_id, user_id=user_id)
        require_owner_or_dm(access, token.owner_id, action="update your own tokens")
    except TabletopError as e:
        raise _http_error(e) from e

    try:
        updated = Token.model_validate({**token.model_dump(), **payload.model_dump(exclude_unset=True)})
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return save_token(r=r, token=updated)


@router.delete("/tokens/{token_id}", response_model=SuccessResponse)
async def delete_token_route(
    token_id: str,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> SuccessResponse:
    try:
        token = require_token(r=r, token_id=token_id)
        access = check_session_access(r=r, session_id=token.session_id, user_id=user_id)
        require_dm(access, action="delete tokens")
    except TabletopError as e:
        raise _http_error(e) from e

    delete_token(r=r, token=token)
    return SuccessResponse()


# ---- initiative ----


@router.get("/sessions/{session_id}/initiative", response_model=InitiativeOrder)
async def get_initiative_route(
    session_id: str,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> InitiativeOrder:
    _session_access(r, session_id, user_id)
    return InitiativeOrder(order=initiative_order(r=r, session_id=session_id))


@router.put("/sessions/{session_id}/initiative", response_model=InitiativeOrder)
async def set_initiative_route(
    session_id: str,
    payload: InitiativeSetRequest,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> InitiativeOrder:
    access = _session_access(r, session_id, user_id)
    try:
        require_dm(access, action="set initiative")
        token = require_token(r=r, token_id=payload.token_id)
    except TabletopError as e:
        raise _http_error(e) from e
    if token.session_id != session_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Token not found")

    set_initiative(r=r, session_id=session_id, token_id=token.token_id, initiative=payload.initiative)
    return InitiativeOrder(order=initiative_order(r=r, session_id=session_id))


# ---- drawings ----


@router.get("/sessions/{session_id}/drawings", response_model=DrawingListResponse)
async def list_drawings_route(
    session_id: str,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> DrawingListResponse:
    _session_access(r, session_id, user_id)
    return DrawingListResponse(drawings=list_drawings(r=r, session_id=session_id))


@router.post("/sessions/{session_id}/drawings", response_model=Drawing, status_code=status.HTTP_201_CREATED)
async def create_drawing_route(
    session_id: str,
    payload: DrawingCreateRequest,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> Drawing:
    _session_access(r, session_id, user_id)
    try:
        if len(payload.path) < MIN_DRAWING_POINTS:
            raise BadRequestError(f"A drawing needs at least {MIN_DRAWING_POINTS} points")
    except TabletopError as e:
        raise _http_error(e) from e

    return create_drawing(
        r=r,
        session_id=session_id,
        user_id=user_id,
        path=payload.path,
        color=payload.color,
        stroke_width=payload.stroke_width,
    )


@router.delete("/drawings/{drawing_id}", response_model=SuccessResponse)
async def delete_drawing_route(
    drawing_id: str,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> SuccessResponse:
    try:
        drawing = require_drawing(r=r, drawing_id=drawing_id)
        access = check_session_access(r=r, session_id=drawing.session_id, user_id=user_id)
        require_owner_or_dm(access, drawing.user_id, action="delete your own drawings")
    except TabletopError as e:
        raise _http_error(e) from e

    delete_drawing(r=r, drawing=drawing)
    return SuccessResponse()


# ---- spell effects ----


@router.get("/sessions/{session_id}/spell-effects", response_model=SpellEffectListResponse)
async def list_spell_effects_route(
    session_id: str,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> SpellEffectListResponse:
    _session_access(r, session_id, user_id)
    return SpellEffectListResponse(effects=list_spell_effects(r=r, session_id=session_id))


@router.post("/sessions/{session_id}/spell-effects", response_model=SpellEffect, status_code=status.HTTP_201_CREATED)
async def create_spell_effect_route(
    session_id: str,
    payload: SpellEffectCreateRequest,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> SpellEffect:
    _session_access(r, session_id, user_id)
    return create_spell_effect(
        r=r,
        session_id=session_id,
        user_id=user_id,
        type=payload.type,
        fields=payload.model_dump(exclude={"type"}),
    )


@router.patch("/spell-effects/{effect_id}", response_model=SpellEffect)
async def update_spell_effect_route(
    effect_id: str,
    payload: SpellEffectUpdateRequest,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> SpellEffect:
    try:
        effect = require_spell_effect(r=r, effect_id=effect_id)
        access = check_session_access(r=r, session_id=effect.session_id, user_id=user_id)
        require_owner_or_dm(access, effect.user_id, action="update your own effects")
    except TabletopError as e:
        raise _http_error(e) from e

    try:
        updated = SpellEffect.model_validate({**effect.model_dump(), **payload.model_dump(exclude_unset=True)})
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return save_spell_effect(r=r, effect=updated)


@router.delete("/spell-effects/{effect_id}", response_model=SuccessResponse)
async def delete_spell_effect_route(
    effect_id: str,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> SuccessResponse:
    try:
        effect = require_spell_effect(r=r, effect_id=effect_id)
        access = check_session_access(r=r, session_id=effect.session_id, user_id=user_id)
        require_owner_or_dm(access, effect.user_id, action="delete your own effects")
    except TabletopError as e:
        raise _http_error(e) from e

    delete_spell_effect(r=r, effect=effect)
    return SuccessResponse()


# ---- chat & dice ----


@router.get("/sessions/{session_id}/messages", response_model=MessagePage)
async def list_messages_route(
    session_id: str,
    limit: int = Query(50, ge=1, le=100),
    before: str | None = None,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> MessagePage:
    _session_access(r, session_id, user_id)
    try:
        messages, next_cursor = list_messages(r=r, session_id=session_id, limit=limit, before=before)
    except TabletopError as e:
        raise _http_error(e) from e
    return MessagePage(messages=messages, next_cursor=next_cursor)


@router.post("/sessions/{session_id}/messages", response_model=ChatMessage, status_code=status.HTTP_201_CREATED)
async def send_message_route(
    session_id: str,
    payload: SendMessageRequest,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> ChatMessage:
    _session_access(r, session_id, user_id)
    return add_chat_message(r=r, session_id=session_id, user_id=user_id, content=payload.content, type=payload.type)


@router.post("/sessions/{session_id}/dice", response_model=DiceRollResponse)
async def roll_dice_route(
    session_id: str,
    payload: DiceRollRequest,
    r: redis.Redis = Depends(get_redis),
    user_id: str = Depends(get_current_user_id),
) -> DiceRollResponse:
    _session_access(r, session_id, user_id)
    try:
        result, message = roll_to_chat(
            r=r,
            session_id=session_id,
            user_id=user_id,
            notation=payload.notation,
            advantage=payload.advantage,
            disadvantage=payload.disadvantage,
        )
    except TabletopError as e:
        raise _http_error(e) from e

    return DiceRollResponse(
        notation=result.notation,
        rolls=result.rolls,
        modifier=result.modifier,
        total=result.total,
        advantage=result.advantage,
        disadvantage=result.disadvantage,
        message=message,
    )
