from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from tabletop.core.vision import Point, Segment


class PointModel(BaseModel):
    x: float
    y: float

    def to_point(self) -> Point:
        return Point(self.x, self.y)

    @staticmethod
    def from_point(p: Point) -> "PointModel":
        return PointModel(x=p.x, y=p.y)


class WallModel(BaseModel):
    x1: float
    y1: float
    x2: float
    y2: float

    def to_segment(self) -> Segment:
        return Segment(self.x1, self.y1, self.x2, self.y2)


Polygon = list[PointModel]


class SessionRole(StrEnum):
    dm = "dm"
    participant = "participant"


class Campaign(BaseModel):
    campaign_id: str
    name: str
    dm_id: str
    created_at: datetime


class GameSession(BaseModel):
    session_id: str
    campaign_id: str
    name: str
    created_at: datetime


class MapState(BaseModel):
    session_id: str
    name: str
    width: int
    height: int

    # Ray-walk step for vision; also the pixel size of one square when rendering.
    grid_size: int = 70

    walls: list[WallModel] = Field(default_factory=list)
    doors: list[WallModel] = Field(default_factory=list)
    uploaded_at: datetime


class Token(BaseModel):
    token_id: str
    session_id: str
    name: str
    x: float
    y: float
    size: int = 1

    # Feet; None means the token casts no vision.
    vision_radius: float | None = None
    has_darkvision: bool = False

    image_url: str | None = None

    # Player controlling this token (None => DM-only token).
    owner_id: str | None = None

    created_at: datetime
    updated_at: datetime


class ChatMessageType(StrEnum):
    text = "TEXT"
    system = "SYSTEM"
    dice_roll = "DICE_ROLL"


class ChatMessage(BaseModel):
    message_id: str
    session_id: str
    user_id: str
    content: str
    type: ChatMessageType = ChatMessageType.text
    created_at: datetime


class Drawing(BaseModel):
    drawing_id: str
    session_id: str
    user_id: str
    path: Polygon
    color: str = "#000000"
    stroke_width: int = 2
    created_at: datetime


class EffectType(StrEnum):
    circle = "CIRCLE"
    sphere = "SPHERE"
    cone = "CONE"
    rectangle = "RECTANGLE"
    line = "LINE"


class SpellEffect(BaseModel):
    effect_id: str
    session_id: str
    user_id: str
    type: EffectType
    x: float
    y: float

    # Which of these matter depends on `type`; none are required.
    radius: float | None = None
    width: float | None = None
    height: float | None = None
    angle: float | None = None

    color: str = "#ff0000"
    opacity: float = Field(0.3, ge=0, le=1)
    created_at: datetime
    updated_at: datetime


class InitiativeEntry(BaseModel):
    token_id: str
    name: str
    initiative: int = 0
    owner_id: str | None = None


class FogOfWarState(BaseModel):
    session_id: str
    # Append-only under reveal; emptied only by clear.
    revealed_areas: list[Polygon] = Field(default_factory=list)
    updated_at: datetime


# ---- request bodies ----


class CampaignCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class MemberAddRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class SessionCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class RevealAreaRequest(BaseModel):
    polygon: Polygon


class FogUpdateRequest(BaseModel):
    revealed_areas: list[Polygon]


class MapUploadRequest(BaseModel):
    name: str = Field(..., min_length=1)
    # Base64-encoded Universal VTT text.
    vtt_file: str
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    grid_size: int = Field(70, gt=0)


class TokenCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    x: float
    y: float
    size: int = Field(1, ge=1)
    vision_radius: float | None = None
    has_darkvision: bool = False
    image_url: str | None = None
    owner_id: str | None = None


class TokenUpdateRequest(BaseModel):
    name: str | None = Field(None, min_length=1)
    x: float | None = None
    y: float | None = None
    size: int | None = Field(None, ge=1)
    vision_radius: float | None = None
    has_darkvision: bool | None = None
    image_url: str | None = None


class DrawingCreateRequest(BaseModel):
    path: Polygon
    color: str = Field("#000000", min_length=1)
    stroke_width: int = Field(2, ge=1, le=20)


class SpellEffectCreateRequest(BaseModel):
    type: EffectType
    x: float
    y: float
    radius: float | None = None
    width: float | None = None
    height: float | None = None
    angle: float | None = None
    color: str = Field("#ff0000", min_length=1)
    opacity: float = Field(0.3, ge=0, le=1)


class SpellEffectUpdateRequest(BaseModel):
    x: float | None = None
    y: float | None = None
    radius: float | None = None
    width: float | None = None
    height: float | None = None
    angle: float | None = None
    color: str | None = Field(None, min_length=1)
    opacity: float | None = Field(None, ge=0, le=1)


class InitiativeSetRequest(BaseModel):
    token_id: str = Field(..., min_length=1)
    initiative: int


class SendMessageRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=1000)
    type: ChatMessageType = ChatMessageType.text


class DiceRollRequest(BaseModel):
    notation: str = Field(..., min_length=1, max_length=50)
    advantage: bool = False
    disadvantage: bool = False


# ---- responses ----


class TokenListResponse(BaseModel):
    tokens: list[Token]


class DrawingListResponse(BaseModel):
    drawings: list[Drawing]


class SpellEffectListResponse(BaseModel):
    effects: list[SpellEffect]


class InitiativeOrder(BaseModel):
    # Highest initiative first; ties keep token creation order.
    order: list[InitiativeEntry]


class MessagePage(BaseModel):
    messages: list[ChatMessage]
    next_cursor: str | None = None


class VisionResponse(BaseModel):
    polygons: list[Polygon] = Field(default_factory=list)
    merged: Polygon = Field(default_factory=list)


class DiceRollResponse(BaseModel):
    notation: str
    rolls: list[int]
    modifier: int
    total: int
    advantage: bool = False
    disadvantage: bool = False
    message: ChatMessage


class SuccessResponse(BaseModel):
    success: bool = True
