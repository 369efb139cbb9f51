from __future__ import annotations

import random
import re
from dataclasses import dataclass

import redis

from tabletop.api.models import ChatMessage, ChatMessageType
from tabletop.errors import BadRequestError
from tabletop.session_store import add_chat_message

NOTATION_RE = re.compile(r"^(\d+)d(\d+)([+-]\d+)?$")


@dataclass(frozen=True, slots=True)
class DiceRoll:
    notation: str
    rolls: list[int]
    modifier: int
    total: int
    advantage: bool = False
    disadvantage: bool = False

    def describe(self) -> str:
        label = self.notation
        if self.advantage:
            label += " (advantage)"
        elif self.disadvantage:
            label += " (disadvantage)"

        mod = ""
        if self.modifier:
            mod = f" {'+' if self.modifier > 0 else ''}{self.modifier}"
        return f"🎲 Rolled {label}: {', '.join(str(x) for x in self.rolls)}{mod} = **{self.total}**"


def roll_dice(
    notation: str,
    *,
    advantage: bool = False,
    disadvantage: bool = False,
    rng: random.Random | None = None,
) -> DiceRoll:
    """Roll `NdM[+/-K]`.

    Advantage/disadvantage only applies to d20s: keep the higher/lower of the
    first two dice, rolling a second one if only one was asked for.
    """

    match = NOTATION_RE.match(notation.strip())
    if not match:
        raise BadRequestError("Invalid dice notation. Use format like '2d20+5'")

    num_dice = int(match.group(1))
    die_size = int(match.group(2))
    modifier = int(match.group(3)) if match.group(3) else 0

    if not 1 <= num_dice <= 100:
        raise BadRequestError("Number of dice must be between 1 and 100")
    if not 2 <= die_size <= 100:
        raise BadRequestError("Dice size must be between 2 and 100")

    rng = rng or random.SystemRandom()
    rolls = [rng.randint(1, die_size) for _ in range(num_dice)]

    kept = rolls
    if die_size == 20 and (advantage or disadvantage):
        if len(rolls) < 2:
            rolls.append(rng.randint(1, 20))
        kept = [max(rolls[0], rolls[1])] if advantage else [min(rolls[0], rolls[1])]

    return DiceRoll(
        notation=notation.strip(),
        rolls=kept,
        modifier=modifier,
        total=sum(kept) + modifier,
        advantage=advantage,
        disadvantage=disadvantage,
    )


def roll_to_chat(
    *,
    r: redis.Redis,
    session_id: str,
    user_id: str,
    notation: str,
    advantage: bool = False,
    disadvantage: bool = False,
    rng: random.Random | None = None,
) -> tuple[DiceRoll, ChatMessage]:
    result = roll_dice(notation, advantage=advantage, disadvantage=disadvantage, rng=rng)
    message = add_chat_message(
        r=r,
        session_id=session_id,
        user_id=user_id,
        content=result.describe(),
        type=ChatMessageType.dice_roll,
    )
    return result, message
