from __future__ import annotations

import os
from collections.abc import Generator
from dataclasses import dataclass
from pathlib import Path

import fakeredis
import pytest
from fastapi.testclient import TestClient

from tabletop.api.deps import get_redis
from tabletop.main import app
from tabletop.session_store import add_campaign_member, create_campaign, create_session


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    """Load repo .env for local runs.

    In CI, `.env` is not loaded unless TABLETOP_LOAD_DOTENV_FOR_TESTS=1.
    """

    if os.environ.get("CI") and os.environ.get("TABLETOP_LOAD_DOTENV_FOR_TESTS") != "1":
        return

    env_path = Path(__file__).resolve().parents[1] / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)


@pytest.fixture()
def r() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def client_and_redis(r: fakeredis.FakeRedis) -> Generator[tuple[TestClient, fakeredis.FakeRedis], None, None]:
    """FastAPI TestClient wired to a fakeredis instance."""

    def _override() -> Generator[fakeredis.FakeRedis, None, None]:
        yield r

    app.dependency_overrides[get_redis] = _override
    with TestClient(app) as c:
        yield c, r
    app.dependency_overrides.clear()


@dataclass(frozen=True)
class Table:
    campaign_id: str
    session_id: str
    dm_id: str
    player_id: str
    outsider_id: str


@pytest.fixture()
def table(r: fakeredis.FakeRedis) -> Table:
    """A campaign with one DM, one member player and a session."""

    campaign = create_campaign(r=r, name="Lost Mine", dm_id="dm-1")
    add_campaign_member(r=r, campaign_id=campaign.campaign_id, user_id="player-1")
    session = create_session(r=r, campaign_id=campaign.campaign_id, name="Session 1")
    return Table(
        campaign_id=campaign.campaign_id,
        session_id=session.session_id,
        dm_id="dm-1",
        player_id="player-1",
        outsider_id="stranger",
    )
