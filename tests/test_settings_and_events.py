from __future__ import annotations

import pytest

from tabletop.core.events import SessionEvent
from tabletop.settings import FeedSettings, log_level_from_env, redis_url_from_env, settings_from_env


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("TABLETOP_POLL_INTERVAL_MS", "TABLETOP_PING_INTERVAL_MS", "TABLETOP_LOG_LEVEL", "REDIS_URL"):
        monkeypatch.delenv(name, raising=False)

    assert settings_from_env() == FeedSettings(poll_interval_s=0.5, ping_interval_s=30.0)
    assert log_level_from_env() == "INFO"
    assert redis_url_from_env() == "redis://localhost:6379/0"


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TABLETOP_POLL_INTERVAL_MS", "250")
    monkeypatch.setenv("TABLETOP_PING_INTERVAL_MS", "5000")
    monkeypatch.setenv("TABLETOP_LOG_LEVEL", "debug")

    assert settings_from_env() == FeedSettings(poll_interval_s=0.25, ping_interval_s=5.0)
    assert log_level_from_env() == "DEBUG"


def test_event_frames_are_data_only() -> None:
    assert SessionEvent.ping().to_sse() == 'data: {"type":"ping"}\n\n'
    assert SessionEvent.tokens([{"token_id": "t1"}]).to_sse() == 'data: {"type":"tokens","tokens":[{"token_id":"t1"}]}\n\n'


def test_event_from_dict() -> None:
    event = SessionEvent.from_dict({"type": "messages", "messages": []})
    assert event == SessionEvent.messages([])

    with pytest.raises(ValueError):
        SessionEvent.from_dict({"type": "fog"})
