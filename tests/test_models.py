#!/usr/bin/env python3
"""
Data Model and State Tests

1. Facts flatten to scalar payloads and come back intact
2. Payloads missing required fields are refused, not guessed
3. Timestamps parse from ISO strings, 'Z' suffixes and epoch seconds
4. The state manager notifies listeners and survives bad ones
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW, make_fact
from recollect.errors import MalformedFactError
from recollect.models import (
    ConversationEpisode,
    ConversationFact,
    FactCategory,
    Message,
    ProjectContext,
    SystemState,
    parse_time,
)
from recollect.state import StateManager


class TestFactPayload:
    def test_round_trip_keeps_lifecycle(self):
        fact = make_fact(
            "Sessions in Redis",
            FactCategory.ARCHITECTURE,
            project_context=ProjectContext("shop", "python", "fastapi", "uv"),
            superseded_by="abc",
            superseded_at=NOW + timedelta(days=1),
            episode_id="ep_123",
            extra={"ticket": "OPS-7"},
        )

        payload = fact.to_payload()
        restored = ConversationFact.from_payload(fact.id, payload)

        assert all(isinstance(v, (str, int, float, bool)) for v in payload.values())
        assert restored.category == FactCategory.ARCHITECTURE
        assert restored.project_context == ProjectContext("shop", "python", "fastapi", "uv")
        assert restored.superseded_at == NOW + timedelta(days=1)
        assert restored.extra == {"ticket": "OPS-7"}
        assert not restored.is_active

    def test_none_fields_left_out(self):
        payload = make_fact("plain").to_payload()
        assert "resolved" not in payload
        assert "superseded_by" not in payload
        assert "project_context" not in payload

    @pytest.mark.parametrize("drop", ["content", "category", "reference_time", "workspace_id"])
    def test_missing_required_field(self, drop):
        payload = make_fact("plain").to_payload()
        del payload[drop]

        with pytest.raises(MalformedFactError) as exc:
            ConversationFact.from_payload("f1", payload)
        assert exc.value.missing == [drop]

    def test_invalid_category_and_time(self):
        payload = make_fact("plain").to_payload()
        payload["category"] = "gossip"
        payload["reference_time"] = "last tuesday"

        with pytest.raises(MalformedFactError) as exc:
            ConversationFact.from_payload("f1", payload)
        assert set(exc.value.missing) == {"category", "reference_time"}

    def test_bad_confidence_defaults(self):
        payload = make_fact("plain").to_payload()
        payload["confidence"] = "high"
        assert ConversationFact.from_payload("f1", payload).confidence == 0.7

    def test_to_dict_nests_json_fields(self):
        fact = make_fact("x", project_context=ProjectContext("shop"), extra={"a": 1})
        data = fact.to_dict()
        assert data["id"] == fact.id
        assert data["project_context"]["workspace_name"] == "shop"
        assert data["extra"] == {"a": 1}


class TestTimes:
    @pytest.mark.parametrize("value", [
        "2025-06-01T12:00:00Z",
        "2025-06-01T12:00:00+00:00",
        "2025-06-01T12:00:00",
        NOW.timestamp(),
        NOW,
    ])
    def test_parse_time(self, value):
        assert parse_time(value) == NOW

    def test_offsets_are_preserved(self):
        value = parse_time("2025-06-01T14:00:00+02:00")
        assert value == NOW
        assert value.utcoffset() == timedelta(hours=2)

    def test_empty(self):
        assert parse_time(None) is None
        assert parse_time("") is None

    def test_garbage(self):
        with pytest.raises(ValueError):
            parse_time("soon")


class TestEpisode:
    def test_from_messages(self):
        start = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)
        messages = [Message("user", "a", start), Message("assistant", "b", start + timedelta(minutes=4))]

        episode = ConversationEpisode.from_messages(messages, "/ws/demo", "Setup")

        assert episode.message_count == 2
        assert episode.start_time == start
        assert episode.end_time == episode.reference_time == start + timedelta(minutes=4)
        assert episode.context_description == "Setup"

    def test_untimed_messages_use_now(self):
        before = datetime.now(timezone.utc)
        episode = ConversationEpisode.from_messages([Message("user", "a")], "/ws/demo")
        assert episode.start_time >= before


class TestStateManager:
    def test_listener_notified(self):
        state = StateManager()
        seen = []
        state.add_listener(seen.append)

        state.set_state(SystemState.INDEXING, "Initializing")
        state.set_progress(2, 5)

        assert [s.system_state for s in seen] == [SystemState.INDEXING, SystemState.INDEXING]
        assert seen[-1].processed_episodes == 2
        assert seen[-1].total_episodes == 5
        assert seen[-1].to_dict()["system_state"] == "indexing"

    def test_unsubscribe(self):
        state = StateManager()
        seen = []
        remove = state.add_listener(seen.append)
        remove()
        remove()

        state.set_state(SystemState.INDEXED)

        assert seen == []

    def test_failing_listener_does_not_block_others(self):
        state = StateManager()
        seen = []

        def broken(status):
            raise RuntimeError("listener bug")

        state.add_listener(broken)
        state.add_listener(seen.append)

        state.set_state(SystemState.ERROR, "Vector store not accessible")

        assert seen[0].system_message == "Vector store not accessible"

    def test_dispose(self):
        state = StateManager()
        seen = []
        state.add_listener(seen.append)
        state.dispose()

        state.set_state(SystemState.INDEXED)

        assert seen == []
        assert state.state == SystemState.INDEXED
