"""Tests for the local store and the stored session layout."""

import json
from datetime import datetime, timezone

import pytest

from barta.models.messages import ChatMessage, ModelVariant, Sender
from barta.models.sessions import ChatSession
from barta.storage.local_store import LocalStore
from barta.storage.persistence import (
    ACTIVE_CHAT_ID_KEY,
    CHAT_HISTORY_KEY,
    PersistenceBridge,
    dump_sessions,
    load_sessions,
)

STORED_AT = datetime(2025, 10, 19, 9, 30, tzinfo=timezone.utc)


def test_local_store_round_trips_strings(tmp_path) -> None:
    store = LocalStore(tmp_path / "nested" / "storage.json")

    assert store.get_item("missing") is None
    store.set_item("a", "1")
    store.set_items({"b": "2", "a": "3"})

    assert store.get_item("a") == "3"
    assert store.get_item("b") == "2"
    assert not (tmp_path / "nested" / "storage.json.tmp").exists()


def test_local_store_rewrites_unreadable_file(tmp_path) -> None:
    path = tmp_path / "storage.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")
    store = LocalStore(path)

    with pytest.raises(ValueError):
        store.get_item("a")

    store.set_item("a", "1")
    assert store.get_item("a") == "1"


def test_dump_uses_camel_case_and_drops_unset_fields() -> None:
    session = ChatSession(
        id="s1",
        title="Greeting",
        model=ModelVariant.CODING,
        timestamp=STORED_AT,
        system_instruction="Be helpful.",
        messages=[
            ChatMessage(
                id="1_ai",
                text="Hi",
                sender=Sender.AI,
                timestamp=STORED_AT,
                model_used=ModelVariant.CODING,
            )
        ],
    )

    data = json.loads(dump_sessions({"s1": session}))

    stored = data["s1"]
    assert stored["systemInstruction"] == "Be helpful."
    assert stored["model"] == "coding"
    message = stored["messages"][0]
    assert message["modelUsed"] == "coding"
    assert message["sender"] == "ai"
    assert "imageUrl" not in message
    assert "generatedImage" not in message


def test_load_accepts_iso_and_epoch_timestamps() -> None:
    raw = json.dumps(
        {
            "s1": {
                "id": "s1",
                "title": "Mixed",
                "model": "general",
                "timestamp": 1760866200000,
                "messages": [
                    {"id": "1_user", "text": "Hi", "sender": "user", "timestamp": "2025-10-19T09:30:00Z"},
                    {"id": "2_ai", "text": "Yo", "sender": "ai", "timestamp": 1760866200000},
                    {"id": "3_ai", "text": "Naive", "sender": "ai", "timestamp": "2025-10-19T09:30:00"},
                ],
            }
        }
    )

    session = load_sessions(raw, "New chat")["s1"]

    assert session.timestamp == STORED_AT
    assert [m.timestamp for m in session.messages] == [STORED_AT] * 3


def test_load_backfills_missing_titles() -> None:
    question = "Please summarise the history of the printing press for me"
    raw = json.dumps(
        {
            "s1": {
                "id": "s1",
                "model": "general",
                "messages": [{"id": "1_user", "text": question, "sender": "user"}],
            },
            "s2": {"id": "s2", "title": "", "model": "coding", "messages": []},
        }
    )

    sessions = load_sessions(raw, "New chat")

    assert sessions["s1"].title == question[:30]
    assert sessions["s2"].title == "New chat"


@pytest.mark.parametrize("raw", ["{broken", '{"s1": {"id": "s1", "model": "unknown"}}', "[]"])
def test_load_rejects_malformed_history(raw: str) -> None:
    with pytest.raises(ValueError):
        load_sessions(raw, "New chat")


def test_bridge_writes_both_keys(local_store) -> None:
    bridge = PersistenceBridge(local_store, "New chat")
    session = ChatSession(id="s1", title="T", model=ModelVariant.GENERAL)

    bridge.flush({"s1": session}, "s1")
    sessions, active_id = bridge.load()

    assert active_id == "s1"
    assert local_store.get_item(ACTIVE_CHAT_ID_KEY) == "s1"
    assert json.loads(local_store.get_item(CHAT_HISTORY_KEY))["s1"]["title"] == "T"
    assert sessions["s1"] == session
