from datetime import datetime, timedelta, timezone

import pytest

from swadesh.storage import (
    InMemoryStorage,
    MemoryValidationError,
    Ownership,
    UserUpsert,
    storage_from_env,
)


@pytest.fixture()
def storage() -> InMemoryStorage:
    store = InMemoryStorage()
    store.upsert_user(UserUpsert(id="u1", email="u1@example.com"))
    store.upsert_user(UserUpsert(id="u2", email="u2@example.com"))
    return store


def test_create_returns_full_record(storage: InMemoryStorage) -> None:
    record = storage.create_memory("u1", "I like cricket", "general")
    assert record.id
    assert record.user_id == "u1"
    assert record.content == "I like cricket"
    assert record.category == "general"
    assert record.created_at == record.updated_at
    assert record.created_at.tzinfo is not None


def test_create_defaults_category(storage: InMemoryStorage) -> None:
    record = storage.create_memory("u1", "Prefers Hindi replies")
    assert record.category == "general"


def test_create_rejects_category_wider_than_column(storage: InMemoryStorage) -> None:
    with pytest.raises(MemoryValidationError):
        storage.create_memory("u1", "Likes chai", "c" * 256)
    assert storage.list_memories("u1") == []


@pytest.mark.parametrize("content", ["", "   ", "\n\t"])
def test_create_rejects_blank_content(storage: InMemoryStorage, content: str) -> None:
    with pytest.raises(MemoryValidationError):
        storage.create_memory("u1", content)
    assert storage.list_memories("u1") == []


def test_foreign_update_and_delete_are_not_found(storage: InMemoryStorage) -> None:
    record = storage.create_memory("u1", "I like cricket", "general")

    assert storage.update_memory(record.id, "u2", "I like football") is None
    assert storage.delete_memory(record.id, "u2") is False

    [unchanged] = storage.list_memories("u1")
    assert unchanged == record


def test_ownership_check_distinguishes_cases(storage: InMemoryStorage) -> None:
    record = storage.create_memory("u1", "Lives in Pune")

    assert storage.load_memory_for_user("missing", "u1").status is Ownership.ABSENT
    assert storage.load_memory_for_user(record.id, "u2").status is Ownership.NOT_OWNED
    found = storage.load_memory_for_user(record.id, "u1")
    assert found.status is Ownership.FOUND
    assert found.record == record


def test_update_is_visible_in_list_with_later_timestamp(storage: InMemoryStorage) -> None:
    record = storage.create_memory("u1", "I like cricket", "general")

    updated = storage.update_memory(record.id, "u1", "I like football")

    assert updated is not None
    assert updated.content == "I like football"
    assert updated.updated_at > record.updated_at
    assert updated.created_at == record.created_at
    [listed] = storage.list_memories("u1")
    assert listed.content == "I like football"
    assert listed.updated_at == updated.updated_at


def test_update_rejects_blank_content(storage: InMemoryStorage) -> None:
    record = storage.create_memory("u1", "I like cricket")
    with pytest.raises(MemoryValidationError):
        storage.update_memory(record.id, "u1", "  ")
    assert storage.list_memories("u1")[0].content == "I like cricket"


def test_delete_twice_reports_false_second_time(storage: InMemoryStorage) -> None:
    record = storage.create_memory("u1", "Temporary note")

    assert storage.delete_memory(record.id, "u1") is True
    assert storage.delete_memory(record.id, "u1") is False
    assert storage.list_memories("u1") == []


def test_list_is_scoped_and_stable(storage: InMemoryStorage) -> None:
    first = storage.create_memory("u1", "one")
    second = storage.create_memory("u1", "two")
    storage.create_memory("u2", "someone else")

    ids = [m.id for m in storage.list_memories("u1")]
    assert set(ids) == {first.id, second.id}
    assert ids == [m.id for m in storage.list_memories("u1")]


def test_upsert_user_is_idempotent_by_id(storage: InMemoryStorage) -> None:
    original = storage.get_user("u1")
    storage.update_user_setup("u1", True)

    updated = storage.upsert_user(
        UserUpsert(id="u1", email="new@example.com", first_name="Asha")
    )

    assert len(storage.users) == 2
    assert updated.id == "u1"
    assert updated.email == "new@example.com"
    assert updated.first_name == "Asha"
    assert updated.setup_completed is True
    assert updated.created_at == original.created_at
    assert updated.updated_at > original.updated_at


def test_expired_session_is_treated_as_absent(storage: InMemoryStorage) -> None:
    session = storage.create_session("u1", "sid-1", timedelta(days=7))
    assert storage.get_session("sid-1") == session

    storage.sessions["sid-1"] = session.model_copy(
        update={"expires_at": datetime.now(timezone.utc) - timedelta(seconds=1)}
    )

    assert storage.get_session("sid-1") is None
    assert "sid-1" not in storage.sessions


def test_purge_expired_sessions(storage: InMemoryStorage) -> None:
    storage.create_session("u1", "live", timedelta(days=7))
    storage.create_session("u1", "stale", timedelta(seconds=-1))

    assert storage.purge_expired_sessions() == 1
    assert set(storage.sessions) == {"live"}


def test_storage_from_env_selects_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    assert isinstance(storage_from_env(), InMemoryStorage)
    with pytest.raises(ValueError):
        storage_from_env("sqlite")
