import pytest


def test_usernames_are_unique_case_insensitively(backend):
    backend.create_user("Alice", "a@example.com")
    with pytest.raises(ValueError):
        backend.create_user("alice", "other@example.com")


def test_rows_round_trip_with_types(backend):
    user = backend.create_user("dana", "dana@example.com", "Dana", "Scully")
    stored = backend.get_user(user["id"])

    assert stored["id"] == user["id"]
    assert isinstance(stored["id"], int)
    assert "avatar_url" not in stored


def test_direct_conversation_is_shared_by_the_pair(backend):
    a = backend.create_user("a", "a@example.com")
    b = backend.create_user("b", "b@example.com")

    first, created = backend.get_or_create_direct_conversation(a["id"], b["id"])
    second, created_again = backend.get_or_create_direct_conversation(b["id"], a["id"])

    assert created is True
    assert created_again is False
    assert first["id"] == second["id"]
    assert backend.get_participants(first["id"]) == sorted([a["id"], b["id"]])


def test_list_messages_window(backend):
    a = backend.create_user("a", "a@example.com")
    b = backend.create_user("b", "b@example.com")
    conversation, _ = backend.get_or_create_direct_conversation(a["id"], b["id"])
    for n in range(5):
        backend.create_message(conversation["id"], a["id"], f"m{n}")

    assert [m["content"] for m in backend.list_messages(conversation["id"], limit=2, offset=1)] == ["m2", "m3"]
    assert backend.list_messages(conversation["id"], limit=0) == []


def test_rate_limit_window_counter_expires(backend, fake_redis):
    count, allowed = backend.hit_rate_limit("10.0.0.1", limit=1, window_seconds=60)
    assert (count, allowed) == (1, True)
    count, allowed = backend.hit_rate_limit("10.0.0.1", limit=1, window_seconds=60)
    assert (count, allowed) == (2, False)

    (key,) = fake_redis.keys("ratelimit:10.0.0.1:*")
    assert 0 < fake_redis.ttl(key) <= 60
