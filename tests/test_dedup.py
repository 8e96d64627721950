from __future__ import annotations

from alcancia.dedup import TimedGuard, action_key, router_key, warning_key


def test_second_hit_inside_window_is_rejected(clock):
    guard = TimedGuard(3.0, clock=clock)
    assert guard.should_proceed("room:hola")
    clock.advance(2.9)
    assert not guard.should_proceed("room:hola")


def test_key_is_allowed_again_after_window(clock):
    guard = TimedGuard(3.0, clock=clock)
    assert guard.should_proceed("room:hola")
    clock.advance(3.0)
    assert guard.should_proceed("room:hola")


def test_rejected_hit_does_not_extend_window(clock):
    guard = TimedGuard(5.0, clock=clock)
    guard.should_proceed("k")
    clock.advance(4.0)
    assert not guard.should_proceed("k")
    clock.advance(1.0)
    assert guard.should_proceed("k")


def test_distinct_keys_are_independent(clock):
    guard = TimedGuard(10.0, clock=clock)
    assert guard.should_proceed("u1:balance")
    assert guard.should_proceed("u2:balance")
    assert guard.should_proceed("u1:address")


def test_expired_entries_are_pruned(clock):
    guard = TimedGuard(1.0, clock=clock)
    for index in range(10):
        guard.should_proceed(f"k{index}")
    assert len(guard) == 10
    clock.advance(2.0)
    guard.should_proceed("fresh")
    assert len(guard) == 1


def test_cache_is_bounded_oldest_first(clock):
    guard = TimedGuard(60.0, max_entries=3, clock=clock)
    for key in ("a", "b", "c", "d"):
        guard.should_proceed(key)
        clock.advance(0.1)

    assert len(guard) == 3
    # "a" was evicted, so it is admitted again
    assert guard.should_proceed("a")
    assert not guard.should_proceed("d")


def test_clear_forgets_everything(clock):
    guard = TimedGuard(60.0, clock=clock)
    guard.should_proceed("k")
    guard.clear()
    assert guard.should_proceed("k")


def test_router_key_prefers_room():
    assert router_key("room-1", "u1", "saldo") == "room-1:saldo"
    assert router_key(None, "u1", "saldo") == "u1:saldo"


def test_action_key_prefers_message_id():
    assert action_key("chat:7", "u1", "SHOW", "saldo") == "chat:7:SHOW"
    assert action_key(None, "u1", "SHOW", "saldo") == "u1:SHOW:saldo"


def test_warning_key_is_per_feature():
    assert warning_key("u1", "balance") != warning_key("u1", "address")
