import asyncio
import threading

import pytest

from chatrelay.domain import Author, SessionTypeInvariantViolation, Turn
from chatrelay.session_store import Session, SessionStore


def test_get_or_create_returns_same_session():
    store = SessionStore(60)
    a = store.get_or_create(1)
    b = store.get_or_create(1)
    assert a is b
    assert len(store) == 1
    assert store.get_or_create(2) is not a


def test_concurrent_get_or_create_creates_once():
    store = SessionStore(60)
    results = []
    barrier = threading.Barrier(16)

    def worker():
        barrier.wait()
        results.append(store.get_or_create(42))

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(store) == 1
    assert all(s is results[0] for s in results)


def test_session_expires_after_ttl():
    async def _run():
        store = SessionStore(0.05)
        s = store.get_or_create(1)
        store.append_turn(s, Turn(Author.USER, 'u: hi'))
        store.schedule_expiry(s)
        assert 1 in store
        await asyncio.sleep(0.15)
        return store

    store = asyncio.run(_run())
    assert 1 not in store
    assert store.get(1) is None


def test_rearm_extends_lifetime():
    async def _run():
        store = SessionStore(0.1)
        s = store.get_or_create(1)
        store.schedule_expiry(s)
        await asyncio.sleep(0.06)
        again = store.get_or_create(1)
        store.schedule_expiry(again)
        # first expiry would have fired at 0.1s
        await asyncio.sleep(0.07)
        alive = 1 in store
        await asyncio.sleep(0.1)
        return alive, 1 in store

    alive, still_there = asyncio.run(_run())
    assert alive is True
    assert still_there is False


def test_get_or_create_cancels_pending_expiry():
    async def _run():
        store = SessionStore(60)
        s = store.get_or_create(1)
        task = store.schedule_expiry(s)
        store.get_or_create(1)
        await asyncio.sleep(0)
        return task, s

    task, s = asyncio.run(_run())
    assert task.cancelled()
    assert s.expiry_task is None


def test_stale_epoch_does_not_delete():
    async def _run():
        store = SessionStore(60)
        s = store.get_or_create(1)
        old_epoch = s.epoch
        store.get_or_create(1)  # bumps the epoch
        # an expiry armed with the old epoch that was never cancelled
        await store._expire_after(s, old_epoch, 0.01)
        return store

    store = asyncio.run(_run())
    assert 1 in store


def test_expiry_of_replaced_session_leaves_new_one():
    async def _run():
        store = SessionStore(60)
        old = store.get_or_create(1)
        epoch = old.epoch
        store.clear(1)
        new = store.get_or_create(1)
        await store._expire_after(old, epoch, 0.01)
        return store, new

    store, new = asyncio.run(_run())
    assert store.get(1) is new


def test_expired_chat_starts_fresh_history():
    async def _run():
        store = SessionStore(0.03)
        s = store.get_or_create(1)
        store.append_turn(s, Turn(Author.USER, 'u: one'))
        store.schedule_expiry(s)
        await asyncio.sleep(0.1)
        fresh = store.get_or_create(1)
        return s, fresh

    old, fresh = asyncio.run(_run())
    assert fresh is not old
    assert fresh.turns == []


def test_clear_returns_session_and_cancels_expiry():
    async def _run():
        store = SessionStore(60)
        s = store.get_or_create(9)
        store.append_turn(s, Turn(Author.USER, 'x'))
        task = store.schedule_expiry(s)
        removed = store.clear(9)
        await asyncio.sleep(0)
        return store, removed, task

    store, removed, task = asyncio.run(_run())
    assert isinstance(removed, Session)
    assert len(removed.turns) == 1
    assert task.cancelled()
    assert store.clear(9) is None


def test_foreign_value_in_store_is_reported():
    store = SessionStore(60)
    store._sessions[5] = 'not a session'
    with pytest.raises(SessionTypeInvariantViolation):
        store.get_or_create(5)
    with pytest.raises(SessionTypeInvariantViolation):
        store.get(5)


def test_close_cancels_everything():
    async def _run():
        store = SessionStore(60)
        tasks = []
        for chat in (1, 2, 3):
            tasks.append(store.schedule_expiry(store.get_or_create(chat)))
        await store.close()
        return store, tasks

    store, tasks = asyncio.run(_run())
    assert len(store) == 0
    assert all(t.done() for t in tasks)


def test_ttl_must_be_positive():
    with pytest.raises(ValueError):
        SessionStore(0)
