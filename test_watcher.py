"""
Tests for the config watcher state machine and live file watching
"""

import os
import queue

from watchdog.events import FileDeletedEvent, FileModifiedEvent, FileMovedEvent, DirModifiedEvent

import watcher as watcher_module
from projector import load_snapshot
from publisher import Publisher
from watcher import ERROR, REMOVE, TICK, WRITE, SourceFileHandler, Watcher


def _served(write_config, document):
    path = write_config(document)
    publisher = Publisher()
    publisher.install(load_snapshot(path))
    return path, publisher


def test_write_event_reloads(write_config, make_user, make_document):
    path, publisher = _served(write_config, make_document(make_user("alice")))
    watcher = Watcher(path, publisher)

    write_config(make_document(make_user("bob"), revision=2))
    watcher.handle(WRITE)

    assert publisher.current().revision == 2
    assert not watcher.changed
    assert not watcher.removed


def test_tick_without_flags_does_nothing(write_config, make_user, make_document):
    path, publisher = _served(write_config, make_document(make_user("alice")))
    watcher = Watcher(path, publisher)

    write_config(make_document(make_user("bob"), revision=2))
    watcher.handle(TICK)

    assert publisher.current().revision == 1
    assert publisher.generation == 1


def test_several_events_collapse_into_one_reload(write_config, make_user, make_document):
    path, publisher = _served(write_config, make_document(make_user("alice")))
    watcher = Watcher(path, publisher)

    write_config(make_document(make_user("bob"), revision=2))
    watcher.handle(WRITE, WRITE, REMOVE, WRITE)

    assert publisher.generation == 2
    assert publisher.current().revision == 2


def test_malformed_reload_keeps_old_snapshot(write_config, make_user, make_document):
    path, publisher = _served(write_config, make_document(make_user("alice")))
    before = publisher.current()
    watcher = Watcher(path, publisher)

    write_config('{"revision": 2, "users": [')
    watcher.handle(WRITE)

    assert publisher.current() is before
    assert not watcher.changed, "Failed reload must not be retried until the next event"


def test_remove_waits_for_replacement(write_config, make_user, make_document):
    path, publisher = _served(write_config, make_document(make_user("alice")))
    watcher = Watcher(path, publisher)

    os.remove(path)
    watcher.handle(REMOVE)
    assert watcher.changed and watcher.removed
    assert publisher.current().revision == 1

    watcher.handle(TICK)
    assert watcher.changed and watcher.removed

    write_config(make_document(make_user("bob"), revision=2))
    watcher.handle(TICK)

    assert publisher.current().revision == 2
    assert not watcher.changed
    assert not watcher.removed


def test_error_event_leaves_flags(write_config, make_user, make_document):
    path, publisher = _served(write_config, make_document(make_user("alice")))
    watcher = Watcher(path, publisher)

    watcher.handle(ERROR)

    assert not watcher.changed
    assert not watcher.removed
    assert publisher.generation == 1


def test_handler_filters_events_for_config_path(tmp_path):
    path = str(tmp_path / "users.json")
    events = queue.Queue()
    handler = SourceFileHandler(path, events)

    handler.dispatch(FileModifiedEvent(str(tmp_path / "other.json")))
    handler.dispatch(DirModifiedEvent(str(tmp_path)))
    handler.dispatch(FileModifiedEvent(path))
    handler.dispatch(FileDeletedEvent(path))
    handler.dispatch(FileMovedEvent(path, path + "~"))
    handler.dispatch(FileMovedEvent(path + ".swp", path))
    handler.dispatch(FileMovedEvent(str(tmp_path / "a"), str(tmp_path / "b")))

    received = []
    while not events.empty():
        received.append(events.get_nowait())
    assert received == [WRITE, REMOVE, REMOVE, REMOVE]


def test_live_in_place_write(write_config, make_user, make_document, wait_for_revision):
    path, publisher = _served(write_config, make_document(make_user("alice")))
    watcher = Watcher(path, publisher, tick=0.1)
    watcher.start()
    try:
        assert watcher.running
        write_config(make_document(make_user("alice"), make_user("bob"), revision=2))

        assert wait_for_revision(publisher, 2), "Write was never picked up"
        assert [u.name for u in publisher.current().users] == ["alice", "bob"]
    finally:
        watcher.stop()

    assert not watcher.running


def test_live_invalid_write_keeps_serving(write_config, make_user, make_document, wait_for_revision):
    path, publisher = _served(write_config, make_document(make_user("alice")))
    watcher = Watcher(path, publisher, tick=0.1)
    watcher.start()
    try:
        write_config(make_document(make_user("alice", passwords=[("md5", "x")]), revision=2))
        assert not wait_for_revision(publisher, 2, timeout=1)
        assert publisher.current().revision == 1

        write_config(make_document(make_user("carol"), revision=3))
        assert wait_for_revision(publisher, 3), "Valid write after an invalid one was never picked up"
    finally:
        watcher.stop()


def test_live_remove_then_recreate(write_config, make_user, make_document, wait_for_revision):
    path, publisher = _served(write_config, make_document(make_user("alice")))
    watcher = Watcher(path, publisher, tick=0.1)
    watcher.start()
    try:
        os.remove(path)
        assert not wait_for_revision(publisher, 2, timeout=0.5)
        assert publisher.current().revision == 1

        write_config(make_document(make_user("dave"), revision=2))
        assert wait_for_revision(publisher, 2), "Recreated file was never picked up"
    finally:
        watcher.stop()


def test_live_deeply_nested_write_keeps_watching(write_config, make_user, make_document, wait_for_revision):
    path, publisher = _served(write_config, make_document(make_user("alice")))
    watcher = Watcher(path, publisher, tick=0.1)
    watcher.start()
    try:
        write_config('{"revision": 2, "users": ' + "[" * 100000 + "]" * 100000 + "}")
        assert not wait_for_revision(publisher, 2, timeout=1)
        assert watcher.running, "Watcher thread died on a deeply nested document"

        write_config(make_document(make_user("bob"), revision=3))
        assert wait_for_revision(publisher, 3), "Valid write after a nested document was never picked up"
    finally:
        watcher.stop()


def test_live_unexpected_reload_error_keeps_watching(write_config, make_user, make_document,
                                                     wait_for_revision, monkeypatch):
    path, publisher = _served(write_config, make_document(make_user("alice")))

    def flaky_load_snapshot(target):
        snapshot = load_snapshot(target)
        if snapshot.revision == 2:
            raise RuntimeError("snapshot store unavailable")
        return snapshot

    monkeypatch.setattr(watcher_module, "load_snapshot", flaky_load_snapshot)
    watcher = Watcher(path, publisher, tick=0.1)
    watcher.start()
    try:
        write_config(make_document(make_user("bob"), revision=2))
        assert not wait_for_revision(publisher, 2, timeout=1)
        assert watcher.running, "Watcher thread died on an unexpected error"

        write_config(make_document(make_user("carol"), revision=3))
        assert wait_for_revision(publisher, 3), "Write after an unexpected error was never picked up"
    finally:
        watcher.stop()
