import threading
import time

import pytest

from conftest import MemoryRepository
from luna_server.core.errors import InvalidInput
from luna_server.runtime_state import ConversationStore, SessionTurn

PREFIX = "[Earlier conversation summary]"


class RecordingSummarizer:
    def __init__(self, text="they said hi and bye", error=None):
        self.text = text
        self.error = error
        self.calls = []

    def __call__(self, turns):
        self.calls.append([turn.content for turn in turns])
        if self.error is not None:
            raise self.error
        return self.text


def make_store(summarizer=None, max_turns=4, keep_turns=2, repository=None):
    return ConversationStore(
        repository,
        summarizer=summarizer,
        max_turns=max_turns,
        keep_turns=keep_turns,
        summary_prefix=PREFIX,
    )


def test_get_or_create_starts_empty():
    store = make_store()
    session = store.get_or_create("web:u1")
    assert session.session_id == "web:u1"
    assert session.turns == []
    assert session.summary is None
    assert store.session_ids() == ["web:u1"]


def test_get_returns_copies():
    store = make_store()
    store.append_user_turn("web:u1", "hi")

    copy = store.get("web:u1")
    copy.turns.append(SessionTurn(role="user", content="injected"))

    assert [t.content for t in store.get("web:u1").turns] == ["hi"]
    assert store.get("web:missing") is None


def test_append_exchange_records_both_turns_in_order():
    store = make_store(max_turns=10, keep_turns=2)
    session = store.append_exchange("web:u1", "  how are you? ", "great, you?")
    assert [(t.role, t.content) for t in session.turns] == [
        ("user", "how are you?"),
        ("assistant", "great, you?"),
    ]


@pytest.mark.parametrize("text", ["", "   ", None])
def test_empty_turns_are_rejected(text):
    store = make_store()
    with pytest.raises(InvalidInput):
        store.append_user_turn("web:u1", text)
    assert store.get("web:u1") is None


def test_exchange_with_empty_reply_records_nothing():
    store = make_store()
    with pytest.raises(InvalidInput):
        store.append_exchange("web:u1", "hello", "  ")
    assert store.get("web:u1") is None


def test_five_appends_with_bound_four_collapse_oldest_three():
    summarizer = RecordingSummarizer("they greeted and said goodbye")
    store = make_store(summarizer=summarizer, max_turns=4, keep_turns=2)

    store.append_user_turn("u1", "hi")
    store.append_assistant_turn("u1", "hello")
    store.append_user_turn("u1", "bye")
    store.append_assistant_turn("u1", "goodbye")
    assert summarizer.calls == []

    session = store.append_user_turn("u1", "again")

    assert summarizer.calls == [["hi", "hello", "bye"]]
    assert len(session.turns) == 3
    assert session.turns[0].role == "system"
    assert session.turns[0].content == f"{PREFIX} they greeted and said goodbye"
    assert [t.content for t in session.turns[1:]] == ["goodbye", "again"]
    assert session.summary == "they greeted and said goodbye"
    assert session.summarized_turns == 3


def test_history_never_exceeds_bound_after_successful_summaries():
    store = make_store(summarizer=RecordingSummarizer(), max_turns=4, keep_turns=2)
    for i in range(20):
        session = store.append_exchange("u1", f"q{i}", f"a{i}")
        assert len(session.turns) <= 4
    assert session.turns[-1].content == "a19"


def test_next_summary_folds_previous_summary_turn():
    summarizer = RecordingSummarizer("first")
    store = make_store(summarizer=summarizer, max_turns=4, keep_turns=2)
    for text in ["hi", "hello", "bye", "goodbye", "again"]:
        store.append_user_turn("u1", text)

    summarizer.text = "second"
    store.append_user_turn("u1", "four")
    session = store.append_user_turn("u1", "five")

    # The old summary turn is part of the slice handed to the summarizer.
    assert summarizer.calls[-1] == [f"{PREFIX} first", "goodbye", "again"]
    assert session.turns[0].content == f"{PREFIX} second"
    assert [t.content for t in session.turns[1:]] == ["four", "five"]
    # Only ordinary turns are counted: 3 the first time, 2 the second time.
    assert session.summarized_turns == 5


def test_summarizer_failure_keeps_turns_and_retries_later():
    summarizer = RecordingSummarizer(error=RuntimeError("model down"))
    store = make_store(summarizer=summarizer, max_turns=4, keep_turns=2)

    for text in ["a", "b", "c", "d", "e"]:
        session = store.append_user_turn("u1", text)

    assert [t.content for t in session.turns] == ["a", "b", "c", "d", "e"]
    assert session.summary is None

    summarizer.error = None
    session = store.append_user_turn("u1", "f")
    assert len(session.turns) == 3
    assert session.summarized_turns == 4


def test_empty_condensation_is_not_applied():
    store = make_store(summarizer=RecordingSummarizer("   "), max_turns=4, keep_turns=2)
    for text in ["a", "b", "c", "d", "e"]:
        session = store.append_user_turn("u1", text)
    assert len(session.turns) == 5
    assert session.summary is None


def test_no_summarizer_lets_history_grow():
    store = make_store(summarizer=None)
    for text in ["a", "b", "c", "d", "e"]:
        store.append_user_turn("u1", text)
    assert store.maybe_summarize("u1") is False

    store.set_summarizer(RecordingSummarizer("later"))
    assert store.maybe_summarize("u1") is True
    assert store.get("u1").summary == "later"


def test_context_window_keeps_summary_at_head():
    store = make_store(summarizer=RecordingSummarizer("older stuff"), max_turns=4, keep_turns=2)
    for text in ["a", "b", "c", "d", "e"]:
        store.append_user_turn("u1", text)

    window = store.context_window("u1")
    assert store.is_summary_turn(window[0])
    assert [t.content for t in window[1:]] == ["d", "e"]
    assert store.context_window("nobody") == []


def test_context_window_truncates_oversized_history_without_summarizer():
    store = make_store(summarizer=None, max_turns=4, keep_turns=2)
    for text in ["a", "b", "c", "d", "e", "f"]:
        store.append_user_turn("u1", text)
    assert [t.content for t in store.context_window("u1")] == ["c", "d", "e", "f"]


def test_invalid_bounds_are_rejected():
    with pytest.raises(ValueError):
        make_store(max_turns=4, keep_turns=4)
    with pytest.raises(ValueError):
        make_store(max_turns=4, keep_turns=0)


def test_concurrent_appends_for_one_session_are_serialized():
    store = make_store(max_turns=1000, keep_turns=10)
    texts = [f"message {i}" for i in range(50)]
    barrier = threading.Barrier(len(texts))

    def worker(text):
        barrier.wait()
        store.append_user_turn("web:shared", text)

    threads = [threading.Thread(target=worker, args=(t,)) for t in texts]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    contents = [t.content for t in store.get("web:shared").turns]
    assert len(contents) == 50
    assert sorted(contents) == sorted(texts)


def test_concurrent_exchanges_never_split_pairs():
    store = make_store(max_turns=1000, keep_turns=10)

    def worker(i):
        store.append_exchange("web:shared", f"q{i}", f"a{i}")

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(30)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    turns = store.get("web:shared").turns
    for user, assistant in zip(turns[::2], turns[1::2]):
        assert user.role == "user" and assistant.role == "assistant"
        assert assistant.content == "a" + user.content[1:]


def test_mutations_are_persisted(memory_repository):
    store = make_store(repository=memory_repository, max_turns=10, keep_turns=2)
    store.append_exchange("bot:42", "hi", "hey there")

    assert memory_repository.saves == 1
    saved = memory_repository.state.sessions["bot:42"]
    assert [t.content for t in saved.turns] == ["hi", "hey there"]


def test_store_loads_existing_state(memory_repository):
    first = make_store(repository=memory_repository, max_turns=10, keep_turns=2)
    first.append_exchange("web:a", "hi", "hello")

    second = make_store(repository=memory_repository, max_turns=10, keep_turns=2)
    assert second.session_ids() == ["web:a"]
    assert len(second.get("web:a").turns) == 2


def test_persist_failure_keeps_memory_state():
    repository = MemoryRepository(fail=True)
    store = make_store(repository=repository, max_turns=10, keep_turns=2)

    session = store.append_exchange("web:a", "hi", "hello")

    assert len(session.turns) == 2
    assert store.flush() is False
    assert len(store.get("web:a").turns) == 2


def test_flush_without_repository_is_a_noop():
    store = make_store()
    store.append_user_turn("web:a", "hi")
    assert store.flush() is False


def test_prune_stale_sessions(memory_repository):
    from datetime import datetime, timedelta, timezone

    store = make_store(repository=memory_repository, max_turns=10, keep_turns=2)
    store.append_user_turn("web:old", "hi")
    store.append_user_turn("web:new", "hi")

    # Age one session by hand.
    store._sessions["web:old"].last_seen = datetime.now(timezone.utc) - timedelta(hours=2)

    assert store.prune_stale_sessions(0) == 0
    assert store.prune_stale_sessions(3600) == 1
    assert store.session_ids() == ["web:new"]
    assert "web:old" not in memory_repository.state.sessions
    assert "web:old" not in store._locks


class GatedSummarizer:
    """Summarizer that blocks until the test lets it finish."""

    def __init__(self, text="condensed"):
        self.text = text
        self.started = threading.Event()
        self.release = threading.Event()
        self.on_call = None

    def __call__(self, turns):
        self.started.set()
        if self.on_call is not None:
            self.on_call()
        assert self.release.wait(5.0)
        return self.text


def fill_past_bound(store, session_id, summarizer):
    for text in ["a", "b", "c", "d"]:
        store.append_user_turn(session_id, text)
    thread = threading.Thread(target=store.append_user_turn, args=(session_id, "e"))
    thread.start()
    assert summarizer.started.wait(5.0)
    return thread


def test_slow_summary_does_not_block_other_sessions(memory_repository):
    summarizer = GatedSummarizer()
    store = make_store(summarizer=summarizer, repository=memory_repository)
    thread = fill_past_bound(store, "web:a", summarizer)

    try:
        started = time.monotonic()
        store.append_user_turn("web:b", "hello")
        snapshot = store.snapshot()
        elapsed = time.monotonic() - started
    finally:
        summarizer.release.set()
        thread.join(5.0)

    assert elapsed < 0.5
    assert "web:b" in snapshot.sessions
    assert store.get("web:a").summary == "condensed"


def test_append_during_summary_is_kept_after_the_summary_lands():
    summarizer = GatedSummarizer()
    store = make_store(summarizer=summarizer)
    thread = fill_past_bound(store, "u1", summarizer)

    store.append_user_turn("u1", "f")
    summarizer.release.set()
    thread.join(5.0)

    turns = store.get("u1").turns
    assert turns[0].content == f"{PREFIX} condensed"
    assert [t.content for t in turns[1:]] == ["d", "e", "f"]
    assert store.get("u1").summarized_turns == 3


def test_summary_is_dropped_when_history_head_changed():
    summarizer = GatedSummarizer()
    store = make_store(summarizer=summarizer)

    def rewrite_head():
        live = store._sessions["u1"]
        live.turns = live.turns[1:]

    summarizer.on_call = rewrite_head
    thread = fill_past_bound(store, "u1", summarizer)
    summarizer.release.set()
    thread.join(5.0)

    session = store.get("u1")
    assert [t.content for t in session.turns] == ["b", "c", "d", "e"]
    assert session.summary is None


class SlowRepository(MemoryRepository):
    """Records the turn count of every session in every save, slowly."""

    def __init__(self, delay=0.005):
        super().__init__()
        self.delay = delay
        self.history = []

    def save(self, state):
        time.sleep(self.delay)
        self.history.append({sid: len(s.turns) for sid, s in state.sessions.items()})
        super().save(state)


def test_saved_snapshots_never_go_backwards_under_concurrent_writes():
    repository = SlowRepository()
    store = make_store(repository=repository, max_turns=1000, keep_turns=10)
    session_ids = ["web:a", "web:b", "bot:c"]

    def worker(i):
        store.append_exchange(session_ids[i % len(session_ids)], f"q{i}", f"a{i}")

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(24)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert repository.state == store.snapshot()
    for sid in session_ids:
        counts = [saved.get(sid, 0) for saved in repository.history]
        assert counts == sorted(counts)
        assert counts[-1] == 16
