import asyncio

from conftest import FakeChatModel, FakeSynthesizer, FakeTranscriber
from luna_server.core.errors import UpstreamError
from luna_server.core.orchestrator import ReplyOrchestrator
from luna_server.core.streaming import CallSession, CallState
from luna_server.runtime_state import ConversationStore
from luna_server.utils import ReplyAudioStore

APOLOGY = "Sorry, I couldn't hear you."
PLACEHOLDER = "(inaudible)"
SID = "web:caller"


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def make_call(
    model=None,
    transcriber=None,
    synthesizer=None,
    audio_store=None,
    clock=None,
    **overrides,
):
    store = ConversationStore(None, max_turns=30, keep_turns=15)
    orchestrator = ReplyOrchestrator(
        store,
        model or FakeChatModel(),
        preamble="You are Luna.",
        timeout_s=2.0,
    )
    events = []

    async def emit(payload):
        events.append(payload)

    options = dict(
        synthesizer=synthesizer,
        audio_store=audio_store,
        partial_interval_s=1.0,
        partial_min_bytes=10**9,
        max_segment_bytes=1024,
        empty_transcript_policy="reject",
        empty_transcript_placeholder=PLACEHOLDER,
        empty_transcript_reply=APOLOGY,
        timeout_s=2.0,
    )
    options.update(overrides)
    if clock is not None:
        options["clock"] = clock

    call = CallSession(SID, orchestrator, transcriber or FakeTranscriber(), emit, **options)
    return call, events, store


async def wait_until(predicate, timeout=3.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def results(events):
    return [e for e in events if e["type"] == "result"]


def test_segment_end_without_audio_rejects_with_apology():
    transcriber = FakeTranscriber()
    model = FakeChatModel()

    async def scenario():
        call, events, store = make_call(model=model, transcriber=transcriber)
        async with call:
            await call.handle_control('{"type": "segment_end"}')
            await wait_until(lambda: results(events))
        return events, store

    events, store = asyncio.run(scenario())

    (result,) = results(events)
    assert result["segment"] == 1
    assert result["transcript"] == ""
    assert result["reply"] == APOLOGY
    assert result["error"]["code"] == "invalid_input"
    assert transcriber.calls == []
    assert model.calls == []
    assert store.get(SID) is None


def test_empty_transcript_with_placeholder_policy_asks_the_model():
    model = FakeChatModel()
    transcriber = FakeTranscriber(text="")

    async def scenario():
        call, events, store = make_call(
            model=model,
            transcriber=transcriber,
            empty_transcript_policy="placeholder",
        )
        async with call:
            call.feed_audio(b"\x00\x00static")
            call.end_segment()
            await wait_until(lambda: results(events))
        return events, store

    events, store = asyncio.run(scenario())

    (result,) = results(events)
    assert result["transcript"] == ""
    assert result["reply"] == f"reply to: {PLACEHOLDER}"
    assert result["error"] is None
    assert model.calls[0][1][-1] == {"role": "user", "content": PLACEHOLDER}
    assert [t.content for t in store.get(SID).turns] == [PLACEHOLDER, f"reply to: {PLACEHOLDER}"]


def test_empty_transcript_with_reject_policy_skips_the_model():
    model = FakeChatModel()

    async def scenario():
        call, events, _ = make_call(model=model, transcriber=FakeTranscriber(text="  "))
        async with call:
            call.feed_audio(b"noise")
            call.end_segment()
            await wait_until(lambda: results(events))
        return events

    (result,) = results(asyncio.run(scenario()))
    assert result["transcript"] == ""
    assert result["error"]["code"] == "invalid_input"
    assert model.calls == []


def test_segment_is_transcribed_answered_and_recorded(tmp_path):
    synthesizer = FakeSynthesizer()
    audio_store = ReplyAudioStore(tmp_path)

    async def scenario():
        call, events, store = make_call(
            transcriber=FakeTranscriber(text="I had a great day"),
            synthesizer=synthesizer,
            audio_store=audio_store,
            voice="nova",
        )
        async with call:
            call.feed_audio(b"abc")
            call.feed_audio(b"def")
            assert call.state is CallState.ACCUMULATING
            assert call.end_segment() == 1
            assert call.buffered_bytes == 0
            await wait_until(lambda: results(events))
        return events, store

    events, store = asyncio.run(scenario())

    (result,) = results(events)
    assert result["transcript"] == "I had a great day"
    assert result["reply"] == "reply to: I had a great day"
    assert result["mood"] == "happy"
    assert result["error"] is None
    assert audio_store.path_for(result["audio_url"]).read_bytes() == synthesizer.audio
    assert synthesizer.calls == [("reply to: I had a great day", "nova")]
    assert len(store.get(SID).turns) == 2


def test_results_follow_segment_order():
    transcriber = FakeTranscriber(
        by_audio={b"one": "first", b"two": "second"},
        delays={b"one": 0.2, b"two": 0.0},
    )

    async def scenario():
        call, events, store = make_call(transcriber=transcriber)
        async with call:
            call.feed_audio(b"one")
            call.end_segment()
            call.feed_audio(b"two")
            call.end_segment()
            await wait_until(lambda: len(results(events)) == 2)
        return events, store

    events, store = asyncio.run(scenario())

    assert [r["segment"] for r in results(events)] == [1, 2]
    assert [r["transcript"] for r in results(events)] == ["first", "second"]
    assert [t.content for t in store.get(SID).turns] == [
        "first",
        "reply to: first",
        "second",
        "reply to: second",
    ]


def test_transcription_failure_gives_error_result_and_keeps_call_open():
    model = FakeChatModel()

    async def scenario():
        call, events, _ = make_call(
            model=model,
            transcriber=FakeTranscriber(error=UpstreamError("STT HTTP 500")),
        )
        async with call:
            call.feed_audio(b"abc")
            call.end_segment()
            await wait_until(lambda: results(events))
            await call.handle_control('{"type": "ping"}')
            await wait_until(lambda: {"type": "pong"} in events)
            assert call.state is not CallState.CLOSED
        return events

    (result,) = results(asyncio.run(scenario()))
    assert result["transcript"] is None
    assert result["reply"] is None
    assert result["error"]["code"] == "upstream_error"
    assert model.calls == []


def test_model_failure_gives_error_result_without_recording():
    async def scenario():
        call, events, store = make_call(
            model=FakeChatModel(error=UpstreamError("HTTP 502")),
            transcriber=FakeTranscriber(text="are you there"),
        )
        async with call:
            call.feed_audio(b"abc")
            call.end_segment()
            await wait_until(lambda: results(events))
        return events, store

    events, store = asyncio.run(scenario())

    (result,) = results(events)
    assert result["transcript"] == "are you there"
    assert result["error"]["code"] == "upstream_error"
    assert result["reply"] == UpstreamError.user_message
    assert store.get(SID) is None


def test_partials_are_throttled():
    clock = Clock()

    async def scenario():
        call, events, _ = make_call(
            transcriber=FakeTranscriber(text="hel"),
            clock=clock,
            partial_interval_s=1.0,
            partial_min_bytes=4,
        )
        async with call:
            clock.now = 0.5
            call.feed_audio(b"abcd")
            await asyncio.sleep(0.05)
            assert [e for e in events if e["type"] == "partial"] == []

            clock.now = 1.2
            call.feed_audio(b"efgh")
            await wait_until(lambda: any(e["type"] == "partial" for e in events))

            # Within the interval again: no second partial.
            clock.now = 1.5
            call.feed_audio(b"ijkl")
            await asyncio.sleep(0.05)
        return events

    events = asyncio.run(scenario())

    partials = [e for e in events if e["type"] == "partial"]
    assert partials == [{"type": "partial", "segment": 1, "text": "hel"}]


def test_partial_below_min_bytes_is_skipped():
    clock = Clock()
    transcriber = FakeTranscriber(text="hel")

    async def scenario():
        call, events, _ = make_call(
            transcriber=transcriber,
            clock=clock,
            partial_interval_s=1.0,
            partial_min_bytes=100,
        )
        async with call:
            clock.now = 5.0
            call.feed_audio(b"tiny")
            await asyncio.sleep(0.05)
        return events

    assert asyncio.run(scenario()) == []
    assert transcriber.calls == []


def test_partial_failure_is_swallowed():
    clock = Clock()

    async def scenario():
        call, events, _ = make_call(
            transcriber=FakeTranscriber(error=UpstreamError("STT down")),
            clock=clock,
            partial_interval_s=1.0,
            partial_min_bytes=1,
        )
        async with call:
            clock.now = 2.0
            call.feed_audio(b"abc")
            await asyncio.sleep(0.05)
            await call.handle_control('{"type": "ping"}')
            await wait_until(lambda: events)
        return events

    assert asyncio.run(scenario()) == [{"type": "pong"}]


def test_partial_for_finalized_segment_is_dropped():
    clock = Clock()
    transcriber = FakeTranscriber(text="partial words", delays={"*": 0.1})

    async def scenario():
        call, events, _ = make_call(
            transcriber=transcriber,
            clock=clock,
            partial_interval_s=1.0,
            partial_min_bytes=1,
        )
        async with call:
            clock.now = 2.0
            call.feed_audio(b"abc")
            call.end_segment()
            await wait_until(lambda: results(events))
            await asyncio.sleep(0.15)
        return events

    events = asyncio.run(scenario())
    assert [e["type"] for e in events] == ["result"]


def test_oversized_segment_drops_frames():
    async def scenario():
        call, _, _ = make_call(max_segment_bytes=10)
        async with call:
            call.feed_audio(b"12345678")
            call.feed_audio(b"12345")
            call.feed_audio(b"")
            return call.buffered_bytes

    assert asyncio.run(scenario()) == 8


def test_malformed_and_unknown_control_frames_are_ignored():
    async def scenario():
        call, events, _ = make_call()
        async with call:
            await call.handle_control("not json")
            await call.handle_control('["segment_end"]')
            await call.handle_control('{"type": "dance"}')
            await call.handle_control('{"kind": "segment_end"}')
            await call.handle_control('{"type": "PING"}')
            await wait_until(lambda: events)
            return events, call.segment_index

    events, segment_index = asyncio.run(scenario())
    assert events == [{"type": "pong"}]
    assert segment_index == 1


def test_end_aliases_finalize_segments():
    async def scenario():
        call, events, _ = make_call(transcriber=FakeTranscriber(text="hi"))
        async with call:
            for alias in ("end", "finalize"):
                call.feed_audio(b"abc")
                await call.handle_control('{"type": "%s"}' % alias)
            await wait_until(lambda: len(results(events)) == 2)
        return events

    assert [r["segment"] for r in results(asyncio.run(scenario()))] == [1, 2]


def test_close_during_finalize_cancels_and_sends_nothing():
    transcriber = FakeTranscriber(text="hello", delays={"*": 0.3})

    async def scenario():
        call, events, store = make_call(transcriber=transcriber)
        call.start()
        call.feed_audio(b"first")
        call.end_segment()
        call.feed_audio(b"second")
        call.end_segment()
        call.feed_audio(b"unfinished")
        await asyncio.sleep(0.05)

        await call.close()
        assert call.state is CallState.CLOSED
        assert call.buffered_bytes == 0
        assert call.end_segment() is None

        await asyncio.sleep(0.4)
        return events, store

    events, store = asyncio.run(scenario())
    assert events == []
    assert store.get(SID) is None
    assert transcriber.calls == [b"first"]


def test_close_is_idempotent():
    async def scenario():
        call, _, _ = make_call()
        call.start()
        await call.close()
        await call.close()
        call.feed_audio(b"late")
        return call.buffered_bytes

    assert asyncio.run(scenario()) == 0


def test_send_failures_do_not_break_the_worker():
    async def scenario():
        call, _, _ = make_call(transcriber=FakeTranscriber(text="hi"))
        sent = []

        async def flaky_emit(payload):
            if not sent:
                sent.append("failed")
                raise ConnectionError("socket gone")
            sent.append(payload)

        call._emit = flaky_emit
        async with call:
            for _ in range(2):
                call.feed_audio(b"abc")
                call.end_segment()
            await wait_until(lambda: len(sent) == 2)
        return sent

    sent = asyncio.run(scenario())
    assert sent[1]["segment"] == 2
