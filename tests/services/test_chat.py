import asyncio
import time

import pytest
from sqlalchemy import event

from farmlink.gateway import RemoteUnavailableError
from farmlink.models import Conversation, Message
from farmlink.services.chat import ChatSession, Notice, SendOutcome
from farmlink.services.speech import (
    FinalResult,
    InterimResult,
    SpeechEnded,
    SpeechErrored,
    SpeechRecognizer,
    SpeechStarted,
    TextToSpeech,
    UnavailableRecognizer,
)


class ScriptedRecognizer(SpeechRecognizer):
    def __init__(self):
        self.listener = None
        self.tags = []
        self.stops = 0

    async def start(self, language_tag, listener):
        self.tags.append(language_tag)
        self.listener = listener
        listener(SpeechStarted())

    async def stop(self):
        self.stops += 1

    def emit(self, event):
        self.listener(event)


class RecordingSpeaker(TextToSpeech):
    def __init__(self):
        self.spoken = []
        self.playing = None
        self.interrupted = []

    def speak(self, text, language_tag):
        self.spoken.append((text, language_tag))
        self.playing = text

    def stop(self):
        if self.playing is not None:
            self.interrupted.append(self.playing)
        self.playing = None


@pytest.fixture()
def recognizer():
    return ScriptedRecognizer()


@pytest.fixture()
def speaker():
    return RecordingSpeaker()


@pytest.fixture()
def make_session(make_context, gateway, translator, offline_queue, recognizer, speaker):
    def _make(user_id="r1", language="en", **kwargs):
        kwargs.setdefault("recognizer", recognizer)
        kwargs.setdefault("speaker", speaker)
        return ChatSession(
            make_context(user_id, language),
            gateway,
            kwargs.pop("translator", translator),
            offline_queue,
            **kwargs,
        )

    return _make


@pytest.mark.asyncio
async def test_open_creates_conversation_and_loads_translated_messages(
    make_session, gateway, add_message, fetch_rows
):
    session = make_session(language="kn")
    assert await session.open(7, "f1", "r1")
    conversation_id = session.conversation.id
    await session.close()

    add_message(conversation_id, "f1", "price is 40")
    add_message(conversation_id, "r1", "too high")

    session = make_session(language="kn")
    assert await session.open(7, "f1", "r1")
    try:
        assert session.conversation.id == conversation_id
        assert [m.content for m in session.messages] == ["[kn] too high", "[kn] price is 40"]
        assert len(fetch_rows(Conversation)) == 1
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_pushed_message_is_translated_appended_and_spoken(make_session, gateway, speaker):
    session = make_session(language="hi")
    await session.open(7, "f1", "r1")
    try:
        await gateway.insert_message(session.conversation.id, "f1", "fresh onions")
        await session.drain()

        assert [m.content for m in session.messages] == ["[hi] fresh onions"]
        assert speaker.spoken == [("[hi] fresh onions", "hi-IN")]
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_send_stores_canonical_text_once_and_clears_composer(
    make_session, gateway, fetch_rows, speaker
):
    session = make_session()
    await session.open(7, "f1", "r1")
    try:
        session.set_composer_text("  can you do 35 per kg?  ")
        outcome = await session.send()
        await session.drain()

        assert outcome is SendOutcome.SENT
        assert session.composer_text == ""
        assert [m.content for m in session.messages] == ["can you do 35 per kg?"]
        assert [m.content for m in fetch_rows(Message)] == ["can you do 35 per kg?"]
        [conversation] = fetch_rows(Conversation)
        assert conversation.last_message == "can you do 35 per kg?"
        assert conversation.last_sender_id == "r1"
        # own messages are not read aloud
        assert speaker.spoken == []
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_empty_composer_is_not_sent(make_session, fetch_rows):
    session = make_session()
    await session.open(7, "f1", "r1")
    try:
        assert await session.send("   ") is SendOutcome.EMPTY
        assert fetch_rows(Message) == []
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_offline_send_is_queued_then_flushed_exactly_once(
    make_session, gateway, offline_queue, fetch_rows
):
    session = make_session()
    await session.open(7, "f1", "r1")
    try:
        gateway.offline = True
        session.set_composer_text("need 20 kg")
        outcome = await session.send()

        assert outcome is SendOutcome.QUEUED
        assert session.notices == [Notice.QUEUED]
        assert session.composer_text == "need 20 kg"
        assert [entry.content for entry in offline_queue.entries()] == ["need 20 kg"]
        assert fetch_rows(Message) == []

        gateway.offline = False
        assert await session.flush_offline_queue() == 1
        assert await session.flush_offline_queue() == 0

        assert len(offline_queue) == 0
        assert [m.content for m in fetch_rows(Message)] == ["need 20 kg"]
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_lost_acknowledgement_does_not_duplicate_message(
    make_session, gateway, offline_queue, fetch_rows
):
    session = make_session()
    await session.open(7, "f1", "r1")
    try:
        gateway.drop_ack = True
        assert await session.send("deliver by friday") is SendOutcome.QUEUED

        # the retry right after queueing collides on client_ref and counts as delivered
        assert gateway.insert_attempts == 2
        assert len(offline_queue) == 0
        assert await session.flush_offline_queue() == 0
        assert [m.content for m in fetch_rows(Message)] == ["deliver by friday"]
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_flush_removes_each_entry_after_its_own_insert(
    make_session, gateway, offline_queue, fetch_rows, mocker
):
    session = make_session()
    await session.open(7, "f1", "r1")
    conversation_id = session.conversation.id
    for index in range(1, 4):
        offline_queue.enqueue(conversation_id, "r1", f"m{index}", f"ref{index}")

    real_insert = gateway.insert_message

    async def fail_on_second(conversation_id, sender_id, content, *, client_ref=None):
        if content == "m2":
            raise RemoteUnavailableError("dropped")
        return await real_insert(conversation_id, sender_id, content, client_ref=client_ref)

    mocker.patch.object(gateway, "insert_message", side_effect=fail_on_second)
    try:
        assert await session.flush_offline_queue() == 1
        assert [entry.content for entry in offline_queue.entries()] == ["m2", "m3"]

        mocker.patch.object(gateway, "insert_message", side_effect=real_insert)
        assert await session.flush_offline_queue() == 2
        assert sorted(m.content for m in fetch_rows(Message)) == ["m1", "m2", "m3"]
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_detected_language_updates_preference(
    make_session, make_translator, preferences
):
    translator = make_translator(detected={"namaste, rate kya hai?": "hi"})
    session = make_session(language="en", translator=translator)
    await session.open(7, "f1", "r1")
    changes = []
    session.context.on_language_change(changes.append)
    try:
        await session.send("namaste, rate kya hai?")
        await session.drain()

        assert session.context.language == "hi"
        assert preferences.load_language() == "hi"
        assert changes == ["hi"]
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_unsupported_detected_language_is_ignored(make_session, make_translator):
    translator = make_translator(detected={"bonjour": "fr"})
    session = make_session(language="en", translator=translator)
    await session.open(7, "f1", "r1")
    try:
        await session.send("bonjour")
        assert session.context.language == "en"
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_final_segments_join_with_single_space(make_session, recognizer):
    session = make_session(language="te", silence_timeout=5)
    await session.open(7, "f1", "r1")
    try:
        assert await session.start_recording()
        assert recognizer.tags == ["te-IN"]

        recognizer.emit(FinalResult("hello"))
        recognizer.emit(FinalResult("hello"))
        recognizer.emit(InterimResult("wor"))
        await session.drain()
        assert session.composer_text == "hello wor"

        recognizer.emit(FinalResult("world"))
        await session.drain()
        assert session.composer_text == "hello world"

        await session.stop_recording()
        assert session.recording is False
        assert session.composer_text == "hello world"
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_silence_stops_recording_and_keeps_text(make_session, recognizer):
    session = make_session(silence_timeout=0.05)
    await session.open(7, "f1", "r1")
    try:
        await session.start_recording()
        recognizer.emit(FinalResult("two crates"))
        await session.drain()

        await asyncio.sleep(0.2)
        await session.drain()

        assert session.recording is False
        assert recognizer.stops == 1
        assert session.composer_text == "two crates"
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_recognizer_error_stops_recording_with_single_notice(make_session, recognizer):
    session = make_session(silence_timeout=5)
    await session.open(7, "f1", "r1")
    try:
        await session.start_recording()
        recognizer.emit(SpeechErrored("network"))
        recognizer.emit(SpeechErrored("network"))
        await session.drain()

        assert session.recording is False
        assert session.voice_ready is False
        assert session.notices == [Notice.SPEECH_UNAVAILABLE]
        assert await session.start_recording() is False
        assert session.notices == [Notice.SPEECH_UNAVAILABLE]
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_denied_microphone_leaves_typed_input(make_session, mocker):
    ask = mocker.AsyncMock(return_value=False)
    session = make_session(request_microphone=ask)
    await session.open(7, "f1", "r1")
    try:
        assert await session.start_recording() is False
        assert session.recording is False
        assert session.notices == [Notice.MICROPHONE_DENIED]
        ask.assert_awaited_once()
        assert await session.send("typed instead") is SendOutcome.SENT
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_device_without_recognizer_reports_unavailable(make_session):
    session = make_session(recognizer=UnavailableRecognizer())
    await session.open(7, "f1", "r1")
    try:
        assert session.voice_ready is False
        assert await session.start_recording() is False
        assert session.notices == [Notice.SPEECH_UNAVAILABLE]
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_mute_stops_playback_and_silences_later_messages(make_session, gateway, speaker):
    session = make_session()
    await session.open(7, "f1", "r1")
    try:
        await gateway.insert_message(session.conversation.id, "f1", "first offer")
        await session.drain()
        assert speaker.playing == "first offer"

        assert session.toggle_mute() is True
        assert speaker.playing is None
        assert speaker.interrupted == ["first offer"]

        await gateway.insert_message(session.conversation.id, "f1", "second offer")
        await session.drain()
        assert [text for text, _ in speaker.spoken] == ["first offer"]

        session.toggle_mute()
        assert session.speak("again") is True
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_closed_session_receives_no_more_pushes(make_session, gateway, speaker):
    session = make_session()
    await session.open(7, "f1", "r1")
    conversation_id = session.conversation.id
    await session.close()

    await gateway.insert_message(conversation_id, "f1", "anyone there?")
    await asyncio.sleep(0)

    assert session.messages == []
    assert speaker.spoken == []


@pytest.mark.asyncio
async def test_resolution_failure_shows_error_then_retry_recovers(make_session, gateway, mocker):
    real_find = gateway.find_conversation
    mocker.patch.object(
        gateway,
        "find_conversation",
        side_effect=RemoteUnavailableError("offline"),
    )
    session = make_session()
    try:
        assert await session.open(7, "f1", "r1") is False
        assert session.error is not None
        assert session.conversation is None

        mocker.patch.object(gateway, "find_conversation", side_effect=real_find)
        assert await session.retry() is True
        assert session.error is None
        assert session.conversation is not None
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_slow_insert_times_out_and_is_queued(
    make_session, engine, offline_queue, fetch_rows
):
    stalled = []

    def stall_first_message_insert(conn, cursor, statement, parameters, context, executemany):
        if statement.startswith("INSERT INTO messages") and not stalled:
            stalled.append(statement)
            time.sleep(0.5)

    session = make_session(remote_timeout=0.05)
    await session.open(7, "f1", "r1")
    event.listen(engine, "before_cursor_execute", stall_first_message_insert)
    try:
        loop = asyncio.get_running_loop()
        started = loop.time()
        outcome = await session.send("hello")
        elapsed = loop.time() - started

        assert outcome is SendOutcome.QUEUED
        assert elapsed < 0.4
        assert session.notices == [Notice.QUEUED]
        assert [entry.content for entry in offline_queue.entries()] == ["hello"]

        # the stalled insert still lands; the queued copy then counts as delivered
        await asyncio.sleep(1.0)
        assert await session.flush_offline_queue() == 1
        assert len(offline_queue) == 0
        assert [m.content for m in fetch_rows(Message)] == ["hello"]
    finally:
        event.remove(engine, "before_cursor_execute", stall_first_message_insert)
        await session.close()


@pytest.mark.asyncio
async def test_queued_messages_are_delivered_on_open_and_after_a_send(
    make_session, create_conversation, offline_queue, fetch_rows
):
    conversation_id = create_conversation()
    offline_queue.enqueue(conversation_id, "r1", "left over from yesterday", "ref-old")

    session = make_session()
    await session.open(7, "f1", "r1")
    try:
        assert len(offline_queue) == 0
        assert [m.content for m in fetch_rows(Message)] == ["left over from yesterday"]

        offline_queue.enqueue(conversation_id, "r1", "still waiting", "ref-waiting")
        assert await session.send("new message") is SendOutcome.SENT

        assert len(offline_queue) == 0
        assert sorted(m.content for m in fetch_rows(Message)) == [
            "left over from yesterday",
            "new message",
            "still waiting",
        ]
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_language_change_reloads_translated_messages(
    make_session, create_conversation, add_message
):
    conversation_id = create_conversation()
    add_message(conversation_id, "f1", "fresh onions")
    session = make_session()
    await session.open(7, "f1", "r1")
    try:
        assert [m.content for m in session.messages] == ["fresh onions"]

        assert session.context.set_language("hi") is True
        await session.drain()

        assert [m.content for m in session.messages] == ["[hi] fresh onions"]
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_sender_sees_own_words_when_push_arrives_first(make_session, fetch_rows):
    session = make_session(language="kn")
    await session.open(7, "f1", "r1")
    try:
        assert await session.send("ondu kilo") is SendOutcome.SENT
        await session.drain()

        assert [m.content for m in session.messages] == ["ondu kilo"]
        assert len(fetch_rows(Message)) == 1
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_new_incoming_message_interrupts_playback(make_session, gateway, speaker):
    session = make_session()
    await session.open(7, "f1", "r1")
    try:
        await gateway.insert_message(session.conversation.id, "f1", "first offer")
        await session.drain()
        await gateway.insert_message(session.conversation.id, "f1", "second offer")
        await session.drain()

        assert speaker.interrupted == ["first offer"]
        assert speaker.playing == "second offer"
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_late_speech_end_keeps_edited_composer(make_session, recognizer):
    session = make_session(silence_timeout=5)
    await session.open(7, "f1", "r1")
    try:
        await session.start_recording()
        recognizer.emit(FinalResult("hello"))
        await session.drain()
        await session.stop_recording()
        assert session.composer_text == "hello"

        session.set_composer_text("hello there")
        recognizer.emit(SpeechEnded())
        await session.drain()

        assert session.composer_text == "hello there"
        assert session.recording is False
    finally:
        await session.close()
