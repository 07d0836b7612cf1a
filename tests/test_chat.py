import asyncio
import uuid
from datetime import datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.core.exceptions import GenerationError, PlanLimitReached, ThreadRenameError
from app.crud import chat as crud_chat
from app.crud import subscription as crud_subscription
from app.models.chat import AI_SENDER, ChatMessage, ChatThread
from app.services import chat_service
from app.services.chat_service import ChatSession, derive_thread_title, default_thread_title
from app.services.generators import CHAT_APOLOGY
from app.utils.realtime import ChangeFeed


async def echo_responder(message, thread_id, concise_mode):
    return {"text": f"About '{message}': start with a budget."}


async def failing_responder(message, thread_id, concise_mode):
    raise GenerationError("Both models failed")


async def _message_count(db, thread_id=None):
    query = select(func.count()).select_from(ChatMessage)
    if thread_id is not None:
        query = query.where(ChatMessage.thread_id == thread_id)
    return (await db.execute(query)).scalar_one()


def test_default_title_is_the_creation_date():
    assert default_thread_title(datetime(2024, 3, 7, 9, 30)) == "Chat Mar 07, 2024"


def test_derived_title_is_cut_at_a_word_boundary():
    assert derive_thread_title("  How   do I build an emergency fund?  ") == "How do I build an emergency fund?"
    long_title = derive_thread_title("How should I split my paycheck between retirement savings and paying down debt?")
    assert long_title.endswith("...")
    assert len(long_title) <= 53
    assert long_title.startswith("How should I split my paycheck between retirement")


async def test_thread_without_title_is_named_after_today(db, user):
    thread = await chat_service.create_thread(db, user.id)
    assert thread.title == default_thread_title()
    assert thread.renamed is False


async def test_send_persists_user_then_ai_message(db, user):
    feed = ChangeFeed()
    thread = await chat_service.create_thread(db, user.id)
    subscription = feed.subscribe("chat_messages", thread_id=thread.id)

    result = await chat_service.send_message(
        db, user.id, thread.id, "How much should I save?", responder=echo_responder, feed=feed
    )

    messages = await crud_chat.get_messages(thread.id, db)
    assert [m.sender for m in messages] == [str(user.id), AI_SENDER]
    assert messages[0].content == "How much should I save?"
    assert messages[1].content.startswith("About 'How much should I save?'")
    assert result.ai_failed is False

    first = await subscription.get(timeout=1)
    second = await subscription.get(timeout=1)
    assert [first["new"]["id"], second["new"]["id"]] == [str(messages[0].id), str(messages[1].id)]
    subscription.close()


async def test_failed_responder_stores_an_apology(db, user):
    thread = await chat_service.create_thread(db, user.id)

    result = await chat_service.send_message(db, user.id, thread.id, "Hello?", responder=failing_responder)

    assert result.ai_failed is True
    assert result.ai_message.content == CHAT_APOLOGY
    assert result.ai_message.sender == AI_SENDER
    assert await _message_count(db, thread.id) == 2


async def test_answer_payloads_are_accepted(db, user):
    async def answer_responder(message, thread_id, concise_mode):
        return {"answer": "Pay off the card with the highest rate first."}

    thread = await chat_service.create_thread(db, user.id)
    result = await chat_service.send_message(db, user.id, thread.id, "Debt?", responder=answer_responder)

    assert result.ai_message.content == "Pay off the card with the highest rate first."


async def test_blank_responder_text_counts_as_failure(db, user):
    async def blank_responder(message, thread_id, concise_mode):
        return {"text": "   "}

    thread = await chat_service.create_thread(db, user.id)
    result = await chat_service.send_message(db, user.id, thread.id, "Hi", responder=blank_responder)

    assert result.ai_failed is True
    assert result.ai_message.content == CHAT_APOLOGY


async def test_empty_message_is_rejected(db, user):
    thread = await chat_service.create_thread(db, user.id)
    with pytest.raises(ValueError):
        await chat_service.send_message(db, user.id, thread.id, "   ", responder=echo_responder)
    assert await _message_count(db, thread.id) == 0


async def test_message_limit_blocks_before_writing(db, user):
    thread = await chat_service.create_thread(db, user.id)
    await crud_subscription.increment_usage(user.id, db, messages=5)

    with pytest.raises(PlanLimitReached):
        await chat_service.send_message(db, user.id, thread.id, "One more", responder=echo_responder)

    assert await _message_count(db, thread.id) == 0


async def test_sending_counts_towards_daily_usage(db, user):
    thread = await chat_service.create_thread(db, user.id)
    await chat_service.send_message(db, user.id, thread.id, "First", responder=echo_responder)

    record = await crud_subscription.get_usage_for_day(user.id, db)
    assert record.messages_sent == 1


async def test_title_write_failure_still_answers_the_message(db, user, monkeypatch):
    thread = await chat_service.create_thread(db, user.id)
    original_title = thread.title

    async def locked(thread, title, db, renamed=False):
        thread.title = title
        raise OperationalError("UPDATE chat_threads", {}, Exception("database is locked"))

    monkeypatch.setattr(crud_chat, "set_thread_title", locked)

    result = await chat_service.send_message(db, user.id, thread.id, "Saving for a car", responder=echo_responder)

    assert result.ai_failed is False
    assert result.thread.title == original_title
    assert result.user_message.content == "Saving for a car"
    assert await _message_count(db, thread.id) == 2


async def test_usage_write_failure_still_answers_the_message(db, user, monkeypatch):
    thread = await chat_service.create_thread(db, user.id)

    async def locked(user_id, db, goals=0, messages=0):
        raise OperationalError("INSERT INTO usage_tracking", {}, Exception("database is locked"))

    monkeypatch.setattr(crud_subscription, "increment_usage", locked)

    result = await chat_service.send_message(db, user.id, thread.id, "First", responder=echo_responder)

    assert result.ai_message.sender == AI_SENDER
    assert result.thread.title == "First"
    assert await _message_count(db, thread.id) == 2


async def test_first_message_names_the_thread(db, user):
    thread = await chat_service.create_thread(db, user.id)

    result = await chat_service.send_message(db, user.id, thread.id, "Saving for a car", responder=echo_responder)
    assert result.thread.title == "Saving for a car"

    await chat_service.send_message(db, user.id, thread.id, "And insurance?", responder=echo_responder)
    assert (await crud_chat.get_thread(thread.id, user.id, db)).title == "Saving for a car"


async def test_renamed_thread_keeps_its_title(db, user):
    thread = await chat_service.create_thread(db, user.id, "Car fund")

    result = await chat_service.send_message(db, user.id, thread.id, "Saving for a car", responder=echo_responder)

    assert result.thread.title == "Car fund"


async def test_blank_rename_is_rejected_without_writing(db, user):
    thread = await chat_service.create_thread(db, user.id, "Budget questions")

    for title in ("", "   "):
        with pytest.raises(ThreadRenameError):
            await chat_service.rename_thread(db, user.id, thread.id, title)

    stored = await crud_chat.get_thread(thread.id, user.id, db)
    assert stored.title == "Budget questions"


async def test_rename_trims_and_marks_thread(db, user):
    thread = await chat_service.create_thread(db, user.id)

    renamed = await chat_service.rename_thread(db, user.id, thread.id, "  Retirement  ")

    assert renamed.title == "Retirement"
    assert renamed.renamed is True


async def test_delete_removes_messages_and_thread(db, user):
    thread = await chat_service.create_thread(db, user.id)
    other = await chat_service.create_thread(db, user.id)
    await chat_service.send_message(db, user.id, thread.id, "Hi", responder=echo_responder)
    await chat_service.send_message(db, user.id, other.id, "Hi", responder=echo_responder)

    assert await chat_service.delete_thread(db, user.id, thread.id) is True

    assert await _message_count(db, thread.id) == 0
    assert await _message_count(db, other.id) == 2
    assert (await db.execute(select(ChatThread).where(ChatThread.id == thread.id))).scalar_one_or_none() is None


async def test_threads_of_other_users_are_invisible(db, user, other_user):
    stranger = other_user
    thread = await chat_service.create_thread(db, user.id)

    assert await chat_service.delete_thread(db, stranger.id, thread.id) is False
    assert await chat_service.send_message(db, stranger.id, thread.id, "Hi", responder=echo_responder) is None


async def test_session_shows_each_message_once(session_factory, user):
    feed = ChangeFeed()
    shown = []

    async def on_message(message):
        shown.append(message["id"])

    async with session_factory() as db:
        thread = await chat_service.create_thread(db, user.id)

    session = ChatSession(user.id, session_factory=session_factory, feed=feed, on_message=on_message)
    assert await session.open_thread(thread.id) is True

    await session.send("Is an index fund safe?", responder=echo_responder)
    await session.settle()

    assert len(session.messages) == 2
    assert len(shown) == 2
    assert len(set(shown)) == 2
    await session.close()
    assert feed.subscriber_count() == 0


async def test_session_applies_inserts_from_elsewhere(session_factory, user):
    feed = ChangeFeed()

    async with session_factory() as db:
        thread = await chat_service.create_thread(db, user.id)
        other = await chat_service.create_thread(db, user.id)

    session = ChatSession(user.id, session_factory=session_factory, feed=feed)
    await session.open_thread(thread.id)

    event = {"id": str(uuid.uuid4()), "thread_id": str(thread.id), "sender": AI_SENDER, "content": "Hi"}
    feed.publish("chat_messages", event)
    feed.publish("chat_messages", dict(event))
    feed.publish("chat_messages", {**event, "id": str(uuid.uuid4()), "thread_id": str(other.id)})
    await session.settle()

    assert [message["id"] for message in session.messages] == [event["id"]]
    await session.close()


async def test_switching_threads_releases_the_old_subscription(session_factory, user):
    feed = ChangeFeed()

    async with session_factory() as db:
        first = await chat_service.create_thread(db, user.id)
        await chat_service.send_message(db, user.id, first.id, "Old question", responder=echo_responder)
        second = await chat_service.create_thread(db, user.id)

    session = ChatSession(user.id, session_factory=session_factory, feed=feed)
    await session.open_thread(first.id)
    assert len(session.messages) == 2

    await session.open_thread(second.id)

    assert session.messages == []
    assert feed.subscriber_count("chat_messages") == 1
    await session.close()


async def test_session_keeps_applying_messages_after_a_delivery_error(session_factory, user):
    feed = ChangeFeed()
    async with session_factory() as db:
        thread = await chat_service.create_thread(db, user.id)

    delivered = []

    async def forward(message):
        delivered.append(message["id"])
        if len(delivered) == 1:
            raise RuntimeError("socket send failed")

    session = ChatSession(user.id, session_factory=session_factory, feed=feed, on_message=forward)
    await session.open_thread(thread.id)

    for content in ("Hi", "Still there?"):
        feed.publish("chat_messages", {
            "id": str(uuid.uuid4()), "thread_id": str(thread.id), "sender": AI_SENDER, "content": content,
        })
    await asyncio.wait_for(session.settle(), timeout=1)

    assert [message["content"] for message in session.messages] == ["Hi", "Still there?"]
    assert len(delivered) == 2
    await session.close()
    assert feed.subscriber_count() == 0
