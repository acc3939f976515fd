"""Tests for the message store."""
from datetime import datetime, timedelta

import pytest
from bson import ObjectId

from arotu_chat.errors import Forbidden, InvalidArgument, NotFound, Unauthenticated
from arotu_chat.models import MessageKind, RoomCreate


@pytest.fixture
def store(service):
    return service.store


@pytest.fixture
def rooms(service):
    return service.rooms


async def test_create_private_message_resolves_participants(store, users):
    message = await store.create_private_message(users.alice, users.bob, 'hi')

    assert ObjectId.is_valid(message.id)
    assert message.kind == MessageKind.PRIVATE
    assert message.sender.id == users.alice
    assert message.sender.username == 'alice'
    assert message.sender.avatar == 'https://cdn.test/alice.png'
    assert message.receiver.id == users.bob
    assert message.room is None
    assert message.text == 'hi'
    assert message.seen is False


async def test_private_history_is_symmetric(store, users):
    sent = await store.create_private_message(users.alice, users.bob, 'hello bob')

    forward = await store.list_private_messages(users.alice, users.bob)
    backward = await store.list_private_messages(users.bob, users.alice)

    assert [m.text for m in forward] == ['hello bob']
    assert forward == backward
    assert forward[0] == sent


async def test_private_history_is_oldest_first(store, users, db):
    base = datetime(2024, 5, 1, 12, 0, 0)
    # inserted out of order on purpose
    for text, offset in [('third', 3), ('first', 1), ('second', 2)]:
        await db['messages'].insert_one({
            'kind': 'private', 'sender': ObjectId(users.alice), 'receiver': ObjectId(users.bob),
            'room': None, 'text': text, 'media': None, 'seen': False,
            'created_at': base + timedelta(seconds=offset), 'updated_at': base + timedelta(seconds=offset),
        })

    history = await store.list_private_messages(users.bob, users.alice)

    assert [m.text for m in history] == ['first', 'second', 'third']


async def test_private_history_excludes_other_pairs(store, users):
    await store.create_private_message(users.alice, users.bob, 'for bob')
    await store.create_private_message(users.alice, users.carol, 'for carol')

    history = await store.list_private_messages(users.alice, users.carol)

    assert [m.text for m in history] == ['for carol']


async def test_empty_history_is_an_empty_list(store, users):
    assert await store.list_private_messages(users.bob, users.carol) == []


async def test_self_messaging_is_allowed(store, users):
    message = await store.create_private_message(users.alice, users.alice, 'note to self')

    assert message.sender.id == message.receiver.id == users.alice
    assert len(await store.list_private_messages(users.alice, users.alice)) == 1


async def test_unknown_receiver_is_not_found(store, users, db):
    with pytest.raises(NotFound):
        await store.create_private_message(users.alice, str(ObjectId()), 'anyone?')
    assert await db['messages'].count_documents({}) == 0


async def test_malformed_receiver_is_invalid(store, users):
    with pytest.raises(InvalidArgument):
        await store.create_private_message(users.alice, 'B1', 'hi')


async def test_missing_actor_is_unauthenticated(store, users):
    with pytest.raises(Unauthenticated):
        await store.create_private_message(None, users.bob, 'hi')


async def test_room_message_for_missing_room_leaves_store_unchanged(store, users, db):
    await store.create_private_message(users.alice, users.bob, 'existing')
    before = await db['messages'].count_documents({})

    with pytest.raises(NotFound):
        await store.create_room_message(users.alice, str(ObjectId()), 'hello?')

    assert await db['messages'].count_documents({}) == before


async def test_same_room_message_twice_makes_two_rows(store, rooms, users):
    room = await rooms.create(users.alice, RoomCreate(name='general'))

    first = await store.create_room_message(users.alice, room.id, 'ping')
    second = await store.create_room_message(users.alice, room.id, 'ping')

    # creation is deliberately not deduplicated by content
    assert first.id != second.id
    assert [m.id for m in await store.list_room_messages(room.id)] == [first.id, second.id]


async def test_room_message_adds_sender_to_members(store, rooms, users):
    room = await rooms.create(users.alice, RoomCreate(name='general'))

    message = await store.create_room_message(users.bob, room.id, 'hey all')

    assert message.kind == MessageKind.ROOM
    assert message.room == room.id
    assert message.receiver is None
    assert users.bob in (await rooms.get(room.id)).members


async def test_existing_room_without_messages_lists_empty(store, rooms, users):
    room = await rooms.create(users.alice, RoomCreate(name='quiet'))
    assert await store.list_room_messages(room.id) == []


async def test_list_room_messages_for_missing_room(store, users):
    with pytest.raises(NotFound):
        await store.list_room_messages(str(ObjectId()))


async def test_recent_conversations_lists_each_partner_once(store, users, db):
    base = datetime(2024, 5, 1, 12, 0, 0)
    rows = [
        (users.alice, users.bob, 1),
        (users.bob, users.alice, 2),
        (users.alice, users.carol, 3),
        (users.alice, users.bob, 4),
    ]
    for sender, receiver, offset in rows:
        await db['messages'].insert_one({
            'kind': 'private', 'sender': ObjectId(sender), 'receiver': ObjectId(receiver),
            'room': None, 'text': 'x', 'media': None, 'seen': False,
            'created_at': base + timedelta(minutes=offset), 'updated_at': base + timedelta(minutes=offset),
        })

    recent = await store.recent_conversations(users.alice)

    assert [c.participant.id for c in recent] == [users.bob, users.carol]
    assert recent[0].participant.username == 'bob'
    assert recent[0].last_message_time.replace(tzinfo=None) == base + timedelta(minutes=4)
    assert recent[1].last_message_time.replace(tzinfo=None) == base + timedelta(minutes=3)


async def test_recent_conversations_ignores_room_messages(store, rooms, users):
    room = await rooms.create(users.alice, RoomCreate(name='general'))
    await store.create_room_message(users.bob, room.id, 'hi room')

    assert await store.recent_conversations(users.alice) == []


async def test_conversation_participants(store, users):
    await store.create_private_message(users.alice, users.bob, 'one')
    await store.create_private_message(users.bob, users.alice, 'two')
    await store.create_private_message(users.carol, users.alice, 'three')

    participants = await store.conversation_participants(users.alice)

    assert sorted(p.id for p in participants) == sorted([users.bob, users.carol])


async def test_mark_seen_by_receiver(store, users):
    message = await store.create_private_message(users.alice, users.bob, 'did you see this')

    seen = await store.mark_seen(message.id, users.bob)

    assert seen.seen is True
    assert (await store.get(message.id)).seen is True


async def test_only_receiver_marks_seen(store, users):
    message = await store.create_private_message(users.alice, users.bob, 'mine')

    with pytest.raises(Forbidden):
        await store.mark_seen(message.id, users.alice)


async def test_history_outlives_deleted_account(store, users, db):
    await store.create_private_message(users.carol, users.alice, 'bye')
    await db['users'].delete_one({'_id': ObjectId(users.carol)})

    history = await store.list_private_messages(users.alice, users.carol)

    assert history[0].sender.id == users.carol
    assert history[0].sender.username is None
