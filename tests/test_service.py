"""Messaging service: the single create-then-relay path and topic joins."""
import pytest
from bson import ObjectId

from arotu_chat.channel import room_topic, user_topic
from arotu_chat.errors import Forbidden, NotFound, Unauthenticated
from arotu_chat.models import RoomCreate


async def test_send_private_persists_once_and_delivers_once(service, users, fake_connection):
    bob = fake_connection()
    await service.announce(bob, users.bob)
    service.join_user_topic(bob)

    message = await service.send_private(users.alice, users.bob, 'hi')

    [event] = bob.of_type('receive-private')
    assert event['message']['id'] == message.id
    assert event['message']['sender']['username'] == 'alice'
    assert await service.store.collection.count_documents({}) == 1


async def test_publish_failure_keeps_the_message(service, users, monkeypatch):
    async def unreachable(topics, payload):
        raise ConnectionError('channel down')

    monkeypatch.setattr(service.channel, 'publish_many', unreachable)

    message = await service.send_private(users.alice, users.bob, 'still stored')

    history = await service.private_history(users.bob, users.alice)
    assert [m.id for m in history] == [message.id]


async def test_failed_validation_publishes_nothing(service, users, fake_connection):
    listener = fake_connection()
    service.channel.subscribe(listener, room_topic(str(ObjectId())))

    with pytest.raises(NotFound):
        await service.send_room(users.alice, str(ObjectId()), 'nobody home')

    assert listener.sent == []
    assert await service.store.collection.count_documents({}) == 0


async def test_private_room_rejects_non_member_sender(service, users):
    room = await service.rooms.create(users.alice, RoomCreate(name='R1', is_private=True))

    with pytest.raises(Forbidden):
        await service.send_room(users.bob, room.id, 'sneaking in')

    assert await service.store.collection.count_documents({}) == 0
    assert users.bob not in (await service.rooms.get(room.id)).members


async def test_room_topic_subscription_checks_membership(service, users, fake_connection):
    room = await service.rooms.create(users.alice, RoomCreate(name='R1', is_private=True))
    alice, bob = fake_connection(), fake_connection()
    await service.announce(alice, users.alice)
    await service.announce(bob, users.bob)

    with pytest.raises(Forbidden):
        await service.join_room_topic(bob, room.id)
    assert await service.join_room_topic(alice, room.id) == room_topic(room.id)

    await service.send_room(users.alice, room.id, 'members only')
    assert len(alice.of_type('receive-room')) == 1
    assert bob.of_type('receive-room') == []


async def test_topics_require_announced_identity(service, users, fake_connection):
    room = await service.rooms.create(users.alice, RoomCreate(name='lobby'))
    conn = fake_connection()

    with pytest.raises(Unauthenticated):
        await service.join_room_topic(conn, room.id)
    with pytest.raises(Unauthenticated):
        service.join_user_topic(conn)


async def test_cannot_join_someone_elses_user_topic(service, users, fake_connection):
    conn = fake_connection()
    await service.announce(conn, users.alice)

    with pytest.raises(Forbidden):
        service.join_user_topic(conn, users.bob)
    assert service.join_user_topic(conn, users.alice) == user_topic(users.alice)


async def test_presence_changes_are_stamped_and_broadcast(service, users, db, fake_connection):
    watcher, bob = fake_connection(), fake_connection()
    service.connect(watcher)
    service.connect(bob)

    await service.announce(bob, users.bob)
    await service.drain()
    assert (await db['users'].find_one({'_id': ObjectId(users.bob)}))['is_online'] is True
    assert watcher.of_type('online-users')[-1]['online'] == [users.bob]

    await service.disconnect(bob)
    await service.drain()
    stamped = await db['users'].find_one({'_id': ObjectId(users.bob)})
    assert stamped['is_online'] is False
    assert stamped['last_seen'] is not None
    assert watcher.of_type('online-users')[-1]['online'] == []
    assert not service.presence.is_online(users.bob)


async def test_failing_background_task_is_contained(service, users):
    async def boom():
        raise RuntimeError('stamp failed')

    service.spawn(boom(), 'test task')
    await service.drain()


async def test_removed_member_stops_receiving_private_room(service, users, fake_connection):
    room = await service.rooms.create(users.alice, RoomCreate(name='R1', is_private=True, members=[users.bob]))
    alice, bob = fake_connection(), fake_connection()
    await service.announce(alice, users.alice)
    await service.announce(bob, users.bob)
    await service.join_room_topic(alice, room.id)
    await service.join_room_topic(bob, room.id)

    updated = await service.remove_member(room.id, users.bob, users.alice)
    await service.send_room(users.alice, room.id, 'after bob left')

    assert users.bob not in updated.members
    assert room_topic(room.id) not in service.channel.topics_of(bob)
    assert len(alice.of_type('receive-room')) == 1
    assert bob.of_type('receive-room') == []


async def test_leaving_a_public_room_keeps_the_live_topic(service, users, fake_connection):
    room = await service.rooms.create(users.alice, RoomCreate(name='lobby', members=[users.bob]))
    bob = fake_connection()
    await service.announce(bob, users.bob)
    await service.join_room_topic(bob, room.id)

    await service.remove_member(room.id, users.bob, users.bob)

    assert room_topic(room.id) in service.channel.topics_of(bob)
