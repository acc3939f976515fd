from typing import Dict, List

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status

from .auth import current_user_id
from .models import (
    AdminAdd,
    MemberAdd,
    Message,
    PrivateMessageCreate,
    RecentConversation,
    Room,
    RoomCreate,
    RoomMessageCreate,
    UserSummary,
)
from .rooms import RoomDirectory
from .service import MessagingService

messages_router = APIRouter(prefix='/api/messages', tags=['messages'])
rooms_router = APIRouter(prefix='/api/rooms', tags=['rooms'])
presence_router = APIRouter(prefix='/api/presence', tags=['presence'])


def get_messaging(request: Request) -> MessagingService:
    return request.app.state.messaging


def get_rooms(request: Request) -> RoomDirectory:
    return request.app.state.messaging.rooms


# -- private messages

@messages_router.post('/private', response_model=Message, status_code=status.HTTP_201_CREATED)
async def create_private_message(
    body: PrivateMessageCreate,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user_id),
    service: MessagingService = Depends(get_messaging),
):
    message = await service.create_private(user_id, body.receiver, body.text, body.media)
    # publish after the response is sent; a failed publish is only logged
    background_tasks.add_task(service.relay.publish_message, message)
    return message


@messages_router.get('/private/{other_user_id}', response_model=List[Message])
async def list_private_messages(
    other_user_id: str,
    user_id: str = Depends(current_user_id),
    service: MessagingService = Depends(get_messaging),
):
    return await service.private_history(user_id, other_user_id)


@messages_router.get('/recent-conversations', response_model=List[RecentConversation])
async def recent_conversations(
    user_id: str = Depends(current_user_id),
    service: MessagingService = Depends(get_messaging),
):
    return await service.recent_conversations(user_id)


@messages_router.get('/participants', response_model=List[UserSummary])
async def conversation_participants(
    user_id: str = Depends(current_user_id),
    service: MessagingService = Depends(get_messaging),
):
    return await service.participants(user_id)


@messages_router.post('/{message_id}/seen', response_model=Message)
async def mark_seen(
    message_id: str,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user_id),
    service: MessagingService = Depends(get_messaging),
):
    message = await service.mark_seen(message_id, user_id)
    background_tasks.add_task(service.relay.publish_seen, message)
    return message


# -- rooms

@rooms_router.post('', response_model=Room, status_code=status.HTTP_201_CREATED)
async def create_room(
    body: RoomCreate,
    user_id: str = Depends(current_user_id),
    rooms: RoomDirectory = Depends(get_rooms),
):
    return await rooms.create(user_id, body)


@rooms_router.get('', response_model=List[Room])
async def list_rooms(
    user_id: str = Depends(current_user_id),
    rooms: RoomDirectory = Depends(get_rooms),
):
    return await rooms.list_accessible(user_id)


@rooms_router.get('/{room_id}', response_model=Room)
async def get_room(
    room_id: str,
    user_id: str = Depends(current_user_id),
    rooms: RoomDirectory = Depends(get_rooms),
):
    return await rooms.get_for(room_id, user_id)


@rooms_router.post('/{room_id}/members', response_model=Room)
async def add_member(
    room_id: str,
    body: MemberAdd,
    user_id: str = Depends(current_user_id),
    rooms: RoomDirectory = Depends(get_rooms),
):
    return await rooms.add_member(room_id, body.user_id or user_id, user_id)


@rooms_router.delete('/{room_id}/members/{member_id}', response_model=Room)
async def remove_member(
    room_id: str,
    member_id: str,
    user_id: str = Depends(current_user_id),
    service: MessagingService = Depends(get_messaging),
):
    # live subscriptions to a private room go with the membership
    return await service.remove_member(room_id, member_id, user_id)


@rooms_router.post('/{room_id}/admins', response_model=Room)
async def add_admin(
    room_id: str,
    body: AdminAdd,
    user_id: str = Depends(current_user_id),
    rooms: RoomDirectory = Depends(get_rooms),
):
    return await rooms.add_admin(room_id, body.user_id, user_id)


@rooms_router.delete('/{room_id}/admins/{admin_id}', response_model=Room)
async def remove_admin(
    room_id: str,
    admin_id: str,
    user_id: str = Depends(current_user_id),
    rooms: RoomDirectory = Depends(get_rooms),
):
    return await rooms.remove_admin(room_id, admin_id, user_id)


@rooms_router.post('/{room_id}/messages', response_model=Message, status_code=status.HTTP_201_CREATED)
async def create_room_message(
    room_id: str,
    body: RoomMessageCreate,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user_id),
    service: MessagingService = Depends(get_messaging),
):
    message = await service.create_room(user_id, room_id, body.text, body.media)
    background_tasks.add_task(service.relay.publish_message, message)
    return message


@rooms_router.get('/{room_id}/messages', response_model=List[Message])
async def list_room_messages(
    room_id: str,
    user_id: str = Depends(current_user_id),
    service: MessagingService = Depends(get_messaging),
):
    return await service.room_history(user_id, room_id)


# -- presence

@presence_router.get('/online')
async def list_online(request: Request, user_id: str = Depends(current_user_id)) -> Dict[str, List[str]]:
    return {'online': request.app.state.presence.online_identities()}
