import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from .auth import verify_token
from .channel import Connection
from .errors import DomainError, Forbidden, InternalError, InvalidArgument, Unauthenticated
from .events import (
    AnnounceIdentity,
    JoinRoomTopic,
    JoinUserTopic,
    LeaveRoomTopic,
    SendPrivate,
    SendRoom,
    Typing,
    client_event,
)
from .models import parse_object_id
from .service import MessagingService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket('/ws')
async def websocket_endpoint(websocket: WebSocket):
    # client must connect with ?token=...
    service: MessagingService = websocket.app.state.messaging
    try:
        identity = verify_token(websocket.query_params.get('token'), websocket.app.state.settings)
    except Unauthenticated as exc:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
        return

    await websocket.accept()
    conn = Connection(websocket)
    service.connect(conn)
    logger.info('[WS] %s connected on %r', identity, conn)

    try:
        await conn.send({'type': 'connected', 'you': identity})
        while True:
            message = await websocket.receive()
            if message['type'] == 'websocket.disconnect':
                break
            text = message.get('text')
            if text is None:
                await send_error(conn, InvalidArgument('Binary frames are not supported'))
                continue
            await handle_frame(service, conn, identity, text)
    except WebSocketDisconnect:
        pass
    finally:
        await service.disconnect(conn)
        logger.info('[WS] %s disconnected from %r', identity, conn)


async def handle_frame(service: MessagingService, conn: Connection, identity: str, text: str) -> None:
    try:
        event = client_event.validate_json(text)
    except ValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False)
        await send_error(conn, InvalidArgument('Malformed event', details={'errors': errors}))
        return

    logger.debug('[WS] recv %s from %s', event.type, identity)
    try:
        reply = await dispatch(service, conn, identity, event)
        if reply:
            await conn.send(reply)
    except WebSocketDisconnect:
        raise
    except DomainError as exc:
        await send_error(conn, exc, event.type)
    except Exception:
        logger.exception('[WS] %s from %s failed', event.type, identity)
        await send_error(conn, InternalError('Event handling failed'), event.type)


async def dispatch(service: MessagingService, conn: Connection, identity: str, event) -> Optional[Dict[str, Any]]:
    if isinstance(event, AnnounceIdentity):
        if event.identity is not None and _normalize(event.identity) != identity:
            raise Forbidden('Announced identity does not match the token')
        await service.announce(conn, identity)
        return {'type': 'identity-announced', 'identity': identity}

    if isinstance(event, JoinUserTopic):
        wanted = _normalize(event.identity) if event.identity is not None else None
        topic = service.join_user_topic(conn, wanted)
        return {'type': 'joined', 'topic': topic}

    if isinstance(event, JoinRoomTopic):
        topic = await service.join_room_topic(conn, event.room)
        return {'type': 'joined', 'topic': topic, 'room': event.room}

    if isinstance(event, LeaveRoomTopic):
        topic = service.leave_room_topic(conn, event.room)
        return {'type': 'left', 'topic': topic, 'room': event.room}

    # sends ack with the id only; the message itself arrives once via the topics
    if isinstance(event, SendPrivate):
        message = await service.send_private(identity, event.receiver, event.text, event.media)
        return {'type': 'sent', 'id': message.id, 'kind': message.kind.value}

    if isinstance(event, SendRoom):
        message = await service.send_room(identity, event.room, event.text, event.media)
        return {'type': 'sent', 'id': message.id, 'kind': message.kind.value}

    if isinstance(event, Typing):
        await service.typing(identity, event.receiver, event.is_typing)
        return None

    raise InvalidArgument('Unknown event type')


async def send_error(conn: Connection, exc: DomainError, event_type: Optional[str] = None) -> None:
    frame = {'type': 'error', 'code': exc.code, 'message': exc.message, 'details': exc.details}
    if event_type:
        frame['event'] = event_type
    await conn.send(frame)


def _normalize(identity: str) -> str:
    return str(parse_object_id(identity, 'identity'))
