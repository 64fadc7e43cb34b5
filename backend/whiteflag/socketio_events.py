from flask_socketio import join_room, leave_room, emit
from flask_login import current_user
from whiteflag import socketio
from whiteflag.services.protection.notifications import ANNOUNCE_ROOM, ADMIN_ROOM, NAMESPACE

FEEDS = {ANNOUNCE_ROOM, ADMIN_ROOM}


def handle_connect():
    emit('connected', {'message': f'Connected to {NAMESPACE}'})


def handle_subscribe(data):
    feed = (data or {}).get('feed') or ANNOUNCE_ROOM
    if feed not in FEEDS:
        emit('error', {'message': f'unknown feed {feed}'})
        return
    # Moderation traffic (applications, claims) is for admins only
    if feed == ADMIN_ROOM and not (current_user.is_authenticated and current_user.is_admin):
        emit('error', {'message': 'admin feed requires admin rights'})
        return
    join_room(feed)
    emit('subscribed', {'feed': feed})


def handle_unsubscribe(data):
    feed = (data or {}).get('feed') or ANNOUNCE_ROOM
    if feed not in FEEDS:
        emit('error', {'message': f'unknown feed {feed}'})
        return
    leave_room(feed)
    emit('unsubscribed', {'feed': feed})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    namespaces = [NAMESPACE, '/'] if testing else [NAMESPACE]
    for ns in namespaces:
        socketio.on_event('connect', handle_connect, namespace=ns)
        socketio.on_event('subscribe', handle_subscribe, namespace=ns)
        socketio.on_event('unsubscribe', handle_unsubscribe, namespace=ns)
        socketio.on_event('ping', handle_ping, namespace=ns)
