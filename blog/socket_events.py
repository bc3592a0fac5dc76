from flask import current_app
from flask_socketio import emit, join_room, leave_room

from blog.context import get_context
from blog.extensions.extensions import socketio
from blog.schemas.post_schema import PostSchema

_registered = False


def feed_room(page):
    return f"feed:{page}"


def emit_feed(page, posts):
    """Render hook: push a feed's current posts to every subscribed browser."""
    socketio.emit(
        "posts",
        {"page": page, "posts": PostSchema(many=True).dump(posts)},
        to=feed_room(page),
    )


def _requested_page(data):
    if not isinstance(data, dict):
        return None
    page = data.get("page")
    if page not in current_app.config["SITE_PAGES"]:
        return None
    return page


def register_socket_events():
    global _registered
    if _registered:
        return

    @socketio.on("subscribe_feed")
    def handle_subscribe_feed(data):
        page = _requested_page(data)
        if page is None:
            emit("feed_error", {"error": "Page not found"})
            return

        join_room(feed_room(page))
        posts = get_context().feeds.list_posts(page)
        emit("posts", {"page": page, "posts": PostSchema(many=True).dump(posts)})

    @socketio.on("unsubscribe_feed")
    def handle_unsubscribe_feed(data):
        page = _requested_page(data)
        if page is not None:
            leave_room(feed_room(page))

    _registered = True
