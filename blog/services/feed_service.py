"""Per-page post feeds kept consistent across the remote and local backends.

``FeedSync`` owns the in-memory view of every feed that has been listed.
Each view is fed by a live subscription on the backend the selector
currently trusts and is replaced wholesale by every snapshot. After the
first remote failure the selector downgrades for good and every view is
resubscribed on local storage. Writes that fail remotely are redirected to
local storage unchanged, flagged ``pendingSync`` for replay at the next
start.
"""
import copy
import logging
from datetime import datetime, timezone
from threading import RLock

from marshmallow import ValidationError

from blog.errors import (
    DocumentNotFound,
    EmptyContent,
    PostNotFound,
    StorageError,
    Unauthorized,
)
from blog.schemas.post_schema import CommentSchema, PostSchema
from blog.stores.backends import PENDING_COMMENTS, POSTS

logger = logging.getLogger(__name__)


def _has_attachment(media) -> bool:
    return media is not None and bool(getattr(media, "filename", ""))


def load_posts(docs, page=None):
    """Validate stored documents into posts, newest first.

    Malformed documents are skipped. When ``page`` is given, documents of
    other pages are dropped.
    """
    schema = PostSchema()
    posts = []
    for doc in docs:
        if page is not None and doc.get("page") != page:
            continue
        try:
            posts.append(schema.load(doc))
        except ValidationError as e:
            logger.warning("Skipping malformed post %s: %s", doc.get("id"), e.messages)
    posts.sort(key=lambda post: post["date"], reverse=True)
    return posts


def dump_post(post) -> dict:
    doc = PostSchema().dump(post)
    doc.pop("id", None)
    return doc


class FeedSync:
    def __init__(self, selector, media, render=None,
                 admin_username="admin", anonymous_username="anonymous"):
        self.selector = selector
        self.media = media
        self.render = render
        self.admin_username = admin_username
        self.anonymous_username = anonymous_username
        self._views = {}
        self._subscriptions = {}
        self._lock = RLock()
        selector.on_downgrade(self._on_downgrade)

    def list_posts(self, page):
        try:
            self._ensure_subscription(page).poll()
        except StorageError as e:
            self.selector.downgrade(e)
            self._ensure_subscription(page)

        with self._lock:
            return list(self._views.get(page, []))

    def create_post(self, page, session, text, media=None):
        if not session or not session.get("approved"):
            raise Unauthorized("Only approved users can post")

        text = (text or "").strip()
        if not text and not _has_attachment(media):
            raise EmptyContent()

        remote = self.selector.remote_active
        media_value, media_type = self.media.to_storable(media, remote=remote)
        post = {
            "id": None,
            "page": page,
            "username": session["username"],
            "text": text or None,
            "media": media_value,
            "mediaType": media_type,
            "date": datetime.now(timezone.utc),
            "comments": [],
            "pendingSync": False,
        }

        if remote:
            try:
                post["id"] = self.selector.remote.create(POSTS, dump_post(post))
                return post
            except StorageError as e:
                logger.warning("Remote post failed on %s, keeping it locally", page)
                self.selector.downgrade(e)

        post["pendingSync"] = self.selector.remote is not None
        post["id"] = self.selector.local.create(POSTS, dump_post(post), where={"page": page})
        self._ensure_subscription(page)
        return post

    def add_comment(self, page, post_id, session, text, media=None):
        text = (text or "").strip()
        if not text and not _has_attachment(media):
            raise EmptyContent()

        remote = self.selector.remote_active
        media_value, media_type = self.media.to_storable(media, remote=remote)
        comment = {
            "username": session["username"] if session else self.anonymous_username,
            "text": text or None,
            "media": media_value,
            "mediaType": media_type,
            "date": datetime.now(timezone.utc),
        }
        doc = CommentSchema().dump(comment)

        known_post = None
        if remote:
            try:
                known_post = self._find_in_view(page, post_id) or self._load_remote_post(page, post_id)
                if known_post is None:
                    raise PostNotFound()
                self.selector.remote.append(POSTS, post_id, "comments", doc)
                return comment
            except DocumentNotFound:
                raise PostNotFound()
            except StorageError as e:
                logger.warning("Remote comment failed on post %s, keeping it locally", post_id)
                self.selector.downgrade(e)

        self._comment_locally(page, post_id, doc, known_post)
        self._ensure_subscription(page)
        return comment

    def delete_post(self, page, post_id, session):
        if not session or session.get("username") != self.admin_username:
            raise Unauthorized("Only the administrator can delete posts")

        deleted = False
        if self.selector.remote_active:
            try:
                self.selector.remote.delete(POSTS, post_id)
                deleted = True
            except DocumentNotFound:
                pass

        try:
            self.selector.local.delete(POSTS, post_id, where={"page": page})
            deleted = True
        except DocumentNotFound:
            pass

        if not deleted:
            raise PostNotFound()

    def refresh_all(self):
        with self._lock:
            views = dict(self._views)
        for page, posts in views.items():
            self._render(page, posts)

    def close(self):
        with self._lock:
            subscriptions = list(self._subscriptions.values())
            self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.close()

    def _ensure_subscription(self, page):
        with self._lock:
            subscription = self._subscriptions.get(page)
            if subscription is not None and not subscription.closed:
                return subscription

            subscription = self.selector.current.subscribe(
                POSTS,
                lambda docs: self._apply_snapshot(page, load_posts(docs, page=page)),
                where={"page": page},
                order_by="date",
                descending=True,
                on_error=self.selector.downgrade,
            )
            self._subscriptions[page] = subscription
            return subscription

    def _load_remote_post(self, page, post_id):
        doc = self.selector.remote.get(POSTS, post_id)
        if doc is None:
            return None
        posts = load_posts([doc], page=page)
        return posts[0] if posts else None

    def _comment_locally(self, page, post_id, doc, known_post):
        local = self.selector.local
        where = {"page": page}
        try:
            local.append(POSTS, post_id, "comments", doc, where=where)
            if self.selector.remote is not None:
                local.update(POSTS, post_id, {"pendingSync": True}, where=where)
            return
        except DocumentNotFound:
            if self.selector.remote is None:
                raise PostNotFound()

        if known_post is None:
            # The post lives only in the remote store and no copy is at hand.
            local.create(PENDING_COMMENTS, {
                "page": page,
                "postId": post_id,
                "comment": doc,
                "pendingSync": True,
            })
            logger.info("Queued offline comment on remote post %s", post_id)
            return

        stored = dump_post(copy.deepcopy(known_post))
        stored["comments"].append(doc)
        stored["pendingSync"] = True
        local.put(POSTS, post_id, stored, where=where)

    def _find_in_view(self, page, post_id):
        with self._lock:
            for post in self._views.get(page, []):
                if post.get("id") == post_id:
                    return post
        return None

    def _apply_snapshot(self, page, posts):
        with self._lock:
            self._views[page] = posts
        self._render(page, posts)

    def _render(self, page, posts):
        if self.render is None:
            return
        try:
            self.render(page, list(posts))
        except Exception:
            logger.exception("Rendering feed %s failed", page)

    def _on_downgrade(self):
        self.close()
        with self._lock:
            pages = list(self._views)
        for page in pages:
            self._ensure_subscription(page)
