import logging

from blog.errors import DocumentNotFound
from blog.stores.backends import PENDING_COMMENTS, PENDING_USERS, POSTS, USERS

logger = logging.getLogger(__name__)


def _comment_key(comment):
    return comment.get("username"), comment.get("date"), comment.get("text")


def _remote_body(doc):
    body = {field: value for field, value in doc.items() if field != "id"}
    body["pendingSync"] = False
    return body


def replay_posts(remote, local, page):
    where = {"page": page}
    replayed = 0
    for doc in local.list(POSTS, where=where):
        if not doc.get("pendingSync") or not doc.get("id"):
            continue

        body = _remote_body(doc)
        existing = remote.get(POSTS, doc["id"])
        if existing is None:
            remote.put(POSTS, doc["id"], body)
        else:
            known = {_comment_key(c) for c in existing.get("comments") or []}
            for comment in body.get("comments") or []:
                if _comment_key(comment) not in known:
                    remote.append(POSTS, doc["id"], "comments", comment)

        local.delete(POSTS, doc["id"], where=where)
        replayed += 1
    return replayed


def replay_comments(remote, local):
    replayed = 0
    # Oldest first; the local list holds the newest entry at the front.
    for doc in reversed(local.list(PENDING_COMMENTS)):
        if not doc.get("id"):
            continue

        comment = doc.get("comment")
        if isinstance(comment, dict) and doc.get("postId"):
            try:
                remote.append(POSTS, doc["postId"], "comments", comment)
                replayed += 1
            except DocumentNotFound:
                logger.warning("Dropping offline comment: post %s no longer exists", doc["postId"])
        local.delete(PENDING_COMMENTS, doc["id"])
    return replayed


def replay_registrations(remote, local):
    replayed = 0
    for doc in local.list(PENDING_USERS):
        if not doc.get("pendingSync") or not doc.get("id"):
            continue

        username = doc.get("username")
        if remote.find(USERS, username=username) or remote.find(PENDING_USERS, username=username):
            logger.warning("Dropping offline registration for %s: username already taken", username)
        else:
            remote.create(PENDING_USERS, _remote_body(doc))
            replayed += 1
        local.delete(PENDING_USERS, doc["id"])
    return replayed


def replay_pending(selector, pages):
    """Push records written locally during a fallback to the remote store.

    Each record leaves local storage only after its remote write succeeded,
    so a failure part way through leaves the rest queued for the next start.
    """
    remote = selector.remote
    local = selector.local

    posts = sum(replay_posts(remote, local, page) for page in pages)
    comments = replay_comments(remote, local)
    registrations = replay_registrations(remote, local)
    if posts or comments or registrations:
        logger.info(
            "Replayed %d offline post(s), %d comment(s) and %d registration(s) to remote storage",
            posts,
            comments,
            registrations,
        )
