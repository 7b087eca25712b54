"""
Write Services: Toggles, Replies, Discussions
=============================================

TOGGLE OPERATORS:
-----------------
upvote / follow / save all follow one pattern, in one transaction:

    1. DELETE the (user, target) link row
       -> a row went away: decrement the counter, state is OFF
    2. Otherwise INSERT it inside a savepoint
       -> increment the counter, state is ON
    3. INSERT raised IntegrityError
       -> a concurrent request from the same user (double-submit) inserted
          it first. Not an error: re-read and return the current state.

Deleting first makes "check and remove" a single statement, so there is no
read-then-write window on the OFF path. The unique constraints close the
window on the ON path. Counters move with F() expressions in the same
transaction as the link row.

Two identical submits leave the link in the state a single toggle would
from OFF: exactly one row, counter +1. From ON, the second DELETE finds
nothing once the first commits, so it inserts again: the link ends ON and
the counter is unchanged (net zero, never a duplicate row).

Self-upvotes and self-follows are allowed on purpose.

TARGETS:
--------
Callers name what they act on with tagged variants instead of loose ids:

    UpvoteTarget.reply(12)          UpvoteTarget.discussion(3)
    BookmarkTarget.parse('LAW_SECTION', 'IPC-302')

so "both reply_id and discussion_id set" cannot reach the database.
"""

import logging
from typing import NamedTuple, Optional

from django.conf import settings
from django.contrib.auth.models import User
from django.db import transaction, IntegrityError
from django.db.models import F, Model, Q
from django.utils import timezone

from . import aggregates
from .exceptions import (
    DiscussionClosedError,
    DiscussionError,
    InvalidTargetError,
    NotFoundError,
    NotOwnerError,
)
from .models import Bookmark, Discussion, DiscussionFollower, DiscussionView, Reply, Upvote

logger = logging.getLogger(__name__)

MAX_TAGS = 10
MAX_TAG_LENGTH = 50


class ToggleResult:
    """New state of a toggle: whether the link now exists, and the counter."""
    def __init__(self, active: bool, count: int):
        self.active = active
        self.count = count

    def __repr__(self):
        return f"ToggleResult(active={self.active}, count={self.count})"


class UpvoteTarget(NamedTuple):
    kind: str
    id: int

    REPLY = 'reply'
    DISCUSSION = 'discussion'

    @classmethod
    def reply(cls, reply_id: int) -> 'UpvoteTarget':
        return cls(cls.REPLY, int(reply_id))

    @classmethod
    def discussion(cls, discussion_id: int) -> 'UpvoteTarget':
        return cls(cls.DISCUSSION, int(discussion_id))

    @classmethod
    def from_ids(cls, reply_id: Optional[int] = None,
                 discussion_id: Optional[int] = None) -> 'UpvoteTarget':
        """Build a target from the two optional ids; exactly one must be set."""
        if reply_id is not None and discussion_id is not None:
            raise InvalidTargetError('An upvote targets a reply or a discussion, not both.')
        if reply_id is not None:
            return cls.reply(reply_id)
        if discussion_id is not None:
            return cls.discussion(discussion_id)
        raise InvalidTargetError('An upvote needs a reply or a discussion to target.')


class BookmarkTarget(NamedTuple):
    kind: str
    id: str

    @classmethod
    def discussion(cls, discussion_id: int) -> 'BookmarkTarget':
        return cls(Bookmark.EntityType.DISCUSSION.value, str(int(discussion_id)))

    @classmethod
    def parse(cls, entity_type: str, entity_id) -> 'BookmarkTarget':
        if entity_type not in Bookmark.EntityType.values:
            raise InvalidTargetError(
                f"Invalid entity type: {entity_type}",
                details={'allowed': list(Bookmark.EntityType.values)},
            )
        entity_id = str(entity_id).strip() if entity_id is not None else ''
        if not entity_id or len(entity_id) > 64:
            raise InvalidTargetError('Invalid entity id.')
        if entity_type == Bookmark.EntityType.DISCUSSION:
            try:
                # Normalise so "007" and "7" are the same bookmark
                entity_id = str(int(entity_id))
            except ValueError:
                raise InvalidTargetError(f"Invalid discussion id: {entity_id}")
        return cls(entity_type, entity_id)


# ============================================================================
# TOGGLE MACHINERY
# ============================================================================

class _Counter:
    """A denormalized counter column on one row."""
    def __init__(self, model: type[Model], pk: int, field: str):
        self.model = model
        self.pk = pk
        self.field = field

    def adjust(self, delta: int) -> None:
        expression = aggregates.increment(self.field) if delta > 0 else aggregates.decrement(self.field)
        self.model.objects.filter(pk=self.pk).update(**{self.field: expression})

    def read(self) -> int:
        return self.model.objects.values_list(self.field, flat=True).get(pk=self.pk)


class _RowCount:
    """Count of link rows for targets that have no counter column of their own."""
    def __init__(self, model: type[Model], **lookup):
        self.model = model
        self.lookup = lookup

    def adjust(self, delta: int) -> None:
        """Nothing to store: read() counts the link rows live."""

    def read(self) -> int:
        return self.model.objects.filter(**self.lookup).count()


def _remove_link(model: type[Model], lookup: dict) -> int:
    deleted, _ = model.objects.filter(**lookup).delete()
    return deleted


def _toggle_link(model: type[Model], lookup: dict, counter) -> ToggleResult:
    with transaction.atomic():
        if _remove_link(model, lookup):
            counter.adjust(-1)
            return ToggleResult(active=False, count=counter.read())

        try:
            with transaction.atomic():
                model.objects.create(**lookup)
        except IntegrityError:
            # Lost the race against our own double-submit: the other request
            # already created the row and moved the counter
            logger.info(
                "Concurrent toggle on %s %s, returning current state",
                model.__name__, {k: getattr(v, 'pk', v) for k, v in lookup.items()},
            )
            return ToggleResult(
                active=model.objects.filter(**lookup).exists(),
                count=counter.read(),
            )

        counter.adjust(+1)
        return ToggleResult(active=True, count=counter.read())


def _visible_discussions(user: Optional[User]):
    """Public discussions, plus the caller's own private ones."""
    visible = Q(is_public=True)
    if user is not None and user.is_authenticated:
        visible |= Q(author=user)
    return Discussion.objects.filter(visible)


def get_visible_discussion(discussion_id: int, user: Optional[User] = None,
                           for_update: bool = False) -> Discussion:
    queryset = _visible_discussions(user)
    if for_update:
        queryset = queryset.select_for_update()
    discussion = queryset.filter(id=discussion_id).first()
    if discussion is None:
        raise NotFoundError(f"Discussion {discussion_id} not found")
    return discussion


def get_visible_reply(reply_id: int, user: Optional[User] = None) -> Reply:
    """A non-deleted reply in a discussion the caller can see."""
    visible = Q(discussion__is_public=True)
    if user is not None and user.is_authenticated:
        visible |= Q(discussion__author=user)
    reply = (
        Reply.objects
        .filter(visible, id=reply_id, is_deleted=False)
        .first()
    )
    if reply is None:
        raise NotFoundError(f"Reply {reply_id} not found")
    return reply


# ============================================================================
# TOGGLE OPERATORS
# ============================================================================

def toggle_upvote(user: User, target: UpvoteTarget) -> ToggleResult:
    """Upvote / un-upvote a reply or a discussion."""
    if target.kind == UpvoteTarget.REPLY:
        reply = get_visible_reply(target.id, user)
        return _toggle_link(
            Upvote,
            {'user': user, 'reply_id': reply.id},
            _Counter(Reply, reply.id, 'upvote_count'),
        )

    if target.kind == UpvoteTarget.DISCUSSION:
        discussion = get_visible_discussion(target.id, user)
        return _toggle_link(
            Upvote,
            {'user': user, 'discussion_id': discussion.id},
            _Counter(Discussion, discussion.id, 'upvote_count'),
        )

    raise InvalidTargetError(f"Invalid upvote target: {target.kind}")


def toggle_follow(user: User, discussion_id: int) -> ToggleResult:
    """Follow / unfollow a discussion."""
    discussion = get_visible_discussion(discussion_id, user)
    return _toggle_link(
        DiscussionFollower,
        {'user': user, 'discussion_id': discussion.id},
        _Counter(Discussion, discussion.id, 'follower_count'),
    )


def toggle_bookmark(user: User, target: BookmarkTarget) -> ToggleResult:
    """
    Save / unsave any bookmarkable entity.

    Discussions keep save_count on the row. The other entity types belong to
    other parts of the platform, so their count is read from the bookmark rows.
    """
    if target.kind not in Bookmark.EntityType.values:
        raise InvalidTargetError(f"Invalid entity type: {target.kind}")

    lookup = {'user': user, 'entity_type': target.kind, 'entity_id': target.id}

    if target.kind == Bookmark.EntityType.DISCUSSION:
        discussion = get_visible_discussion(int(target.id), user)
        counter = _Counter(Discussion, discussion.id, 'save_count')
    else:
        counter = _RowCount(Bookmark, entity_type=target.kind, entity_id=target.id)

    return _toggle_link(Bookmark, lookup, counter)


def toggle_discussion_save(user: User, discussion_id: int) -> ToggleResult:
    return toggle_bookmark(user, BookmarkTarget.discussion(discussion_id))


# ============================================================================
# REPLIES
# ============================================================================

def _clean_content(content: str) -> str:
    content = (content or '').strip()
    if not content:
        raise DiscussionError('Reply content cannot be empty.')
    return content


def add_reply(user: User, discussion_id: int, content: str,
              parent_reply_id: Optional[int] = None) -> Reply:
    """
    Add a reply to a discussion, or under another reply of the same discussion.

    The reply row and every counter it affects commit together.
    """
    content = _clean_content(content)
    max_depth = getattr(settings, 'REPLY_MAX_DEPTH', 10)

    with transaction.atomic():
        discussion = get_visible_discussion(discussion_id, user, for_update=True)
        if discussion.is_resolved:
            raise DiscussionClosedError()

        depth = 0
        parent = None
        if parent_reply_id is not None:
            parent = Reply.objects.filter(id=parent_reply_id, is_deleted=False).first()
            if parent is None:
                raise NotFoundError('Parent reply not found')
            if parent.discussion_id != discussion.id:
                raise InvalidTargetError('Parent reply belongs to a different discussion.')
            if parent.depth >= max_depth:
                raise InvalidTargetError(
                    f'Maximum reply depth ({max_depth}) reached. Cannot nest deeper.'
                )
            depth = parent.depth + 1

        reply = Reply.objects.create(
            discussion=discussion,
            author=user,
            parent=parent,
            content=content,
            depth=depth,
        )
        aggregates.record_reply_added(reply)

    logger.info("User %s replied %s on discussion %s", user.pk, reply.pk, discussion.pk)
    return reply


def edit_reply(user: User, reply_id: int, content: str) -> Reply:
    content = _clean_content(content)

    reply = Reply.objects.filter(id=reply_id, is_deleted=False).first()
    if reply is None:
        raise NotFoundError(f"Reply {reply_id} not found")
    if reply.author_id != user.id:
        raise NotOwnerError('Only the author can edit this reply.')

    reply.content = content
    reply.is_edited = True
    reply.save(update_fields=['content', 'is_edited', 'updated_at'])
    return reply


def delete_reply(user: User, reply_id: int) -> Reply:
    """
    Soft-delete a reply. Children stay in place under a tombstone; the
    discussion and parent counters drop by one.
    """
    with transaction.atomic():
        reply = (
            Reply.objects
            .select_for_update()
            .filter(id=reply_id, is_deleted=False)
            .first()
        )
        if reply is None:
            raise NotFoundError(f"Reply {reply_id} not found")
        if reply.author_id != user.id:
            raise NotOwnerError('Only the author can delete this reply.')

        reply.is_deleted = True
        reply.save(update_fields=['is_deleted', 'updated_at'])
        aggregates.record_reply_removed(reply)

    logger.info("User %s deleted reply %s", user.pk, reply.pk)
    return reply


# ============================================================================
# DISCUSSIONS
# ============================================================================

def normalize_tags(tags) -> list[str]:
    """Lowercase, strip, drop blanks and duplicates, keep first-seen order."""
    seen = []
    for tag in tags or []:
        tag = str(tag).strip().lower()[:MAX_TAG_LENGTH]
        if tag and tag not in seen:
            seen.append(tag)
    return seen[:MAX_TAGS]


def create_discussion(user: User, *, title: str, description: str, category: str,
                      discussion_type: str = Discussion.DiscussionType.GENERAL,
                      tags=None, is_public: bool = True) -> Discussion:
    discussion = Discussion.objects.create(
        author=user,
        title=title.strip(),
        description=description.strip(),
        category=category,
        discussion_type=discussion_type,
        tags=normalize_tags(tags),
        is_public=is_public,
    )
    logger.info("User %s created discussion %s", user.pk, discussion.pk)
    return discussion


UPDATABLE_DISCUSSION_FIELDS = ('title', 'description', 'tags', 'is_public')


def update_discussion(user: User, discussion_id: int, **changes) -> Discussion:
    """
    Owner-only edit of title, description, tags and visibility.

    Resolution state is not editable here: it only moves forward through
    resolution.mark_best_answer / mark_resolved.
    """
    discussion = get_visible_discussion(discussion_id, user)
    if discussion.author_id != user.id:
        raise NotOwnerError('Only the discussion owner can edit it.')

    update_fields = []
    for field in UPDATABLE_DISCUSSION_FIELDS:
        if field not in changes:
            continue
        value = changes[field]
        if field == 'tags':
            value = normalize_tags(value)
        elif isinstance(value, str):
            value = value.strip()
        setattr(discussion, field, value)
        update_fields.append(field)

    if update_fields:
        discussion.save(update_fields=update_fields + ['updated_at'])
    return discussion


def delete_discussion(user: User, discussion_id: int) -> None:
    """Owner-only hard delete. Replies and link rows cascade."""
    with transaction.atomic():
        discussion = get_visible_discussion(discussion_id, user, for_update=True)
        if discussion.author_id != user.id:
            raise NotOwnerError('Only the discussion owner can delete it.')

        # Bookmarks are keyed by entity, not by FK, so they do not cascade
        Bookmark.objects.filter(
            entity_type=Bookmark.EntityType.DISCUSSION,
            entity_id=str(discussion.pk),
        ).delete()
        discussion.delete()

    logger.info("User %s deleted discussion %s", user.pk, discussion_id)


def record_view(discussion: Discussion, user: Optional[User] = None,
                ip_address: Optional[str] = None) -> bool:
    """
    Count a view once per signed-in user, or once per IP for guests.

    Returns True when this call counted a new view. The in-memory
    discussion.view_count is bumped to match.
    """
    if user is not None and user.is_authenticated:
        lookup = {'discussion': discussion, 'user': user}
    elif ip_address:
        lookup = {'discussion': discussion, 'user': None, 'ip_address': ip_address}
    else:
        return False

    if DiscussionView.objects.filter(**lookup).exists():
        return False

    try:
        with transaction.atomic():
            DiscussionView.objects.create(viewed_at=timezone.now(), **lookup)
            Discussion.objects.filter(pk=discussion.pk).update(
                view_count=F('view_count') + 1
            )
    except IntegrityError:
        return False

    discussion.view_count += 1
    return True
