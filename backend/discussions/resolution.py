"""
Resolution Workflow
===================

    OPEN --mark_best_answer / mark_resolved--> RESOLVED

There is no way back to OPEN. Marking a different best answer on a resolved
discussion replaces the answer and the discussion stays RESOLVED.

Only the discussion owner may resolve. The discussion row is locked for the
duration so two owner tabs marking different answers serialize cleanly;
the last one wins.
"""

import logging

from django.contrib.auth.models import User
from django.db import transaction

from .exceptions import InvalidTargetError, NotFoundError, NotOwnerError
from .models import Discussion, Reply
from .services import get_visible_discussion

logger = logging.getLogger(__name__)


def _owned_discussion_for_update(user: User, discussion_id: int) -> Discussion:
    discussion = get_visible_discussion(discussion_id, user, for_update=True)
    if discussion.author_id != user.id:
        raise NotOwnerError('Only the discussion owner can resolve it.')
    return discussion


def mark_best_answer(user: User, discussion_id: int, reply_id: int) -> Discussion:
    """
    Mark a reply as the accepted answer and resolve the discussion.

    Raises:
        NotFoundError: discussion not visible, or reply missing / deleted
        NotOwnerError: caller is not the discussion owner
        InvalidTargetError: reply belongs to another discussion
    """
    with transaction.atomic():
        discussion = _owned_discussion_for_update(user, discussion_id)

        reply = Reply.objects.filter(id=reply_id, is_deleted=False).first()
        if reply is None:
            raise NotFoundError(f"Reply {reply_id} not found")
        if reply.discussion_id != discussion.id:
            raise InvalidTargetError('Reply does not belong to this discussion.')

        discussion.best_answer = reply
        discussion.is_resolved = True
        discussion.save(update_fields=['best_answer', 'is_resolved', 'updated_at'])

    logger.info(
        "Discussion %s resolved by %s with best answer %s",
        discussion.pk, user.pk, reply.pk,
    )
    return discussion


def mark_resolved(user: User, discussion_id: int) -> Discussion:
    """Resolve without picking an answer. Idempotent."""
    with transaction.atomic():
        discussion = _owned_discussion_for_update(user, discussion_id)
        if not discussion.is_resolved:
            discussion.is_resolved = True
            discussion.save(update_fields=['is_resolved', 'updated_at'])
            logger.info("Discussion %s resolved by %s", discussion.pk, user.pk)
    return discussion
