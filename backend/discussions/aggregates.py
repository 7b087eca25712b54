"""
Counter Maintenance and Reconciliation
======================================

Discussion and Reply carry denormalized counters. They are a cache of these
aggregate queries:

    discussion.reply_count    = COUNT(reply WHERE discussion AND NOT is_deleted)
    discussion.upvote_count   = COUNT(upvote WHERE discussion)
    discussion.follower_count = COUNT(discussion_follower WHERE discussion)
    discussion.save_count     = COUNT(bookmark WHERE entity = DISCUSSION:id)
    discussion.view_count     = COUNT(discussion_view WHERE discussion)
    reply.upvote_count        = COUNT(upvote WHERE reply)
    reply.reply_count         = COUNT(reply WHERE parent AND NOT is_deleted)

WRITE PATH:
-----------
Every insert/delete of a counted row updates the counter in the SAME
transaction, with F() expressions so concurrent writers never lose an
increment. The helpers below are only ever called from inside
transaction.atomic() blocks in services.py.

RECONCILIATION:
---------------
reconcile_discussion() / reconcile_all() recompute the aggregates and write
back any drift (manual SQL fixes, restores, bugs). Run periodically with:

    python manage.py reconcile_counters
"""

import logging
from typing import Iterable, List, Optional, TypedDict

from django.db import transaction
from django.db.models import Count, F, PositiveIntegerField, Value
from django.db.models.functions import Greatest
from django.utils import timezone

from .models import Bookmark, Discussion, DiscussionFollower, DiscussionView, Reply, Upvote

logger = logging.getLogger(__name__)

DISCUSSION_COUNTERS = ('reply_count', 'upvote_count', 'save_count', 'follower_count', 'view_count')
REPLY_COUNTERS = ('upvote_count', 'reply_count')


class CounterDrift(TypedDict):
    """One counter that did not match its aggregate."""
    model: str
    id: int
    field: str
    stored: int
    actual: int


def increment(field: str):
    return F(field) + 1


def decrement(field: str):
    # Clamp at zero: the column is unsigned and a drifted counter must not
    # turn a legitimate delete into a constraint error
    return Greatest(F(field) - 1, Value(0), output_field=PositiveIntegerField())


def record_reply_added(reply: Reply) -> None:
    """Counters for a new, non-deleted reply."""
    Discussion.objects.filter(pk=reply.discussion_id).update(
        reply_count=increment('reply_count'),
        last_activity_at=timezone.now(),
    )
    if reply.parent_id is not None:
        Reply.objects.filter(pk=reply.parent_id).update(reply_count=increment('reply_count'))


def record_reply_removed(reply: Reply) -> None:
    """Counters for a reply that was just soft-deleted."""
    Discussion.objects.filter(pk=reply.discussion_id).update(
        reply_count=decrement('reply_count'),
    )
    if reply.parent_id is not None:
        Reply.objects.filter(pk=reply.parent_id).update(reply_count=decrement('reply_count'))


# ============================================================================
# RECONCILIATION
# ============================================================================

def _grouped_counts(queryset, key: str) -> dict:
    """{key value: row count}, one GROUP BY query."""
    return dict(
        queryset.order_by().values_list(key).annotate(n=Count('id'))
    )


def compute_true_counts(discussion_ids: Iterable[int]) -> tuple[dict, dict]:
    """
    Recompute every counter for the given discussions and their replies.

    Returns (discussion_counts, reply_counts):
        discussion_counts = {discussion_id: {field: value}}
        reply_counts      = {reply_id: {field: value}}

    Queries: 7, independent of the number of discussions.
    """
    ids = list(discussion_ids)
    entity_ids = {str(discussion_id): discussion_id for discussion_id in ids}

    replies = _grouped_counts(
        Reply.objects.filter(discussion_id__in=ids, is_deleted=False), 'discussion_id'
    )
    upvotes = _grouped_counts(Upvote.objects.filter(discussion_id__in=ids), 'discussion_id')
    followers = _grouped_counts(
        DiscussionFollower.objects.filter(discussion_id__in=ids), 'discussion_id'
    )
    views = _grouped_counts(DiscussionView.objects.filter(discussion_id__in=ids), 'discussion_id')
    saves = {
        entity_ids[entity_id]: n
        for entity_id, n in _grouped_counts(
            Bookmark.objects.filter(
                entity_type=Bookmark.EntityType.DISCUSSION,
                entity_id__in=list(entity_ids),
            ),
            'entity_id',
        ).items()
    }

    discussion_counts = {
        discussion_id: {
            'reply_count': replies.get(discussion_id, 0),
            'upvote_count': upvotes.get(discussion_id, 0),
            'save_count': saves.get(discussion_id, 0),
            'follower_count': followers.get(discussion_id, 0),
            'view_count': views.get(discussion_id, 0),
        }
        for discussion_id in ids
    }

    reply_upvotes = _grouped_counts(
        Upvote.objects.filter(reply__discussion_id__in=ids), 'reply_id'
    )
    children = _grouped_counts(
        Reply.objects.filter(discussion_id__in=ids, parent__isnull=False, is_deleted=False),
        'parent_id',
    )
    reply_ids = Reply.objects.filter(discussion_id__in=ids).values_list('id', flat=True)
    reply_counts = {
        reply_id: {
            'upvote_count': reply_upvotes.get(reply_id, 0),
            'reply_count': children.get(reply_id, 0),
        }
        for reply_id in reply_ids
    }

    return discussion_counts, reply_counts


def _reconcile_batch(discussion_ids: List[int], dry_run: bool) -> List[CounterDrift]:
    drifts: List[CounterDrift] = []

    with transaction.atomic():
        # Lock first so counter updates from in-flight toggles queue behind us
        stored_discussions = {
            row['id']: row
            for row in Discussion.objects.select_for_update()
            .filter(id__in=discussion_ids)
            .values('id', *DISCUSSION_COUNTERS)
        }
        stored_replies = {
            row['id']: row
            for row in Reply.objects.select_for_update()
            .filter(discussion_id__in=discussion_ids)
            .values('id', *REPLY_COUNTERS)
        }

        discussion_counts, reply_counts = compute_true_counts(list(stored_discussions))

        for model, stored_rows, true_rows, fields in (
            (Discussion, stored_discussions, discussion_counts, DISCUSSION_COUNTERS),
            (Reply, stored_replies, reply_counts, REPLY_COUNTERS),
        ):
            for pk, stored in stored_rows.items():
                actual = true_rows.get(pk)
                if actual is None:
                    continue
                changes = {}
                for field in fields:
                    if stored[field] != actual[field]:
                        changes[field] = actual[field]
                        drifts.append(CounterDrift(
                            model=model._meta.model_name,
                            id=pk,
                            field=field,
                            stored=stored[field],
                            actual=actual[field],
                        ))
                if changes and not dry_run:
                    model.objects.filter(pk=pk).update(**changes)

    for drift in drifts:
        logger.warning(
            "Counter drift on %s %s: %s stored=%s actual=%s%s",
            drift['model'], drift['id'], drift['field'],
            drift['stored'], drift['actual'],
            " (dry run)" if dry_run else "",
        )
    return drifts


def reconcile_discussion(discussion_id: int, dry_run: bool = False) -> List[CounterDrift]:
    """Recompute and fix the counters of one discussion and its replies."""
    return _reconcile_batch([discussion_id], dry_run)


def reconcile_all(batch_size: int = 200, dry_run: bool = False,
                  discussion_ids: Optional[Iterable[int]] = None) -> List[CounterDrift]:
    """
    Reconcile every discussion, batch_size discussions per transaction so a
    large table never holds row locks for long.
    """
    if discussion_ids is None:
        discussion_ids = Discussion.objects.order_by('id').values_list('id', flat=True)
    ids = list(discussion_ids)

    drifts: List[CounterDrift] = []
    for start in range(0, len(ids), batch_size):
        drifts.extend(_reconcile_batch(ids[start:start + batch_size], dry_run))

    logger.info(
        "Reconciled %d discussions, %d counters %s",
        len(ids), len(drifts), "would change" if dry_run else "corrected",
    )
    return drifts
