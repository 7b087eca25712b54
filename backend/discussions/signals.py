"""
Django Signals for counters touched by user deletion.

Trade-off Discussion:
---------------------
Every write path in services.py moves counters in its own transaction, so
no per-row signals are used for Upvote / Reply / DiscussionFollower. Those
writes go through QuerySet.update() / QuerySet.delete(), and a post_delete
receiver on Upvote would decrement a second time.

Deleting a User is the one path that bypasses the services: the cascade
removes their replies, upvotes, follows, views and bookmarks in bulk.
Instead of mirroring the cascade counter by counter, we remember which
discussions the user touched and reconcile exactly those once the delete
has committed.
"""

from django.contrib.auth.models import User
from django.db import transaction
from django.db.models.signals import pre_delete
from django.dispatch import receiver

from .aggregates import reconcile_all
from .models import Bookmark, Discussion, DiscussionFollower, DiscussionView, Reply, Upvote


def _touched_discussion_ids(user):
    """Discussions (not owned by the user) whose counters the cascade will change."""
    ids = set(Reply.objects.filter(author=user).values_list('discussion_id', flat=True))
    ids.update(
        Upvote.objects.filter(user=user, discussion__isnull=False)
        .values_list('discussion_id', flat=True)
    )
    ids.update(
        Upvote.objects.filter(user=user, reply__isnull=False)
        .values_list('reply__discussion_id', flat=True)
    )
    ids.update(DiscussionFollower.objects.filter(user=user).values_list('discussion_id', flat=True))
    ids.update(DiscussionView.objects.filter(user=user).values_list('discussion_id', flat=True))
    for entity_id in (
        Bookmark.objects
        .filter(user=user, entity_type=Bookmark.EntityType.DISCUSSION)
        .values_list('entity_id', flat=True)
    ):
        ids.add(int(entity_id))

    owned = set(Discussion.objects.filter(author=user).values_list('id', flat=True))
    return sorted(ids - owned)


@receiver(pre_delete, sender=User)
def reconcile_after_user_delete(sender, instance, **kwargs):
    """
    Collect affected discussions before the cascade runs, reconcile after
    commit.

    Bookmarks on the user's own discussions are keyed by entity id, not by
    FK, so they are removed here like services.delete_discussion does.
    """
    owned_ids = [str(pk) for pk in Discussion.objects.filter(author=instance).values_list('id', flat=True)]
    if owned_ids:
        Bookmark.objects.filter(
            entity_type=Bookmark.EntityType.DISCUSSION,
            entity_id__in=owned_ids,
        ).delete()

    discussion_ids = _touched_discussion_ids(instance)
    if discussion_ids:
        transaction.on_commit(lambda: reconcile_all(discussion_ids=discussion_ids))
