"""
Data Models for NyayaNet Discussions
====================================

Design Philosophy:
------------------
1. Replies use the Adjacency List pattern (parent_id FK)
   - One query fetches every reply of a discussion, the tree is assembled in
     Python in a single pass (see queries.build_reply_tree)
   - Parent is fixed at creation time, so a reply can never become its own
     ancestor through the API

2. Replies are soft-deleted
   - is_deleted hides the content but keeps the row so children keep their
     place in the thread (rendered as a tombstone)
   - Hard deletes only happen through cascades (whole discussion, whole user)

3. Link tables (Upvote, DiscussionFollower, Bookmark, DiscussionView) are the
   source of truth; counters on Discussion/Reply are a denormalized cache
   - Unique constraints make double-submits harmless
   - aggregates.reconcile_* recomputes the cache from the link tables

4. Upvote keeps two nullable FKs instead of a GenericForeignKey
   - A CHECK constraint forces exactly one target
   - Two conditional unique constraints give one vote per user per target
   - services.UpvoteTarget is the tagged variant used by callers

Indexes Strategy:
-----------------
- reply.discussion_id + reply.created_at: fetching a whole thread
- reply.parent_id: counting direct children during reconciliation
- discussion.created_at / last_activity_at: list sorting
- bookmark.entity_type + bookmark.entity_id: save counts per entity
"""

from django.db import models
from django.db.models import Q
from django.contrib.auth.models import User
from django.core.validators import MinLengthValidator
from django.utils import timezone


class LegalCategory(models.TextChoices):
    CONSTITUTIONAL_LAW = 'CONSTITUTIONAL_LAW', 'Constitutional Law'
    CRIMINAL_LAW = 'CRIMINAL_LAW', 'Criminal Law'
    CIVIL_LAW = 'CIVIL_LAW', 'Civil Law'
    CORPORATE_LAW = 'CORPORATE_LAW', 'Corporate Law'
    FAMILY_LAW = 'FAMILY_LAW', 'Family Law'
    TAX_LAW = 'TAX_LAW', 'Tax Law'
    INTELLECTUAL_PROPERTY = 'INTELLECTUAL_PROPERTY', 'Intellectual Property'
    CYBER_LAW = 'CYBER_LAW', 'Cyber Law'
    CONSUMER_LAW = 'CONSUMER_LAW', 'Consumer Law'
    ARBITRATION = 'ARBITRATION', 'Arbitration'
    PROPERTY_LAW = 'PROPERTY_LAW', 'Property Law'
    LEGAL_ETHICS = 'LEGAL_ETHICS', 'Legal Ethics'
    INTERNATIONAL_LAW = 'INTERNATIONAL_LAW', 'International Law'


class Discussion(models.Model):
    """
    A top-level legal-topic thread started by a user.

    Resolution is one-way: OPEN (is_resolved=False) -> RESOLVED.
    Setting best_answer always implies is_resolved, enforced by a CHECK
    constraint so no code path can store a best answer on an open thread.
    """

    class DiscussionType(models.TextChoices):
        GENERAL = 'GENERAL', 'General'
        CASE_ANALYSIS = 'CASE_ANALYSIS', 'Case Analysis'
        LEGAL_QUERY = 'LEGAL_QUERY', 'Legal Query'
        OPINION_POLL = 'OPINION_POLL', 'Opinion Poll'

    author = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='discussions',
        db_index=True
    )
    title = models.CharField(
        max_length=500,
        validators=[MinLengthValidator(10)]
    )
    description = models.TextField(
        validators=[MinLengthValidator(20)]
    )
    category = models.CharField(
        max_length=40,
        choices=LegalCategory.choices,
        db_index=True
    )
    discussion_type = models.CharField(
        max_length=20,
        choices=DiscussionType.choices,
        default=DiscussionType.GENERAL
    )
    # Lowercased, de-duplicated list of strings
    tags = models.JSONField(default=list, blank=True)
    is_public = models.BooleanField(default=True)

    # Denormalized counters, kept in step by services.py inside the same
    # transaction as the row that changes them
    reply_count = models.PositiveIntegerField(default=0)
    upvote_count = models.PositiveIntegerField(default=0)
    save_count = models.PositiveIntegerField(default=0)
    follower_count = models.PositiveIntegerField(default=0)
    view_count = models.PositiveIntegerField(default=0)

    is_resolved = models.BooleanField(default=False, db_index=True)
    best_answer = models.ForeignKey(
        'Reply',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)
    last_activity_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.CheckConstraint(
                condition=Q(best_answer__isnull=True) | Q(is_resolved=True),
                name='best_answer_implies_resolved'
            ),
        ]
        indexes = [
            models.Index(fields=['is_public', '-created_at'], name='discussion_public_created_idx'),
            models.Index(fields=['is_public', '-last_activity_at'], name='discussion_public_active_idx'),
        ]

    def __str__(self):
        return f"{self.title[:50]} by {self.author.username}"


class Reply(models.Model):
    """
    A (possibly nested) response within a discussion.

    depth is 0 for replies directly on the discussion. reply_count counts the
    non-deleted direct children; upvote_count counts Upvote rows.
    """
    discussion = models.ForeignKey(
        Discussion,
        on_delete=models.CASCADE,
        related_name='replies',
        db_index=True
    )
    author = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='discussion_replies'
    )
    parent = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='children',
        db_index=True
    )
    content = models.TextField(
        validators=[MinLengthValidator(1)]
    )
    depth = models.PositiveSmallIntegerField(default=0)

    upvote_count = models.PositiveIntegerField(default=0)
    reply_count = models.PositiveIntegerField(default=0)

    is_edited = models.BooleanField(default=False)
    is_deleted = models.BooleanField(default=False)

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['created_at']
        verbose_name_plural = 'replies'
        indexes = [
            models.Index(fields=['discussion', 'created_at'], name='reply_discussion_created_idx'),
            models.Index(fields=['parent', 'created_at'], name='reply_parent_created_idx'),
        ]

    def __str__(self):
        return f"Reply by {self.author.username} on discussion {self.discussion_id}"


class Upvote(models.Model):
    """
    An upvote on either a reply or a discussion, never both.

    CONCURRENCY STRATEGY:
    - Conditional unique constraints per target kind
    - services.toggle_upvote inserts inside a savepoint and treats
      IntegrityError as "the other request already did it"
    """
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='discussion_upvotes'
    )
    reply = models.ForeignKey(
        Reply,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='upvotes'
    )
    discussion = models.ForeignKey(
        Discussion,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='upvotes'
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(reply__isnull=False, discussion__isnull=True) |
                    Q(reply__isnull=True, discussion__isnull=False)
                ),
                name='upvote_one_target'
            ),
            models.UniqueConstraint(
                fields=['user', 'reply'],
                condition=Q(reply__isnull=False),
                name='unique_reply_upvote_per_user'
            ),
            models.UniqueConstraint(
                fields=['user', 'discussion'],
                condition=Q(discussion__isnull=False),
                name='unique_discussion_upvote_per_user'
            ),
        ]

    def __str__(self):
        if self.reply_id:
            return f"{self.user_id} upvoted reply {self.reply_id}"
        return f"{self.user_id} upvoted discussion {self.discussion_id}"


class DiscussionFollower(models.Model):
    """Presence of the row is the is_following flag."""
    discussion = models.ForeignKey(
        Discussion,
        on_delete=models.CASCADE,
        related_name='followers'
    )
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='followed_discussions'
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['discussion', 'user'],
                name='unique_follower_per_discussion'
            )
        ]

    def __str__(self):
        return f"{self.user_id} follows discussion {self.discussion_id}"


class Bookmark(models.Model):
    """
    A saved item. Polymorphic over entity types owned by different parts of
    the platform; only DISCUSSION targets live in this app.

    entity_id is a string because law sections and AI results are keyed by
    external identifiers, not by our integer primary keys.
    """

    class EntityType(models.TextChoices):
        POST = 'POST', 'Post'
        DISCUSSION = 'DISCUSSION', 'Discussion'
        AI_RESULT = 'AI_RESULT', 'AI Result'
        LAW_SECTION = 'LAW_SECTION', 'Law Section'

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='bookmarks'
    )
    entity_type = models.CharField(max_length=20, choices=EntityType.choices)
    entity_id = models.CharField(max_length=64)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'entity_type', 'entity_id'],
                name='unique_bookmark_per_user_per_entity'
            )
        ]
        indexes = [
            models.Index(fields=['entity_type', 'entity_id'], name='bookmark_entity_idx'),
        ]

    def __str__(self):
        return f"{self.user_id} saved {self.entity_type} {self.entity_id}"


class DiscussionView(models.Model):
    """
    One row per viewer per discussion; drives Discussion.view_count.

    Signed-in viewers are keyed by user, anonymous viewers by IP address.
    """
    discussion = models.ForeignKey(
        Discussion,
        on_delete=models.CASCADE,
        related_name='views'
    )
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='discussion_views'
    )
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    viewed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['discussion', 'user'],
                condition=Q(user__isnull=False),
                name='unique_view_per_user'
            ),
            models.UniqueConstraint(
                fields=['discussion', 'ip_address'],
                condition=Q(user__isnull=True),
                name='unique_view_per_guest_ip'
            ),
        ]

    def __str__(self):
        viewer = self.user_id or self.ip_address
        return f"{viewer} viewed discussion {self.discussion_id}"
