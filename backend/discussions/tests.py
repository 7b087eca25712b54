"""
Tests for NyayaNet Discussions

Focus areas:
1. Reply tree assembly (ordering, depth cap, tombstones, corrupted data)
2. Toggle operators (pair law, counters, double-submit)
3. Counter maintenance and reconciliation
4. Resolution workflow (owner only, one-way)
5. HTTP boundary (JSON shape, error mapping)
"""

from datetime import timedelta
from io import StringIO
from unittest.mock import patch
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from django.contrib.auth.models import User
from django.core.management import call_command
from django.db import IntegrityError, connection, transaction
from django.test.utils import CaptureQueriesContext
from django.utils import timezone
from rest_framework.test import APIClient

from . import aggregates, resolution, services
from .exceptions import (
    DiscussionClosedError,
    InvalidTargetError,
    NotFoundError,
    NotOwnerError,
)
from .models import Bookmark, Discussion, DiscussionFollower, DiscussionView, LegalCategory, Reply, Upvote
from .queries import (
    DELETED_REPLY_CONTENT,
    build_reply_tree,
    filter_discussions,
    get_reply_tree,
    search_discussions,
)
from .serializers import ReplyTreeSerializer
from .services import BookmarkTarget, UpvoteTarget

BASE_TIME = timezone.now() - timedelta(days=1)


def make_reply(reply_id, parent_id=None, minutes=0, upvotes=0, deleted=False, author=None):
    """Unsaved Reply for tree tests; the builder only reads attributes."""
    return Reply(
        author=author,
        id=reply_id,
        parent_id=parent_id,
        content=f'Reply {reply_id}',
        created_at=BASE_TIME + timedelta(minutes=minutes),
        upvote_count=upvotes,
        is_deleted=deleted,
    )


def ids(nodes):
    return [node['reply'].id for node in nodes]


def make_discussion(author, title='Is anticipatory bail available here?', **kwargs):
    return services.create_discussion(
        author,
        title=title,
        description=kwargs.pop('description', 'Looking for views from practitioners on this point.'),
        category=kwargs.pop('category', LegalCategory.CRIMINAL_LAW),
        **kwargs
    )


class ReplyTreeTestCase(SimpleTestCase):
    """
    Test reply tree assembly from flat rows.

    No database: the builder works on whatever Reply objects it is given.
    """

    def test_roots_ordered_oldest_first(self):
        replies = [make_reply(3, minutes=2), make_reply(1, minutes=0), make_reply(2, minutes=1)]

        tree = build_reply_tree(replies)

        self.assertEqual(ids(tree), [1, 2, 3])

    def test_popular_sort_by_upvotes_then_age(self):
        replies = [
            make_reply(1, minutes=0, upvotes=1),
            make_reply(2, minutes=1, upvotes=5),
            make_reply(3, minutes=2, upvotes=5),
            make_reply(4, parent_id=1, minutes=3, upvotes=0),
            make_reply(5, parent_id=1, minutes=4, upvotes=2),
        ]

        tree = build_reply_tree(replies, sort='popular')

        self.assertEqual(ids(tree), [2, 3, 1])
        self.assertEqual(ids(tree[2]['replies']), [5, 4])

    def test_invalid_sort_rejected(self):
        with self.assertRaises(ValueError):
            build_reply_tree([make_reply(1)], sort='random')

    def test_nested_children(self):
        replies = [
            make_reply(1),
            make_reply(2, parent_id=1, minutes=1),
            make_reply(3, parent_id=2, minutes=2),
        ]

        tree = build_reply_tree(replies)

        self.assertEqual(ids(tree), [1])
        self.assertEqual(ids(tree[0]['replies']), [2])
        self.assertEqual(ids(tree[0]['replies'][0]['replies']), [3])
        self.assertEqual(tree[0]['replies'][0]['replies'][0]['depth'], 2)

    def test_depth_cap_sets_load_more_marker(self):
        """
        A 4-level chain with a display depth of 3:
        levels 0-2 are inline, level 2 carries the marker for level 3.
        """
        replies = [
            make_reply(1),
            make_reply(2, parent_id=1, minutes=1),
            make_reply(3, parent_id=2, minutes=2),
            make_reply(4, parent_id=3, minutes=3),
        ]

        tree = build_reply_tree(replies, max_depth=3)

        third = tree[0]['replies'][0]['replies'][0]
        self.assertEqual(third['reply'].id, 3)
        self.assertEqual(third['replies'], [])
        self.assertTrue(third['has_more_replies'])
        self.assertEqual(third['hidden_reply_count'], 1)
        self.assertFalse(tree[0]['has_more_replies'])

    def test_load_more_from_marker(self):
        replies = [
            make_reply(1),
            make_reply(2, parent_id=1, minutes=1),
            make_reply(3, parent_id=2, minutes=2),
            make_reply(4, parent_id=3, minutes=3),
            make_reply(5, parent_id=4, minutes=4),
        ]

        tree = build_reply_tree(replies, max_depth=3, root_id=3)

        self.assertEqual(ids(tree), [3])
        self.assertEqual(tree[0]['depth'], 0)
        self.assertEqual(ids(tree[0]['replies']), [4])
        self.assertEqual(ids(tree[0]['replies'][0]['replies']), [5])

    def test_load_more_unknown_root(self):
        self.assertEqual(build_reply_tree([make_reply(1)], root_id=99), [])

    def test_hidden_count_skips_pruned_tombstones(self):
        replies = [
            make_reply(1),
            make_reply(2, parent_id=1, minutes=1),
            make_reply(3, parent_id=2, minutes=2),
            make_reply(4, parent_id=3, minutes=3),
            make_reply(5, parent_id=3, minutes=4, deleted=True),
            make_reply(6, parent_id=4, minutes=5),
        ]

        tree = build_reply_tree(replies, max_depth=3)

        third = tree[0]['replies'][0]['replies'][0]
        # 4 and 6 are visible, 5 is a leaf tombstone
        self.assertEqual(third['hidden_reply_count'], 2)

    def test_no_cap(self):
        replies = [make_reply(i, parent_id=i - 1 if i > 1 else None, minutes=i) for i in range(1, 8)]

        tree = build_reply_tree(replies, max_depth=None)

        node = tree[0]
        for expected in range(2, 8):
            self.assertFalse(node['has_more_replies'])
            node = node['replies'][0]
            self.assertEqual(node['reply'].id, expected)

    def test_deep_chain_does_not_recurse(self):
        replies = [make_reply(i, parent_id=i - 1 if i > 1 else None, minutes=i) for i in range(1, 5001)]

        tree = build_reply_tree(replies, max_depth=None)

        self.assertEqual(ids(tree), [1])

    def test_tombstone_kept_for_visible_child(self):
        """
        R1 (deleted) has children R2 (alive) and R3 (deleted, no children).
        R1 stays as a tombstone with R2 only.
        """
        replies = [
            make_reply(1, deleted=True),
            make_reply(2, parent_id=1, minutes=1),
            make_reply(3, parent_id=1, minutes=2, deleted=True),
        ]

        tree = build_reply_tree(replies)

        self.assertEqual(ids(tree), [1])
        self.assertTrue(tree[0]['reply'].is_deleted)
        self.assertEqual(ids(tree[0]['replies']), [2])

    def test_deleted_parent_keeps_all_live_children(self):
        """
        R1 has live children R2 and R3; soft-deleting R1 leaves a tombstone
        with both children in place.
        """
        author = User(id=7, username='advocate')
        replies = [
            make_reply(1, deleted=True, author=author),
            make_reply(2, parent_id=1, minutes=1, author=author),
            make_reply(3, parent_id=1, minutes=2, author=author),
        ]

        tree = build_reply_tree(replies)

        self.assertEqual(ids(tree), [1])
        self.assertTrue(tree[0]['reply'].is_deleted)
        self.assertEqual(ids(tree[0]['replies']), [2, 3])

        data = ReplyTreeSerializer(tree, many=True).data
        self.assertEqual(data[0]['content'], DELETED_REPLY_CONTENT)
        self.assertIsNone(data[0]['author'])
        self.assertEqual([child['id'] for child in data[0]['replies']], [2, 3])

    def test_tombstone_pruned_recursively(self):
        replies = [
            make_reply(1, deleted=True),
            make_reply(2, parent_id=1, minutes=1, deleted=True),
            make_reply(3, parent_id=2, minutes=2, deleted=True),
            make_reply(4, minutes=3),
        ]

        tree = build_reply_tree(replies)

        self.assertEqual(ids(tree), [4])

    def test_tombstone_chain_kept_above_live_leaf(self):
        replies = [
            make_reply(1, deleted=True),
            make_reply(2, parent_id=1, minutes=1, deleted=True),
            make_reply(3, parent_id=2, minutes=2),
        ]

        tree = build_reply_tree(replies)

        self.assertEqual(ids(tree), [1])
        self.assertEqual(ids(tree[0]['replies']), [2])
        self.assertEqual(ids(tree[0]['replies'][0]['replies']), [3])

    def test_orphan_promoted_to_root(self):
        replies = [make_reply(1), make_reply(2, parent_id=99, minutes=1)]

        tree = build_reply_tree(replies)

        self.assertEqual(ids(tree), [1, 2])

    def test_cycle_promoted_without_looping(self):
        replies = [
            make_reply(1, parent_id=2, minutes=0),
            make_reply(2, parent_id=1, minutes=1),
            make_reply(3, minutes=2),
        ]

        tree = build_reply_tree(replies)

        self.assertEqual(ids(tree), [1, 3])
        self.assertEqual(ids(tree[0]['replies']), [2])
        self.assertEqual(tree[0]['replies'][0]['replies'], [])

    def test_self_parent_is_root(self):
        tree = build_reply_tree([make_reply(1, parent_id=1)])

        self.assertEqual(ids(tree), [1])


class ReplyTreeQueryTestCase(TestCase):
    """
    Loading a thread must NOT cost one query per reply.
    """

    def setUp(self):
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.discussion = make_discussion(self.user)

    def test_no_n_plus_one_queries(self):
        parent = None
        for i in range(50):
            parent_id = None if i % 5 == 0 else parent.id
            reply = services.add_reply(self.user, self.discussion.id, f'Reply number {i}',
                                       parent_reply_id=parent_id)
            if i % 5 == 0:
                parent = reply

        with CaptureQueriesContext(connection) as context:
            tree = get_reply_tree(self.discussion.id)
        self.assertEqual(len(context), 1)

        with CaptureQueriesContext(connection) as context:
            data = ReplyTreeSerializer(tree, many=True).data
        self.assertEqual(len(context), 0,
            f"Serialization hit the database: {[q['sql'][:100] for q in context]}")

        self.assertEqual(len(data), 10)
        self.assertEqual(sum(1 + len(node['replies']) for node in data), 50)


class ToggleTestCase(TestCase):
    """Test upvote / follow / save toggles."""

    def setUp(self):
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.discussion = make_discussion(self.author)
        self.reply = services.add_reply(self.author, self.discussion.id, 'The Supreme Court settled this.')

    def test_reply_upvote_on_then_off(self):
        result1 = services.toggle_upvote(self.user, UpvoteTarget.reply(self.reply.id))
        self.assertTrue(result1.active)
        self.assertEqual(result1.count, 1)

        result2 = services.toggle_upvote(self.user, UpvoteTarget.reply(self.reply.id))
        self.assertFalse(result2.active)
        self.assertEqual(result2.count, 0)

        self.reply.refresh_from_db()
        self.assertEqual(self.reply.upvote_count, 0)
        self.assertFalse(Upvote.objects.filter(user=self.user).exists())

    def test_discussion_upvote_counts_users(self):
        services.toggle_upvote(self.user, UpvoteTarget.discussion(self.discussion.id))
        result = services.toggle_upvote(self.author, UpvoteTarget.discussion(self.discussion.id))

        self.assertTrue(result.active)
        self.assertEqual(result.count, 2)
        self.discussion.refresh_from_db()
        self.assertEqual(self.discussion.upvote_count, 2)

    def test_self_upvote_allowed(self):
        result = services.toggle_upvote(self.author, UpvoteTarget.reply(self.reply.id))

        self.assertTrue(result.active)

    def test_upvote_deleted_reply_not_found(self):
        services.delete_reply(self.author, self.reply.id)

        with self.assertRaises(NotFoundError):
            services.toggle_upvote(self.user, UpvoteTarget.reply(self.reply.id))

    def test_upvote_target_needs_exactly_one_id(self):
        with self.assertRaises(InvalidTargetError):
            UpvoteTarget.from_ids(reply_id=1, discussion_id=2)
        with self.assertRaises(InvalidTargetError):
            UpvoteTarget.from_ids()
        self.assertEqual(UpvoteTarget.from_ids(discussion_id=2), UpvoteTarget.discussion(2))

    def test_follow_toggle(self):
        result = services.toggle_follow(self.user, self.discussion.id)
        self.assertTrue(result.active)
        self.assertEqual(result.count, 1)
        self.assertTrue(DiscussionFollower.objects.filter(user=self.user).exists())

        result = services.toggle_follow(self.user, self.discussion.id)
        self.assertFalse(result.active)
        self.assertEqual(result.count, 0)

    def test_follow_private_discussion_of_other_user(self):
        private = make_discussion(self.author, title='A private research note', is_public=False)

        with self.assertRaises(NotFoundError):
            services.toggle_follow(self.user, private.id)

        # The owner can still follow their own private discussion
        self.assertTrue(services.toggle_follow(self.author, private.id).active)

    def test_discussion_save_updates_save_count(self):
        result = services.toggle_discussion_save(self.user, self.discussion.id)

        self.assertTrue(result.active)
        self.assertEqual(result.count, 1)
        bookmark = Bookmark.objects.get(user=self.user)
        self.assertEqual(bookmark.entity_type, Bookmark.EntityType.DISCUSSION)
        self.assertEqual(bookmark.entity_id, str(self.discussion.id))

    def test_bookmark_discussion_id_normalised(self):
        services.toggle_discussion_save(self.user, self.discussion.id)

        result = services.toggle_bookmark(
            self.user, BookmarkTarget.parse('DISCUSSION', f'00{self.discussion.id}')
        )

        # Same bookmark, so this removes it
        self.assertFalse(result.active)
        self.assertEqual(result.count, 0)

    def test_bookmark_other_entity_counts_rows(self):
        target = BookmarkTarget.parse('LAW_SECTION', 'IPC-302')

        services.toggle_bookmark(self.user, target)
        result = services.toggle_bookmark(self.author, target)

        self.assertTrue(result.active)
        self.assertEqual(result.count, 2)

    def test_bookmark_invalid_targets(self):
        with self.assertRaises(InvalidTargetError):
            BookmarkTarget.parse('COMMENT', '1')
        with self.assertRaises(InvalidTargetError):
            BookmarkTarget.parse('DISCUSSION', 'abc')
        with self.assertRaises(InvalidTargetError):
            BookmarkTarget.parse('AI_RESULT', '')
        with self.assertRaises(InvalidTargetError):
            BookmarkTarget.parse('AI_RESULT', 'x' * 65)

    def test_bookmark_missing_discussion(self):
        with self.assertRaises(NotFoundError):
            services.toggle_discussion_save(self.user, 999999)


class ToggleConcurrencyTestCase(TransactionTestCase):
    """
    Test toggle double-submit protection.

    These tests verify that:
    1. Duplicate link rows are prevented by the unique constraints
    2. IntegrityError is recovered into the current state
    """

    def setUp(self):
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.discussion = make_discussion(self.author)
        self.reply = services.add_reply(self.author, self.discussion.id, 'The Supreme Court settled this.')

    def test_double_submit_upvote(self):
        """
        The second request misses the delete (the first one's insert was not
        visible yet) and then collides on insert.
        """
        services.toggle_upvote(self.user, UpvoteTarget.reply(self.reply.id))

        with patch('discussions.services._remove_link', return_value=0):
            result = services.toggle_upvote(self.user, UpvoteTarget.reply(self.reply.id))

        self.assertTrue(result.active)
        self.assertEqual(result.count, 1)
        self.assertEqual(Upvote.objects.filter(user=self.user, reply=self.reply).count(), 1)
        self.reply.refresh_from_db()
        self.assertEqual(self.reply.upvote_count, 1)

    def test_double_submit_follow(self):
        services.toggle_follow(self.user, self.discussion.id)

        with patch('discussions.services._remove_link', return_value=0):
            result = services.toggle_follow(self.user, self.discussion.id)

        self.assertTrue(result.active)
        self.assertEqual(result.count, 1)
        self.assertEqual(DiscussionFollower.objects.count(), 1)

    def test_double_submit_from_on_nets_zero(self):
        """
        Starting ON: the first request removes the upvote, the second one's
        DELETE finds nothing and inserts again. The link ends ON with the
        counter back where it started.
        """
        target = UpvoteTarget.reply(self.reply.id)
        services.toggle_upvote(self.user, target)

        first = services.toggle_upvote(self.user, target)
        with patch('discussions.services._remove_link', return_value=0):
            second = services.toggle_upvote(self.user, target)

        self.assertFalse(first.active)
        self.assertTrue(second.active)
        self.assertEqual(second.count, 1)
        self.assertEqual(Upvote.objects.filter(user=self.user, reply=self.reply).count(), 1)
        self.reply.refresh_from_db()
        self.assertEqual(self.reply.upvote_count, 1)

    def test_unique_constraint_rejects_duplicate_upvote(self):
        Upvote.objects.create(user=self.user, reply=self.reply)

        with self.assertRaises(IntegrityError):
            Upvote.objects.create(user=self.user, reply=self.reply)

    def test_upvote_needs_one_target(self):
        with self.assertRaises(IntegrityError):
            Upvote.objects.create(user=self.user, reply=self.reply, discussion=self.discussion)


class ReplyCounterTestCase(TestCase):
    """Test counter maintenance on reply add / delete."""

    def setUp(self):
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.discussion = make_discussion(self.author)

    def test_add_reply_updates_counters(self):
        before = self.discussion.last_activity_at
        root = services.add_reply(self.user, self.discussion.id, 'First opinion on this.')
        child = services.add_reply(self.author, self.discussion.id, 'Thanks, agreed.',
                                   parent_reply_id=root.id)

        self.discussion.refresh_from_db()
        root.refresh_from_db()
        self.assertEqual(self.discussion.reply_count, 2)
        self.assertEqual(root.reply_count, 1)
        self.assertEqual(child.depth, 1)
        self.assertGreater(self.discussion.last_activity_at, before)

    def test_add_delete_sequence(self):
        r1 = services.add_reply(self.user, self.discussion.id, 'Reply one here.')
        r2 = services.add_reply(self.user, self.discussion.id, 'Reply two here.', parent_reply_id=r1.id)
        services.add_reply(self.user, self.discussion.id, 'Reply three here.', parent_reply_id=r1.id)
        services.delete_reply(self.user, r2.id)

        self.discussion.refresh_from_db()
        r1.refresh_from_db()
        self.assertEqual(self.discussion.reply_count, 2)
        self.assertEqual(r1.reply_count, 1)
        self.assertEqual(
            self.discussion.reply_count,
            Reply.objects.filter(discussion=self.discussion, is_deleted=False).count()
        )

    def test_delete_twice_not_found(self):
        reply = services.add_reply(self.user, self.discussion.id, 'Reply one here.')
        services.delete_reply(self.user, reply.id)

        with self.assertRaises(NotFoundError):
            services.delete_reply(self.user, reply.id)

        self.discussion.refresh_from_db()
        self.assertEqual(self.discussion.reply_count, 0)

    def test_only_author_can_edit_or_delete(self):
        reply = services.add_reply(self.user, self.discussion.id, 'Reply one here.')

        with self.assertRaises(NotOwnerError):
            services.delete_reply(self.author, reply.id)
        with self.assertRaises(NotOwnerError):
            services.edit_reply(self.author, reply.id, 'Changed by someone else')

        edited = services.edit_reply(self.user, reply.id, 'Reply one, corrected.')
        self.assertTrue(edited.is_edited)

    def test_parent_from_other_discussion(self):
        other = make_discussion(self.author, title='Another discussion about bail')
        foreign = services.add_reply(self.user, other.id, 'Reply elsewhere.')

        with self.assertRaises(InvalidTargetError):
            services.add_reply(self.user, self.discussion.id, 'Misplaced reply', parent_reply_id=foreign.id)

    def test_deleted_parent(self):
        parent = services.add_reply(self.user, self.discussion.id, 'Reply one here.')
        services.delete_reply(self.user, parent.id)

        with self.assertRaises(NotFoundError):
            services.add_reply(self.user, self.discussion.id, 'Late reply', parent_reply_id=parent.id)

    @override_settings(REPLY_MAX_DEPTH=1)
    def test_max_depth(self):
        r0 = services.add_reply(self.user, self.discussion.id, 'Depth zero')
        r1 = services.add_reply(self.user, self.discussion.id, 'Depth one', parent_reply_id=r0.id)

        with self.assertRaises(InvalidTargetError):
            services.add_reply(self.user, self.discussion.id, 'Depth two', parent_reply_id=r1.id)

    def test_reply_to_resolved_discussion(self):
        resolution.mark_resolved(self.author, self.discussion.id)

        with self.assertRaises(DiscussionClosedError):
            services.add_reply(self.user, self.discussion.id, 'Too late')

    def test_blank_reply_rejected(self):
        with self.assertRaises(services.DiscussionError):
            services.add_reply(self.user, self.discussion.id, '   ')


class ReconcileTestCase(TestCase):
    """Test counter reconciliation against the link tables."""

    def setUp(self):
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.discussion = make_discussion(self.author)
        self.reply = services.add_reply(self.user, self.discussion.id, 'First opinion on this.')
        services.toggle_upvote(self.author, UpvoteTarget.reply(self.reply.id))
        services.toggle_follow(self.user, self.discussion.id)

    def test_consistent_counters_have_no_drift(self):
        self.assertEqual(aggregates.reconcile_discussion(self.discussion.id), [])

    def test_drift_corrected(self):
        Discussion.objects.filter(pk=self.discussion.pk).update(reply_count=42, follower_count=0)
        Reply.objects.filter(pk=self.reply.pk).update(upvote_count=9)

        drifts = aggregates.reconcile_discussion(self.discussion.id)

        self.assertEqual(
            sorted((d['model'], d['field'], d['stored'], d['actual']) for d in drifts),
            [
                ('discussion', 'follower_count', 0, 1),
                ('discussion', 'reply_count', 42, 1),
                ('reply', 'upvote_count', 9, 1),
            ]
        )
        self.discussion.refresh_from_db()
        self.reply.refresh_from_db()
        self.assertEqual(self.discussion.reply_count, 1)
        self.assertEqual(self.discussion.follower_count, 1)
        self.assertEqual(self.reply.upvote_count, 1)

    def test_dry_run_does_not_write(self):
        Discussion.objects.filter(pk=self.discussion.pk).update(upvote_count=5)

        drifts = aggregates.reconcile_all(dry_run=True)

        self.assertEqual(len(drifts), 1)
        self.discussion.refresh_from_db()
        self.assertEqual(self.discussion.upvote_count, 5)

    def test_management_command(self):
        Discussion.objects.filter(pk=self.discussion.pk).update(save_count=3)
        out = StringIO()

        call_command('reconcile_counters', '--discussion', str(self.discussion.id), stdout=out)

        self.assertIn('Corrected 1 counters', out.getvalue())
        self.discussion.refresh_from_db()
        self.assertEqual(self.discussion.save_count, 0)


class UserDeletionTestCase(TestCase):
    """
    Test that deleting a user leaves the counters of other users'
    discussions matching the rows the cascade left behind.
    """

    def setUp(self):
        self.owner = User.objects.create_user('owner', 'o@test.com', 'pass')
        self.other = User.objects.create_user('other', 'x@test.com', 'pass')
        self.discussion = make_discussion(self.owner)
        self.reply = services.add_reply(self.owner, self.discussion.id, 'Section 438 applies here.')

    def test_counters_repaired_after_delete(self):
        services.add_reply(self.other, self.discussion.id, 'Agreed, see the 2020 ruling.',
                           parent_reply_id=self.reply.id)
        services.toggle_upvote(self.other, UpvoteTarget.discussion(self.discussion.id))
        services.toggle_upvote(self.other, UpvoteTarget.reply(self.reply.id))
        services.toggle_follow(self.other, self.discussion.id)
        services.toggle_discussion_save(self.other, self.discussion.id)
        services.record_view(self.discussion, user=self.other)

        with self.captureOnCommitCallbacks(execute=True):
            self.other.delete()

        self.assertEqual(aggregates.reconcile_discussion(self.discussion.id), [])
        self.discussion.refresh_from_db()
        self.reply.refresh_from_db()
        self.assertEqual(self.discussion.reply_count, 1)
        self.assertEqual(self.discussion.upvote_count, 0)
        self.assertEqual(self.discussion.follower_count, 0)
        self.assertEqual(self.discussion.save_count, 0)
        self.assertEqual(self.discussion.view_count, 0)
        self.assertEqual(self.reply.upvote_count, 0)
        self.assertEqual(self.reply.reply_count, 0)

    def test_owner_delete_removes_bookmarks_on_their_discussions(self):
        services.toggle_discussion_save(self.other, self.discussion.id)

        with self.captureOnCommitCallbacks(execute=True):
            self.owner.delete()

        self.assertFalse(Discussion.objects.exists())
        self.assertFalse(Bookmark.objects.filter(user=self.other).exists())


class ResolutionTestCase(TestCase):
    """
    Test the resolution workflow.

    CRITICAL: only the owner resolves, and there is no way back to open.
    """

    def setUp(self):
        self.owner = User.objects.create_user('owner', 'o@test.com', 'pass')
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.discussion = make_discussion(self.owner)
        self.answer = services.add_reply(self.user, self.discussion.id, 'Section 438 applies here.')
        self.other_answer = services.add_reply(self.user, self.discussion.id, 'See the 2020 judgment.')

    def test_owner_marks_best_answer(self):
        discussion = resolution.mark_best_answer(self.owner, self.discussion.id, self.answer.id)

        self.assertTrue(discussion.is_resolved)
        self.discussion.refresh_from_db()
        self.assertTrue(self.discussion.is_resolved)
        self.assertEqual(self.discussion.best_answer_id, self.answer.id)

    def test_non_owner_rejected(self):
        with self.assertRaises(NotOwnerError):
            resolution.mark_best_answer(self.user, self.discussion.id, self.answer.id)

        self.discussion.refresh_from_db()
        self.assertFalse(self.discussion.is_resolved)
        self.assertIsNone(self.discussion.best_answer_id)

    def test_reply_from_other_discussion_rejected(self):
        other = make_discussion(self.owner, title='Another discussion about bail')
        foreign = services.add_reply(self.user, other.id, 'Reply elsewhere.')

        with self.assertRaises(InvalidTargetError):
            resolution.mark_best_answer(self.owner, self.discussion.id, foreign.id)

        self.discussion.refresh_from_db()
        self.assertFalse(self.discussion.is_resolved)

    def test_deleted_reply_rejected(self):
        services.delete_reply(self.user, self.answer.id)

        with self.assertRaises(NotFoundError):
            resolution.mark_best_answer(self.owner, self.discussion.id, self.answer.id)

    def test_missing_discussion(self):
        with self.assertRaises(NotFoundError):
            resolution.mark_best_answer(self.owner, 999999, self.answer.id)

    def test_remark_replaces_answer_and_stays_resolved(self):
        resolution.mark_best_answer(self.owner, self.discussion.id, self.answer.id)
        resolution.mark_best_answer(self.owner, self.discussion.id, self.other_answer.id)

        self.discussion.refresh_from_db()
        self.assertTrue(self.discussion.is_resolved)
        self.assertEqual(self.discussion.best_answer_id, self.other_answer.id)

    def test_mark_resolved_is_one_way(self):
        resolution.mark_resolved(self.owner, self.discussion.id)
        resolution.mark_resolved(self.owner, self.discussion.id)

        self.discussion.refresh_from_db()
        self.assertTrue(self.discussion.is_resolved)
        self.assertIsNone(self.discussion.best_answer_id)

        with self.assertRaises(NotOwnerError):
            resolution.mark_resolved(self.user, self.discussion.id)

    def test_database_rejects_best_answer_on_open_discussion(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Discussion.objects.filter(pk=self.discussion.pk).update(best_answer=self.answer)


class DiscussionLifecycleTestCase(TestCase):
    """Test create / update / delete / view counting / list filters."""

    def setUp(self):
        self.owner = User.objects.create_user('owner', 'o@test.com', 'pass', first_name='Meera')
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.discussion = make_discussion(self.owner, tags=['Bail', ' bail ', 'IPC', ''])

    def test_tags_normalised(self):
        self.assertEqual(self.discussion.tags, ['bail', 'ipc'])

    def test_tags_deduplicated_after_truncation(self):
        self.assertEqual(services.normalize_tags(['a' * 60, 'A' * 61]), ['a' * 50])

    def test_update_owner_only(self):
        with self.assertRaises(NotOwnerError):
            services.update_discussion(self.user, self.discussion.id, title='Hijacked discussion title')

        updated = services.update_discussion(self.owner, self.discussion.id,
                                             tags=['Arbitration'], is_public=False)
        self.assertEqual(updated.tags, ['arbitration'])
        self.assertFalse(updated.is_public)

    def test_delete_removes_bookmarks(self):
        services.toggle_discussion_save(self.user, self.discussion.id)
        services.add_reply(self.user, self.discussion.id, 'Reply one here.')

        with self.assertRaises(NotOwnerError):
            services.delete_discussion(self.user, self.discussion.id)

        services.delete_discussion(self.owner, self.discussion.id)

        self.assertFalse(Discussion.objects.filter(pk=self.discussion.pk).exists())
        self.assertFalse(Reply.objects.exists())
        self.assertFalse(Bookmark.objects.exists())

    def test_view_counted_once_per_user(self):
        self.assertTrue(services.record_view(self.discussion, self.user))
        self.assertFalse(services.record_view(self.discussion, self.user))

        self.discussion.refresh_from_db()
        self.assertEqual(self.discussion.view_count, 1)

    def test_view_counted_once_per_guest_ip(self):
        self.assertTrue(services.record_view(self.discussion, None, '10.0.0.1'))
        self.assertFalse(services.record_view(self.discussion, None, '10.0.0.1'))
        self.assertTrue(services.record_view(self.discussion, None, '10.0.0.2'))
        self.assertFalse(services.record_view(self.discussion, None, None))

        self.assertEqual(DiscussionView.objects.count(), 2)
        self.discussion.refresh_from_db()
        self.assertEqual(self.discussion.view_count, 2)

    def test_filters(self):
        resolved = make_discussion(self.user, title='GST on actionable claims?',
                                   category=LegalCategory.TAX_LAW, tags=['gst'])
        resolution.mark_resolved(self.user, resolved.id)
        make_discussion(self.user, title='A private research note', is_public=False)

        self.assertEqual(filter_discussions({}).count(), 2)
        self.assertEqual(list(filter_discussions({'status': 'resolved'})), [resolved])
        self.assertEqual(list(filter_discussions({'category': LegalCategory.CRIMINAL_LAW})),
                         [self.discussion])
        self.assertEqual(list(filter_discussions({'tags': ['IPC']})), [self.discussion])

        services.toggle_follow(self.user, self.discussion.id)
        following = list(filter_discussions({'following': True}, self.user))
        self.assertEqual(following, [self.discussion])
        self.assertTrue(following[0].is_following)

    def test_saved_flag_annotation(self):
        services.toggle_discussion_save(self.user, self.discussion.id)

        row = filter_discussions({}, self.user).get(pk=self.discussion.pk)

        self.assertTrue(row.is_saved)
        self.assertFalse(row.is_upvoted)

    def test_search_title_before_description(self):
        in_description = make_discussion(
            self.user, title='Question on remand period',
            description='Does default bail apply after the remand period ends?'
        )

        results = list(search_discussions({'q': 'bail'}))

        self.assertEqual(results, [self.discussion, in_description])
        self.assertEqual(list(search_discussions({'q': 'meera'})), [self.discussion])


class DiscussionAPITestCase(TestCase):
    """Test the HTTP boundary."""

    def setUp(self):
        self.owner = User.objects.create_user('owner', 'o@test.com', 'pass')
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.discussion = make_discussion(self.owner)
        self.client = APIClient()
        self.client.force_authenticate(self.user)

    def _chain(self, length):
        parent_id = None
        replies = []
        for i in range(length):
            reply = services.add_reply(self.user, self.discussion.id, f'Level {i} reply',
                                       parent_reply_id=parent_id)
            replies.append(reply)
            parent_id = reply.id
        return replies

    def test_detail_shape(self):
        chain = self._chain(4)
        services.toggle_upvote(self.user, UpvoteTarget.reply(chain[0].id))

        response = self.client.get(f'/api/discussions/{self.discussion.id}/')

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['replyCount'], 4)
        self.assertEqual(data['viewCount'], 1)
        self.assertIsNone(data['bestAnswer'])
        self.assertEqual(data['author']['username'], 'owner')

        root = data['replies'][0]
        self.assertEqual(set(root), {
            'id', 'parentReplyId', 'content', 'upvoteCount', 'replyCount', 'isEdited',
            'isDeleted', 'createdAt', 'author', 'hasUpvoted', 'isBestAnswer', 'depth',
            'replies', 'hasMoreReplies', 'hiddenReplyCount',
        })
        self.assertTrue(root['hasUpvoted'])
        self.assertIsNone(root['parentReplyId'])

        third = root['replies'][0]['replies'][0]
        self.assertEqual(third['depth'], 2)
        self.assertTrue(third['hasMoreReplies'])
        self.assertEqual(third['hiddenReplyCount'], 1)
        self.assertEqual(third['replies'], [])

        response = self.client.get(f"/api/replies/{third['id']}/thread/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['replies'][0]['id'], chain[3].id)

    def test_tombstone_rendering(self):
        root, child = self._chain(2)
        services.delete_reply(self.user, root.id)

        data = self.client.get(f'/api/discussions/{self.discussion.id}/').json()

        tombstone = data['replies'][0]
        self.assertTrue(tombstone['isDeleted'])
        self.assertEqual(tombstone['content'], DELETED_REPLY_CONTENT)
        self.assertIsNone(tombstone['author'])
        self.assertEqual(tombstone['replies'][0]['id'], child.id)

    def test_best_answer_summary(self):
        reply = services.add_reply(self.user, self.discussion.id, 'Section 438 applies here.')
        owner_client = APIClient()
        owner_client.force_authenticate(self.owner)

        response = owner_client.post(
            f'/api/discussions/{self.discussion.id}/best-answer/', {'replyId': reply.id}, format='json'
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'isResolved': True, 'bestAnswerId': reply.id})

        data = self.client.get(f'/api/discussions/{self.discussion.id}/').json()
        self.assertEqual(data['bestAnswer']['id'], reply.id)
        self.assertTrue(data['replies'][0]['isBestAnswer'])

    def test_best_answer_by_non_owner_forbidden(self):
        reply = services.add_reply(self.user, self.discussion.id, 'Section 438 applies here.')

        response = self.client.post(
            f'/api/discussions/{self.discussion.id}/best-answer/', {'replyId': reply.id}, format='json'
        )

        self.assertEqual(response.status_code, 403)
        self.assertIn('error', response.json())
        self.discussion.refresh_from_db()
        self.assertFalse(self.discussion.is_resolved)

    def test_private_discussion_hidden(self):
        private = make_discussion(self.owner, title='A private research note', is_public=False)

        response = self.client.get(f'/api/discussions/{private.id}/')

        self.assertEqual(response.status_code, 404)

    def test_upvote_with_both_targets(self):
        reply = services.add_reply(self.user, self.discussion.id, 'Section 438 applies here.')

        response = self.client.post(
            '/api/upvotes/toggle/',
            {'replyId': reply.id, 'discussionId': self.discussion.id},
            format='json'
        )

        self.assertEqual(response.status_code, 400)
        self.assertFalse(Upvote.objects.exists())

    def test_upvote_toggle_endpoint(self):
        response = self.client.post(
            '/api/upvotes/toggle/', {'discussionId': self.discussion.id}, format='json'
        )

        self.assertEqual(response.json(), {'upvoted': True, 'upvoteCount': 1})

    def test_bookmark_endpoint_rejects_bad_type(self):
        response = self.client.post(
            '/api/bookmarks/toggle/', {'entityType': 'COMMENT', 'entityId': '1'}, format='json'
        )

        self.assertEqual(response.status_code, 400)

    def test_reply_to_resolved_discussion_conflict(self):
        resolution.mark_resolved(self.owner, self.discussion.id)

        response = self.client.post(
            f'/api/discussions/{self.discussion.id}/replies/', {'content': 'Too late now'}, format='json'
        )

        self.assertEqual(response.status_code, 409)

    def test_create_reply_requires_auth(self):
        response = APIClient().post(
            f'/api/discussions/{self.discussion.id}/replies/', {'content': 'Anonymous reply'}, format='json'
        )

        self.assertEqual(response.status_code, 403)

    def test_create_and_list(self):
        response = self.client.post('/api/discussions/', {
            'title': 'Consumer forum jurisdiction over platforms',
            'description': 'Which forum hears complaints against marketplaces?',
            'category': 'CONSUMER_LAW',
            'tags': ['Consumer'],
        }, format='json')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['tags'], ['consumer'])

        data = self.client.get('/api/discussions/', {'category': 'CONSUMER_LAW'}).json()
        self.assertEqual(data['pagination']['total'], 1)
        self.assertEqual(data['discussions'][0]['title'], 'Consumer forum jurisdiction over platforms')
        self.assertIn('CONSUMER_LAW', data['categories'])

    def test_invalid_reply_sort(self):
        response = self.client.get(f'/api/discussions/{self.discussion.id}/', {'sort': 'random'})

        self.assertEqual(response.status_code, 400)

    def test_search_excerpt(self):
        services.update_discussion(self.owner, self.discussion.id, description='bail ' * 60)

        data = self.client.get('/api/discussions/search/', {'q': 'bail'}).json()

        excerpt = data['discussions'][0]['excerpt']
        self.assertTrue(excerpt.endswith('...'))
        self.assertLessEqual(len(excerpt), 153)
