"""
Read Queries and Reply Tree Assembly
====================================

Loading a discussion page costs a fixed number of queries regardless of how
deep the thread goes:

1. Discussion with author (+ viewer flags as EXISTS subqueries)
2. ALL replies of the discussion with their authors, one query
3. The viewer's upvoted reply ids, one query

The nested tree is then built in Python from the flat rows.

TREE RULES:
-----------
- Orphans (parent row missing) are promoted to the root level
- Rows caught in a parent cycle (corrupted data) are promoted as well; the
  edge that closes the cycle is ignored
- Soft-deleted replies stay as tombstones while they have a visible
  descendant, otherwise they are pruned together with their subtree
- Only max_depth levels are inlined; the last inlined level carries a
  "load more" marker instead of its children, so nothing is lost and the
  hidden part can be fetched with root_id=<that reply>

All traversals use explicit stacks, so a 10,000-deep chain in the database
cannot blow the interpreter's recursion limit.
"""

from collections import defaultdict
from typing import Iterable, Optional

from django.conf import settings
from django.contrib.auth.models import User
from django.db.models import (
    BooleanField, Case, CharField, Exists, IntegerField, OuterRef, Q, QuerySet, Value, When,
)
from django.db.models.functions import Cast

from .models import Bookmark, Discussion, DiscussionFollower, Reply, Upvote

SORT_OLDEST = 'oldest'
SORT_POPULAR = 'popular'
REPLY_SORTS = (SORT_OLDEST, SORT_POPULAR)

DISCUSSION_SORTS = {
    'newest': ('-created_at',),
    'active': ('-last_activity_at',),
    'popular': ('-reply_count', '-upvote_count'),
    'upvoted': ('-upvote_count', '-created_at'),
}

DELETED_REPLY_CONTENT = '[This reply has been deleted]'


def _sort_key(sort: str):
    if sort == SORT_POPULAR:
        return lambda reply: (-reply.upvote_count, reply.created_at, reply.id)
    if sort == SORT_OLDEST:
        return lambda reply: (reply.created_at, reply.id)
    raise ValueError(f"Invalid reply sort: {sort}")


def build_reply_tree(
    flat_replies: Iterable[Reply],
    sort: str = SORT_OLDEST,
    max_depth: Optional[int] = 3,
    root_id: Optional[int] = None,
) -> list[dict]:
    """
    Build a nested reply tree from the flat rows of one discussion.

    Algorithm: O(n log n) (the log is the per-level sort)

    1. One pass: arena {id -> node} and {parent_id -> [child ids]}
    2. Depth-first walk from the roots records the tree edges actually used
       (this is where cycles are cut)
    3. Reverse pre-order pass decides visibility bottom-up and counts
       visible descendants for the "load more" marker
    4. Final walk attaches children up to max_depth

    Each node:
        {
            'reply': Reply,
            'replies': [node, ...],
            'depth': int,                 # 0 for the returned roots
            'has_more_replies': bool,     # children collapsed behind the cap
            'hidden_reply_count': int,    # visible replies behind the marker
        }

    root_id returns the subtree of that reply only (the "load more" request);
    depth is then counted from that reply. An unknown or fully-pruned root_id
    gives an empty list.
    """
    key = _sort_key(sort)
    flat_replies = list(flat_replies)

    # Pass 1: arena + adjacency
    nodes = {}
    for reply in flat_replies:
        nodes[reply.id] = {
            'reply': reply,
            'replies': [],
            'depth': 0,
            'has_more_replies': False,
            'hidden_reply_count': 0,
        }

    children = defaultdict(list)
    roots = []
    for reply in flat_replies:
        parent_id = reply.parent_id
        if parent_id is None or parent_id not in nodes or parent_id == reply.id:
            roots.append(reply.id)
        else:
            children[parent_id].append(reply.id)

    # Pass 2: walk from the roots, remembering the edges used
    tree_children = defaultdict(list)
    preorder = []
    visited = set()

    def walk(start_id):
        visited.add(start_id)
        stack = [start_id]
        while stack:
            node_id = stack.pop()
            preorder.append(node_id)
            for child_id in children.get(node_id, ()):
                if child_id in visited:
                    continue
                visited.add(child_id)
                tree_children[node_id].append(child_id)
                stack.append(child_id)

    for node_id in roots:
        walk(node_id)

    # Anything left is stuck in a cycle: promote in creation order
    for reply in sorted(flat_replies, key=lambda r: (r.created_at, r.id)):
        if reply.id not in visited:
            roots.append(reply.id)
            walk(reply.id)

    # Pass 3: visibility and descendant counts, children before parents
    visible = {}
    descendants = {}
    for node_id in reversed(preorder):
        visible_children = [c for c in tree_children[node_id] if visible[c]]
        descendants[node_id] = sum(1 + descendants[c] for c in visible_children)
        visible[node_id] = (
            not nodes[node_id]['reply'].is_deleted or bool(visible_children)
        )

    if root_id is not None:
        if root_id not in nodes or not visible[root_id]:
            return []
        start = [root_id]
    else:
        start = sorted(
            (node_id for node_id in roots if visible[node_id]),
            key=lambda node_id: key(nodes[node_id]['reply'])
        )

    # Pass 4: attach children up to the display cap
    stack = [(node_id, 0) for node_id in start]
    while stack:
        node_id, depth = stack.pop()
        node = nodes[node_id]
        node['depth'] = depth
        kids = sorted(
            (c for c in tree_children[node_id] if visible[c]),
            key=lambda c: key(nodes[c]['reply'])
        )
        if not kids:
            continue
        if max_depth is not None and depth + 1 >= max_depth:
            node['has_more_replies'] = True
            node['hidden_reply_count'] = descendants[node_id]
            continue
        node['replies'] = [nodes[c] for c in kids]
        stack.extend((c, depth + 1) for c in kids)

    return [nodes[node_id] for node_id in start]


def display_depth() -> int:
    return getattr(settings, 'REPLY_DISPLAY_DEPTH', 3)


# ============================================================================
# DISCUSSION READS
# ============================================================================

def _with_viewer_flags(queryset: QuerySet, user: Optional[User]) -> QuerySet:
    """Annotate is_following / is_saved / is_upvoted for the current viewer."""
    if user is None or not user.is_authenticated:
        false = Value(False, output_field=BooleanField())
        return queryset.annotate(is_following=false, is_saved=false, is_upvoted=false)

    return queryset.annotate(
        is_following=Exists(
            DiscussionFollower.objects.filter(discussion=OuterRef('pk'), user=user)
        ),
        # entity_id is text; compare against the id cast by the ORM
        is_saved=Exists(
            Bookmark.objects.filter(
                user=user,
                entity_type=Bookmark.EntityType.DISCUSSION,
                entity_id=OuterRef('id_text'),
            )
        ),
        is_upvoted=Exists(
            Upvote.objects.filter(discussion=OuterRef('pk'), user=user)
        ),
    )


def public_discussions() -> QuerySet:
    return (
        Discussion.objects
        .filter(is_public=True)
        .select_related('author')
        .annotate(id_text=Cast('id', output_field=CharField()))
    )


def get_discussion_for_viewer(discussion_id: int, user: Optional[User] = None) -> Optional[Discussion]:
    """
    Fetch one discussion with author, best answer and viewer flags.

    Private discussions are only visible to their author.

    Query: 1
    """
    visible = Q(is_public=True)
    if user is not None and user.is_authenticated:
        visible |= Q(author=user)
    queryset = (
        Discussion.objects
        .filter(visible)
        .select_related('author')
        .annotate(id_text=Cast('id', output_field=CharField()))
    )
    return (
        _with_viewer_flags(queryset, user)
        .select_related('best_answer__author')
        .filter(id=discussion_id)
        .first()
    )


def get_all_replies_for_discussion(discussion_id: int) -> list[Reply]:
    """
    Fetch ALL replies of a discussion, tombstones included, in one query.

    Ordered by created_at so tree assembly sees parents before children in
    the common case (the builder does not rely on it).
    """
    return list(
        Reply.objects
        .filter(discussion_id=discussion_id)
        .select_related('author')
        .order_by('created_at', 'id')
    )


def get_upvoted_reply_ids(user: Optional[User], discussion_id: int) -> set[int]:
    """Reply ids in this discussion the viewer has upvoted. Query: 1"""
    if user is None or not user.is_authenticated:
        return set()
    return set(
        Upvote.objects
        .filter(user=user, reply__discussion_id=discussion_id)
        .values_list('reply_id', flat=True)
    )


def get_reply_tree(
    discussion_id: int,
    sort: str = SORT_OLDEST,
    root_id: Optional[int] = None,
) -> list[dict]:
    flat_replies = get_all_replies_for_discussion(discussion_id)
    return build_reply_tree(
        flat_replies,
        sort=sort,
        max_depth=display_depth(),
        root_id=root_id,
    )


def filter_discussions(filters: dict, user: Optional[User] = None) -> QuerySet:
    """
    Apply list filters to the public discussions.

    filters keys (all optional): category, type, tags (list), status
    ('resolved' | 'active'), following (bool), sort (see DISCUSSION_SORTS).
    """
    queryset = _with_viewer_flags(public_discussions(), user)

    if filters.get('category'):
        queryset = queryset.filter(category=filters['category'])

    if filters.get('type'):
        queryset = queryset.filter(discussion_type=filters['type'])

    tags = filters.get('tags') or []
    if tags:
        # Any of the tags; tags are stored lowercased as a JSON list
        tag_filter = Q()
        for tag in tags:
            tag_filter |= Q(tags__icontains=f'"{tag.strip().lower()}"')
        queryset = queryset.filter(tag_filter)

    status = filters.get('status')
    if status == 'resolved':
        queryset = queryset.filter(is_resolved=True)
    elif status == 'active':
        queryset = queryset.filter(is_resolved=False)

    if filters.get('following') and user is not None and user.is_authenticated:
        queryset = queryset.filter(is_following=True)

    ordering = DISCUSSION_SORTS.get(filters.get('sort') or 'newest', DISCUSSION_SORTS['newest'])
    return queryset.order_by(*ordering, '-id')


def search_discussions(filters: dict, user: Optional[User] = None) -> QuerySet:
    """
    Free-text search over title, description and author name.

    sort='relevance' (default) puts title matches before description matches,
    then busier threads first. Without a query it falls back to last activity.
    """
    q = (filters.get('q') or '').strip()
    author = (filters.get('author') or '').strip()
    sort = filters.get('sort') or 'relevance'

    list_filters = {k: v for k, v in filters.items() if k != 'sort'}
    queryset = filter_discussions(list_filters, user)

    if q:
        queryset = queryset.filter(
            Q(title__icontains=q) |
            Q(description__icontains=q) |
            Q(author__first_name__icontains=q) |
            Q(author__last_name__icontains=q) |
            Q(author__username__icontains=q)
        )

    if author:
        queryset = queryset.filter(
            Q(author__first_name__icontains=author) |
            Q(author__last_name__icontains=author) |
            Q(author__username__icontains=author)
        )

    if sort == 'relevance':
        if q:
            queryset = queryset.annotate(
                relevance=Case(
                    When(title__icontains=q, then=Value(1)),
                    When(description__icontains=q, then=Value(2)),
                    default=Value(3),
                    output_field=IntegerField(),
                )
            ).order_by('relevance', '-reply_count', '-id')
        else:
            queryset = queryset.order_by('-last_activity_at', '-id')
    else:
        ordering = DISCUSSION_SORTS.get(sort, DISCUSSION_SORTS['newest'])
        queryset = queryset.order_by(*ordering, '-id')

    return queryset


def get_public_categories() -> list[str]:
    """Categories that currently have at least one public discussion."""
    return list(
        Discussion.objects
        .filter(is_public=True)
        .order_by('category')
        .values_list('category', flat=True)
        .distinct()
    )
