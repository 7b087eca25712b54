"""
DRF Views
=========

API endpoints for the discussions application.

Views stay thin: validate with a serializer, call one service/query
function, render. Domain errors raised by the services (NotFoundError,
NotOwnerError, ...) are rendered by exceptions.custom_exception_handler.

AUTHENTICATION NOTE:
--------------------
Session authentication for the prototype; MockAuthView logs a user in
without a password for local development.
"""

from rest_framework import permissions, status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.pagination import PageNumberPagination
from django.conf import settings
from django.contrib.auth import login
from django.contrib.auth.models import User

from . import resolution, services
from .exceptions import NotFoundError
from .models import Reply
from .queries import (
    display_depth,
    filter_discussions,
    get_all_replies_for_discussion,
    get_discussion_for_viewer,
    get_public_categories,
    get_reply_tree,
    get_upvoted_reply_ids,
    build_reply_tree,
    search_discussions,
)
from .serializers import (
    BestAnswerSerializer,
    BookmarkToggleSerializer,
    DiscussionCreateSerializer,
    DiscussionDetailSerializer,
    DiscussionListQuerySerializer,
    DiscussionSummarySerializer,
    DiscussionUpdateSerializer,
    ReplyCreateSerializer,
    ReplyTreeQuerySerializer,
    ReplyTreeSerializer,
    ReplyUpdateSerializer,
    SearchQuerySerializer,
    SearchResultSerializer,
    UpvoteToggleSerializer,
)


class DiscussionPagination(PageNumberPagination):
    """
    Page/limit pagination for discussion lists.

    Offset pagination (unlike a cursor) lets the UI jump to a page and show
    a total; lists are filtered down enough for the COUNT to stay cheap.
    """
    page_size = getattr(settings, 'DISCUSSION_PAGE_SIZE', 20)
    page_size_query_param = 'limit'
    max_page_size = 100

    def get_paginated_response(self, data, **extra):
        limit = self.get_page_size(self.request)
        return Response({
            'discussions': data,
            'pagination': {
                'total': self.page.paginator.count,
                'page': self.page.number,
                'limit': limit,
                'pages': self.page.paginator.num_pages,
            },
            **extra,
        })


def _client_ip(request):
    return request.META.get('REMOTE_ADDR') or None


# ============================================================================
# DISCUSSIONS
# ============================================================================

class DiscussionListCreateView(APIView):
    """
    GET /api/discussions/

    Paginated public discussions with filters.

    Query params: category, type, tags (comma separated),
    status=resolved|active, following=true, sort=newest|active|popular|upvoted,
    page, limit

    POST /api/discussions/

    Create a discussion. Requires authentication.
    """

    def get(self, request):
        query = DiscussionListQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        queryset = filter_discussions(query.validated_data, request.user)

        paginator = DiscussionPagination()
        page = paginator.paginate_queryset(queryset, request, view=self)
        data = DiscussionSummarySerializer(page, many=True).data
        return paginator.get_paginated_response(data, categories=get_public_categories())

    def post(self, request):
        serializer = DiscussionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        discussion = services.create_discussion(request.user, **serializer.validated_data)
        return Response(
            DiscussionSummarySerializer(discussion).data,
            status=status.HTTP_201_CREATED
        )


class DiscussionSearchView(APIView):
    """
    GET /api/discussions/search/

    Query params: q, author, plus every list filter;
    sort=relevance|newest|active|popular
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        query = SearchQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        queryset = search_discussions(query.validated_data, request.user)

        paginator = DiscussionPagination()
        page = paginator.paginate_queryset(queryset, request, view=self)
        data = SearchResultSerializer(page, many=True).data
        return paginator.get_paginated_response(data)


class DiscussionDetailView(APIView):
    """
    GET /api/discussions/<id>/?sort=oldest|popular

    Returns the discussion with its best answer and nested reply tree.

    QUERY COUNT: 3-5
    1. Discussion with author, best answer and viewer flags
    2. All replies with authors
    3. (Optional) Viewer's upvoted reply ids
    4-5. First view by this viewer: insert view row + bump counter

    Tree building happens in Python, not in DB.

    PATCH  /api/discussions/<id>/   owner only
    DELETE /api/discussions/<id>/   owner only
    """

    def get(self, request, discussion_id):
        query = ReplyTreeQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        discussion = get_discussion_for_viewer(discussion_id, request.user)
        if discussion is None:
            raise NotFoundError(f"Discussion {discussion_id} not found")

        services.record_view(discussion, request.user, _client_ip(request))

        reply_tree = get_reply_tree(discussion.id, sort=query.validated_data['sort'])
        serializer = DiscussionDetailSerializer(
            discussion,
            context={
                'reply_tree': reply_tree,
                'upvoted_reply_ids': get_upvoted_reply_ids(request.user, discussion.id),
                'best_answer_id': discussion.best_answer_id,
                'request': request,
            }
        )
        return Response(serializer.data)

    def patch(self, request, discussion_id):
        serializer = DiscussionUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        services.update_discussion(request.user, discussion_id, **serializer.validated_data)
        discussion = get_discussion_for_viewer(discussion_id, request.user)
        return Response(DiscussionSummarySerializer(discussion).data)

    def delete(self, request, discussion_id):
        services.delete_discussion(request.user, discussion_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


# ============================================================================
# REPLIES
# ============================================================================

class ReplyCreateView(APIView):
    """
    POST /api/discussions/<discussion_id>/replies/

    Body:
    {
        "content": "Reply text",
        "parentReplyId": 123  // optional, for nested replies
    }
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, discussion_id):
        serializer = ReplyCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        reply = services.add_reply(
            request.user,
            discussion_id,
            serializer.validated_data['content'],
            parent_reply_id=serializer.validated_data.get('parent_reply_id'),
        )
        node = build_reply_tree([reply], max_depth=None)[0]
        return Response(
            ReplyTreeSerializer(node).data,
            status=status.HTTP_201_CREATED
        )


class ReplyDetailView(APIView):
    """
    PATCH  /api/replies/<id>/   edit, author only
    DELETE /api/replies/<id>/   soft delete, author only
    """
    permission_classes = [permissions.IsAuthenticated]

    def patch(self, request, reply_id):
        serializer = ReplyUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        reply = services.edit_reply(request.user, reply_id, serializer.validated_data['content'])
        node = build_reply_tree([reply], max_depth=None)[0]
        return Response(ReplyTreeSerializer(node).data)

    def delete(self, request, reply_id):
        services.delete_reply(request.user, reply_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class ReplyThreadView(APIView):
    """
    GET /api/replies/<id>/thread/?sort=oldest|popular

    "Load more": the subtree under a reply that carried hasMoreReplies,
    capped at the same display depth relative to that reply.
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request, reply_id):
        query = ReplyTreeQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        # Tombstones can carry the marker too, so deleted replies are allowed here
        reply = Reply.objects.filter(id=reply_id).only('id', 'discussion_id').first()
        discussion = reply and get_discussion_for_viewer(reply.discussion_id, request.user)
        if discussion is None:
            raise NotFoundError(f"Reply {reply_id} not found")

        flat_replies = get_all_replies_for_discussion(reply.discussion_id)
        tree = build_reply_tree(
            flat_replies,
            sort=query.validated_data['sort'],
            max_depth=display_depth(),
            root_id=reply.id,
        )
        if not tree:
            raise NotFoundError(f"Reply {reply_id} not found")

        serializer = ReplyTreeSerializer(
            tree[0],
            context={
                'upvoted_reply_ids': get_upvoted_reply_ids(request.user, reply.discussion_id),
                'best_answer_id': discussion.best_answer_id,
            }
        )
        return Response(serializer.data)


# ============================================================================
# TOGGLES
# ============================================================================

class DiscussionUpvoteView(APIView):
    """POST /api/discussions/<id>/upvote/"""
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, discussion_id):
        result = services.toggle_upvote(
            request.user, services.UpvoteTarget.discussion(discussion_id)
        )
        return Response({'upvoted': result.active, 'upvoteCount': result.count})


class ReplyUpvoteView(APIView):
    """POST /api/replies/<id>/upvote/"""
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, reply_id):
        result = services.toggle_upvote(request.user, services.UpvoteTarget.reply(reply_id))
        return Response({'upvoted': result.active, 'upvoteCount': result.count})


class UpvoteToggleView(APIView):
    """
    POST /api/upvotes/toggle/

    Body: { "replyId": 12 } or { "discussionId": 3 }, never both.

    CONCURRENCY:
    - One transaction per toggle
    - Unique constraints prevent duplicate votes
    - A double-submit returns the current state, not an error
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = UpvoteToggleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = services.toggle_upvote(request.user, serializer.validated_data['target'])
        return Response({'upvoted': result.active, 'upvoteCount': result.count})


class DiscussionFollowView(APIView):
    """POST /api/discussions/<id>/follow/"""
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, discussion_id):
        result = services.toggle_follow(request.user, discussion_id)
        return Response({'following': result.active, 'followerCount': result.count})


class DiscussionSaveView(APIView):
    """POST /api/discussions/<id>/save/"""
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, discussion_id):
        result = services.toggle_discussion_save(request.user, discussion_id)
        return Response({'saved': result.active, 'saveCount': result.count})


class BookmarkToggleView(APIView):
    """
    POST /api/bookmarks/toggle/

    Body: { "entityType": "LAW_SECTION", "entityId": "IPC-302" }
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = BookmarkToggleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = services.toggle_bookmark(request.user, serializer.validated_data['target'])
        return Response({'saved': result.active, 'saveCount': result.count})


# ============================================================================
# RESOLUTION
# ============================================================================

class BestAnswerView(APIView):
    """
    POST /api/discussions/<id>/best-answer/

    Body: { "replyId": 45 }. Owner only; resolves the discussion.
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, discussion_id):
        serializer = BestAnswerSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        discussion = resolution.mark_best_answer(
            request.user, discussion_id, serializer.validated_data['reply_id']
        )
        return Response({
            'isResolved': discussion.is_resolved,
            'bestAnswerId': discussion.best_answer_id,
        })


class ResolveView(APIView):
    """POST /api/discussions/<id>/resolve/  Owner only, one-way."""
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, discussion_id):
        discussion = resolution.mark_resolved(request.user, discussion_id)
        return Response({
            'isResolved': discussion.is_resolved,
            'bestAnswerId': discussion.best_answer_id,
        })


# ============================================================================
# DEVELOPMENT/TESTING HELPERS
# ============================================================================

class MockAuthView(APIView):
    """
    POST /api/auth/mock-login/

    DEVELOPMENT ONLY: Quick login for testing without full auth flow.
    Creates user if doesn't exist.

    Body: { "username": "advocate_rao" }
    """
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        username = request.data.get('username', 'testuser')
        user, created = User.objects.get_or_create(
            username=username,
            defaults={'email': f'{username}@example.com'}
        )
        login(request, user)

        return Response({
            'userId': user.id,
            'username': user.username,
            'created': created
        })


class WhoAmIView(APIView):
    """GET /api/auth/whoami/"""
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        if request.user.is_authenticated:
            return Response({
                'authenticated': True,
                'userId': request.user.id,
                'username': request.user.username
            })
        return Response({
            'authenticated': False,
            'userId': None,
            'username': None
        })
