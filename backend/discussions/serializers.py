"""
DRF Serializers
===============

Serializers handle:
1. Validation of request bodies and query strings (before any write)
2. Transformation of discussions and reply trees to camelCase JSON
3. Nested reply tree serialization

DESIGN DECISIONS:
-----------------
1. Separate serializers for list, search and detail views
2. The reply tree is pre-built by queries.build_reply_tree and passed in
   context; ReplyTreeSerializer only renders it, so serialization never
   touches the database
3. Toggle targets are turned into UpvoteTarget / BookmarkTarget here, so an
   invalid combination is a 400 before the service layer runs
"""

from rest_framework import serializers
from django.contrib.auth.models import User

from .exceptions import InvalidTargetError
from .models import Bookmark, Discussion, LegalCategory
from .queries import DELETED_REPLY_CONTENT, DISCUSSION_SORTS, REPLY_SORTS, SORT_OLDEST
from .services import BookmarkTarget, UpvoteTarget

EXCERPT_LENGTH = 150


class AuthorSerializer(serializers.ModelSerializer):
    """Minimal user representation for embedding in other objects."""
    fullName = serializers.CharField(source='get_full_name', read_only=True)

    class Meta:
        model = User
        fields = ['id', 'username', 'fullName']
        read_only_fields = fields


# ============================================================================
# DISCUSSIONS (output)
# ============================================================================

class DiscussionSummarySerializer(serializers.Serializer):
    """
    Discussion as shown in lists.

    isFollowing / isSaved / isUpvoted come from the EXISTS annotations added
    by queries._with_viewer_flags; missing annotations render as false.
    """
    id = serializers.IntegerField(read_only=True)
    title = serializers.CharField(read_only=True)
    description = serializers.CharField(read_only=True)
    category = serializers.CharField(read_only=True)
    type = serializers.CharField(source='discussion_type', read_only=True)
    tags = serializers.ListField(child=serializers.CharField(), read_only=True)
    author = AuthorSerializer(read_only=True)
    replyCount = serializers.IntegerField(source='reply_count', read_only=True)
    upvoteCount = serializers.IntegerField(source='upvote_count', read_only=True)
    saveCount = serializers.IntegerField(source='save_count', read_only=True)
    followerCount = serializers.IntegerField(source='follower_count', read_only=True)
    viewCount = serializers.IntegerField(source='view_count', read_only=True)
    isResolved = serializers.BooleanField(source='is_resolved', read_only=True)
    bestAnswerId = serializers.IntegerField(source='best_answer_id', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    lastActivityAt = serializers.DateTimeField(source='last_activity_at', read_only=True)
    isFollowing = serializers.SerializerMethodField()
    isSaved = serializers.SerializerMethodField()
    isUpvoted = serializers.SerializerMethodField()

    def get_isFollowing(self, obj):
        return bool(getattr(obj, 'is_following', False))

    def get_isSaved(self, obj):
        return bool(getattr(obj, 'is_saved', False))

    def get_isUpvoted(self, obj):
        return bool(getattr(obj, 'is_upvoted', False))


class SearchResultSerializer(DiscussionSummarySerializer):
    excerpt = serializers.SerializerMethodField()

    def get_excerpt(self, obj):
        text = obj.description or ''
        if len(text) <= EXCERPT_LENGTH:
            return text
        return text[:EXCERPT_LENGTH].rstrip() + '...'


class ReplyTreeSerializer(serializers.Serializer):
    """
    Serializer for the nested reply tree.

    This is NOT a ModelSerializer because it renders the node dicts built by
    queries.build_reply_tree():
    {
        'reply': Reply,
        'replies': [node, ...],
        'depth': int,
        'has_more_replies': bool,
        'hidden_reply_count': int,
    }

    Context:
        upvoted_reply_ids: set of reply ids the viewer has upvoted
        best_answer_id: the discussion's best answer, or None
    """
    id = serializers.IntegerField(source='reply.id')
    parentReplyId = serializers.IntegerField(source='reply.parent_id', allow_null=True)
    content = serializers.SerializerMethodField()
    upvoteCount = serializers.IntegerField(source='reply.upvote_count')
    replyCount = serializers.IntegerField(source='reply.reply_count')
    isEdited = serializers.BooleanField(source='reply.is_edited')
    isDeleted = serializers.BooleanField(source='reply.is_deleted')
    createdAt = serializers.DateTimeField(source='reply.created_at')
    author = serializers.SerializerMethodField()
    hasUpvoted = serializers.SerializerMethodField()
    isBestAnswer = serializers.SerializerMethodField()
    depth = serializers.IntegerField()
    replies = serializers.SerializerMethodField()
    hasMoreReplies = serializers.BooleanField(source='has_more_replies')
    hiddenReplyCount = serializers.IntegerField(source='hidden_reply_count')

    def get_content(self, obj):
        reply = obj['reply']
        return DELETED_REPLY_CONTENT if reply.is_deleted else reply.content

    def get_author(self, obj):
        reply = obj['reply']
        if reply.is_deleted:
            return None
        return AuthorSerializer(reply.author).data

    def get_hasUpvoted(self, obj):
        return obj['reply'].id in self.context.get('upvoted_reply_ids', ())

    def get_isBestAnswer(self, obj):
        return obj['reply'].id == self.context.get('best_answer_id')

    def get_replies(self, obj):
        """Recursively serialize replies (bounded by the display depth)."""
        return ReplyTreeSerializer(obj['replies'], many=True, context=self.context).data


class DiscussionDetailSerializer(DiscussionSummarySerializer):
    """
    Discussion detail with best answer and the nested reply tree.

    The tree is passed as pre-built nodes in context['reply_tree'].
    """
    isPublic = serializers.BooleanField(source='is_public', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)
    bestAnswer = serializers.SerializerMethodField()
    replies = serializers.SerializerMethodField()

    def get_bestAnswer(self, obj):
        reply = obj.best_answer
        if reply is None or reply.is_deleted:
            return None
        return {
            'id': reply.id,
            'content': reply.content,
            'author': AuthorSerializer(reply.author).data,
            'upvoteCount': reply.upvote_count,
            'createdAt': serializers.DateTimeField().to_representation(reply.created_at),
        }

    def get_replies(self, obj):
        reply_tree = self.context.get('reply_tree', [])
        return ReplyTreeSerializer(reply_tree, many=True, context=self.context).data


# ============================================================================
# REQUEST BODIES
# ============================================================================

class DiscussionCreateSerializer(serializers.Serializer):
    title = serializers.CharField(min_length=10, max_length=500)
    description = serializers.CharField(min_length=20)
    category = serializers.ChoiceField(choices=LegalCategory.choices)
    type = serializers.ChoiceField(
        source='discussion_type',
        choices=Discussion.DiscussionType.choices,
        default=Discussion.DiscussionType.GENERAL,
    )
    tags = serializers.ListField(
        child=serializers.CharField(max_length=50),
        required=False,
        max_length=10,
    )
    isPublic = serializers.BooleanField(source='is_public', default=True)


class DiscussionUpdateSerializer(serializers.Serializer):
    title = serializers.CharField(min_length=10, max_length=500, required=False)
    description = serializers.CharField(min_length=20, required=False)
    tags = serializers.ListField(
        child=serializers.CharField(max_length=50),
        required=False,
        max_length=10,
    )
    isPublic = serializers.BooleanField(source='is_public', required=False)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("Nothing to update.")
        return attrs


class ReplyCreateSerializer(serializers.Serializer):
    content = serializers.CharField(min_length=5, max_length=5000)
    parentReplyId = serializers.IntegerField(
        source='parent_reply_id',
        min_value=1,
        required=False,
        allow_null=True,
    )


class ReplyUpdateSerializer(serializers.Serializer):
    content = serializers.CharField(min_length=5, max_length=5000)


class UpvoteToggleSerializer(serializers.Serializer):
    """
    Unified upvote body: exactly one of replyId / discussionId.

    validated_data['target'] is an UpvoteTarget.
    """
    replyId = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    discussionId = serializers.IntegerField(min_value=1, required=False, allow_null=True)

    def validate(self, attrs):
        try:
            target = UpvoteTarget.from_ids(
                reply_id=attrs.get('replyId'),
                discussion_id=attrs.get('discussionId'),
            )
        except InvalidTargetError as e:
            raise serializers.ValidationError(e.message)
        return {'target': target}


class BookmarkToggleSerializer(serializers.Serializer):
    entityType = serializers.ChoiceField(choices=Bookmark.EntityType.choices)
    entityId = serializers.CharField(max_length=64)

    def validate(self, attrs):
        try:
            target = BookmarkTarget.parse(attrs['entityType'], attrs['entityId'])
        except InvalidTargetError as e:
            raise serializers.ValidationError({'entityId': e.message})
        return {'target': target}


class BestAnswerSerializer(serializers.Serializer):
    replyId = serializers.IntegerField(source='reply_id', min_value=1)


# ============================================================================
# QUERY STRINGS
# ============================================================================

class DiscussionListQuerySerializer(serializers.Serializer):
    category = serializers.ChoiceField(choices=LegalCategory.choices, required=False)
    type = serializers.ChoiceField(choices=Discussion.DiscussionType.choices, required=False)
    # Comma separated: ?tags=bail,ipc
    tags = serializers.CharField(required=False, allow_blank=True)
    status = serializers.ChoiceField(choices=['resolved', 'active'], required=False)
    following = serializers.BooleanField(required=False, default=False)
    sort = serializers.ChoiceField(choices=list(DISCUSSION_SORTS), default='newest')

    def validate_tags(self, value):
        return [tag.strip() for tag in value.split(',') if tag.strip()]


class SearchQuerySerializer(DiscussionListQuerySerializer):
    q = serializers.CharField(required=False, allow_blank=True, max_length=200)
    author = serializers.CharField(required=False, allow_blank=True, max_length=100)
    sort = serializers.ChoiceField(
        choices=['relevance', 'newest', 'active', 'popular'],
        default='relevance',
    )


class ReplyTreeQuerySerializer(serializers.Serializer):
    sort = serializers.ChoiceField(choices=REPLY_SORTS, default=SORT_OLDEST)
