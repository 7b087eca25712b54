"""
Discussions App URL Configuration
"""
from django.urls import path
from .views import (
    DiscussionListCreateView,
    DiscussionSearchView,
    DiscussionDetailView,
    ReplyCreateView,
    ReplyDetailView,
    ReplyThreadView,
    DiscussionUpvoteView,
    ReplyUpvoteView,
    UpvoteToggleView,
    DiscussionFollowView,
    DiscussionSaveView,
    BookmarkToggleView,
    BestAnswerView,
    ResolveView,
    MockAuthView,
    WhoAmIView
)

urlpatterns = [
    # Discussions
    path('discussions/', DiscussionListCreateView.as_view(), name='discussion-list'),
    path('discussions/search/', DiscussionSearchView.as_view(), name='discussion-search'),
    path('discussions/<int:discussion_id>/', DiscussionDetailView.as_view(), name='discussion-detail'),
    path('discussions/<int:discussion_id>/replies/', ReplyCreateView.as_view(), name='reply-create'),
    path('discussions/<int:discussion_id>/upvote/', DiscussionUpvoteView.as_view(), name='discussion-upvote'),
    path('discussions/<int:discussion_id>/follow/', DiscussionFollowView.as_view(), name='discussion-follow'),
    path('discussions/<int:discussion_id>/save/', DiscussionSaveView.as_view(), name='discussion-save'),

    # Resolution
    path('discussions/<int:discussion_id>/best-answer/', BestAnswerView.as_view(), name='discussion-best-answer'),
    path('discussions/<int:discussion_id>/resolve/', ResolveView.as_view(), name='discussion-resolve'),

    # Replies
    path('replies/<int:reply_id>/', ReplyDetailView.as_view(), name='reply-detail'),
    path('replies/<int:reply_id>/thread/', ReplyThreadView.as_view(), name='reply-thread'),
    path('replies/<int:reply_id>/upvote/', ReplyUpvoteView.as_view(), name='reply-upvote'),

    # Toggles (unified endpoints)
    path('upvotes/toggle/', UpvoteToggleView.as_view(), name='upvote-toggle'),
    path('bookmarks/toggle/', BookmarkToggleView.as_view(), name='bookmark-toggle'),

    # Auth (development)
    path('auth/mock-login/', MockAuthView.as_view(), name='mock-login'),
    path('auth/whoami/', WhoAmIView.as_view(), name='whoami'),
]
