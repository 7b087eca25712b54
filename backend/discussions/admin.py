"""
Django Admin Configuration for Discussion Models

Counters are read-only here: they are maintained by services.py and
corrected by `manage.py reconcile_counters`.
"""
from django.contrib import admin
from .models import Discussion, Reply, Upvote, DiscussionFollower, Bookmark, DiscussionView


@admin.register(Discussion)
class DiscussionAdmin(admin.ModelAdmin):
    list_display = ['title', 'author', 'category', 'is_public', 'is_resolved',
                    'reply_count', 'upvote_count', 'created_at']
    list_filter = ['category', 'discussion_type', 'is_public', 'is_resolved', 'created_at']
    search_fields = ['title', 'description', 'author__username']
    raw_id_fields = ['author', 'best_answer']
    readonly_fields = ['reply_count', 'upvote_count', 'save_count', 'follower_count',
                       'view_count', 'created_at', 'updated_at', 'last_activity_at']


@admin.register(Reply)
class ReplyAdmin(admin.ModelAdmin):
    list_display = ['id', 'discussion', 'author', 'parent', 'depth', 'upvote_count',
                    'is_deleted', 'created_at']
    list_filter = ['is_deleted', 'is_edited', 'created_at', 'depth']
    search_fields = ['content', 'author__username']
    raw_id_fields = ['discussion', 'author', 'parent']
    readonly_fields = ['upvote_count', 'reply_count', 'depth', 'created_at', 'updated_at']


@admin.register(Upvote)
class UpvoteAdmin(admin.ModelAdmin):
    list_display = ['user', 'reply', 'discussion', 'created_at']
    list_filter = ['created_at']
    search_fields = ['user__username']
    raw_id_fields = ['user', 'reply', 'discussion']


@admin.register(DiscussionFollower)
class DiscussionFollowerAdmin(admin.ModelAdmin):
    list_display = ['user', 'discussion', 'created_at']
    search_fields = ['user__username']
    raw_id_fields = ['user', 'discussion']


@admin.register(Bookmark)
class BookmarkAdmin(admin.ModelAdmin):
    list_display = ['user', 'entity_type', 'entity_id', 'created_at']
    list_filter = ['entity_type', 'created_at']
    search_fields = ['user__username', 'entity_id']


@admin.register(DiscussionView)
class DiscussionViewAdmin(admin.ModelAdmin):
    list_display = ['discussion', 'user', 'ip_address', 'viewed_at']
    raw_id_fields = ['discussion', 'user']
    readonly_fields = ['discussion', 'user', 'ip_address', 'viewed_at']

    def has_add_permission(self, request):
        # Views are only recorded by the detail endpoint
        return False
