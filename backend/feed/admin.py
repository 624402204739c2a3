"""
Django Admin Configuration for Feed Models
"""
from django.contrib import admin
from .models import COUNTER_FIELDS, Post, Comment, Reaction, Share, Save, Profile


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ['user', 'full_name', 'avatar_background_color']
    search_fields = ['full_name', 'user__username', 'user__email']


@admin.register(Post)
class PostAdmin(admin.ModelAdmin):
    list_display = ['id', 'author', 'like_count', 'love_count', 'comment_count', 'created_at']
    list_filter = ['created_at']
    search_fields = ['content', 'author__username']
    # Counters are owned by the reaction toggle; editing them here would drift
    readonly_fields = [*COUNTER_FIELDS, 'comment_count', 'created_at', 'updated_at']


@admin.register(Comment)
class CommentAdmin(admin.ModelAdmin):
    list_display = ['id', 'post', 'author', 'parent', 'depth', 'like_count', 'created_at']
    list_filter = ['created_at', 'depth']
    search_fields = ['content', 'author__username']
    readonly_fields = [*COUNTER_FIELDS, 'depth', 'created_at', 'updated_at']


@admin.register(Reaction)
class ReactionAdmin(admin.ModelAdmin):
    list_display = ['user', 'reaction_type', 'content_type', 'object_id', 'created_at']
    list_filter = ['reaction_type', 'content_type', 'created_at']
    search_fields = ['user__username']
    readonly_fields = ['user', 'reaction_type', 'content_type', 'object_id', 'created_at', 'updated_at']

    def has_add_permission(self, request):
        # Reactions are only created through the toggle, which keeps counters in sync
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Share)
class ShareAdmin(admin.ModelAdmin):
    list_display = ['user', 'post', 'created_at']
    list_filter = ['created_at']
    search_fields = ['user__username']


@admin.register(Save)
class SaveAdmin(admin.ModelAdmin):
    list_display = ['user', 'post', 'created_at']
    list_filter = ['created_at']
    search_fields = ['user__username']
