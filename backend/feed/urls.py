"""
Feed App URL Configuration
"""
from django.urls import path
from .views import (
    FeedView,
    PostCreateView,
    PostDetailView,
    CommentListCreateView,
    ReactionToggleView,
    TargetedReactionToggleView,
    ReactorListView,
    ShareView,
    SaveView,
    SignUpView,
    LoginView,
    LogoutView,
    WhoAmIView
)

urlpatterns = [
    # Feed
    path('feed/', FeedView.as_view(), name='feed'),

    # Posts
    path('posts/', PostCreateView.as_view(), name='post-create'),
    path('posts/<int:post_id>/', PostDetailView.as_view(), name='post-detail'),
    path('posts/<int:post_id>/comments/', CommentListCreateView.as_view(), name='post-comments'),
    path('posts/<int:target_id>/react/', ReactionToggleView.as_view(target_type='post'), name='react-post'),
    path('posts/<int:target_id>/reactions/', ReactorListView.as_view(target_type='post'), name='post-reactions'),
    path('posts/<int:post_id>/share/', ShareView.as_view(), name='share-post'),
    path('posts/<int:post_id>/shares/', ShareView.as_view(), name='post-shares'),
    path('posts/<int:post_id>/save/', SaveView.as_view(), name='save-post'),
    path('posts/<int:post_id>/saves/', SaveView.as_view(), name='post-saves'),

    # Comments
    path('comments/<int:target_id>/react/', ReactionToggleView.as_view(target_type='comment'), name='react-comment'),
    path('comments/<int:target_id>/reactions/', ReactorListView.as_view(target_type='comment'), name='comment-reactions'),

    # Reactions (unified endpoint)
    path('reactions/toggle/', TargetedReactionToggleView.as_view(), name='reaction-toggle'),

    # Auth
    path('auth/sign-up/', SignUpView.as_view(), name='sign-up'),
    path('auth/login/', LoginView.as_view(), name='login'),
    path('auth/logout/', LogoutView.as_view(), name='logout'),
    path('auth/whoami/', WhoAmIView.as_view(), name='whoami'),
]
