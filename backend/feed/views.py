"""
DRF Views
=========

API endpoints for the feed application.

Views only translate HTTP <-> service calls: the viewer's id is read from
the session here and passed explicitly into services/queries, which
never look at the request.
"""

import logging

from django.contrib.auth import authenticate, login, logout
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from .exceptions import NOT_FOUND_MESSAGE
from .pagination import LastSeenIdPagination, positive_int_param
from .queries import (
    get_comment_page,
    get_feed_page,
    get_post,
    get_post_with_comment_tree,
    get_reactable,
    get_reactor_page,
    get_save_page,
    get_share_page,
)
from .serializers import (
    CommentCreateSerializer,
    CommentSerializer,
    LoginSerializer,
    PostActivitySerializer,
    PostCreateSerializer,
    PostDetailSerializer,
    PostSerializer,
    ReactionToggleResultSerializer,
    ReactionToggleSerializer,
    ReactorListQuerySerializer,
    ReactorSerializer,
    SignUpSerializer,
    TargetedReactionToggleSerializer,
    UserSerializer,
)
from .services import create_comment, create_post, share_post, toggle_reaction, toggle_save

logger = logging.getLogger(__name__)


def viewer_id(request):
    """Id of the logged-in user, or None for anonymous readers."""
    return request.user.id if request.user.is_authenticated else None


def not_found_response():
    return Response({'error': NOT_FOUND_MESSAGE}, status=status.HTTP_404_NOT_FOUND)


class PaginatedReadMixin:
    """
    Parses ?cursor=&limit= and wraps a queries.Page into the paginated
    response shape.
    """
    pagination_class = LastSeenIdPagination

    def page_params(self, request):
        self.paginator = self.pagination_class()
        return self.paginator.get_cursor(request), self.paginator.get_page_size(request)

    def page_response(self, page, data):
        self.paginator.page = page
        return self.paginator.get_paginated_response(data)


class FeedView(PaginatedReadMixin, APIView):
    """
    GET /api/feed/?cursor=<last post id>&limit=<n>

    Returns posts newest first, with the viewer's reaction/share/save state.

    Query: 1
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        cursor, limit = self.page_params(request)
        page = get_feed_page(viewer_id(request), cursor, limit)
        return self.page_response(page, PostSerializer(page.items, many=True).data)


class PostCreateView(APIView):
    """
    POST /api/posts/

    Body: {"content": "text", "images": [{"src": url, "width": px, "height": px}]}
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = PostCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        post = create_post(
            request.user.id,
            content=serializer.validated_data['content'],
            images=serializer.validated_data['images'],
        )
        return Response(PostSerializer(post).data, status=status.HTTP_201_CREATED)


class PostDetailView(APIView):
    """
    GET /api/posts/<id>/

    Returns post with full nested comment tree.

    QUERY COUNT: 2
    Tree building happens in Python, not in DB.
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request, post_id):
        result = get_post_with_comment_tree(post_id, viewer_id(request))
        if result is None:
            return not_found_response()

        serializer = PostDetailSerializer(
            result['post'],
            context={'comment_tree': result['comments'], 'request': request}
        )
        return Response(serializer.data)


class CommentListCreateView(PaginatedReadMixin, APIView):
    """
    GET  /api/posts/<post_id>/comments/?parent=<comment id>&cursor=&limit=
    POST /api/posts/<post_id>/comments/

    GET lists top-level comments, or the replies of ``parent``.
    POST body: {"content": "text", "images": [...], "parent": 123}
    """
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]

    def get(self, request, post_id):
        if get_post(post_id) is None:
            return not_found_response()

        parent_id = request.query_params.get('parent')
        if parent_id in (None, ''):
            parent_id = None
        else:
            parent_id = positive_int_param('parent', parent_id)

        cursor, limit = self.page_params(request)
        page = get_comment_page(post_id, viewer_id(request), parent_id, cursor, limit)
        return self.page_response(page, CommentSerializer(page.items, many=True).data)

    def post(self, request, post_id):
        serializer = CommentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        comment = create_comment(
            request.user.id,
            post_id,
            content=serializer.validated_data['content'],
            images=serializer.validated_data['images'],
            parent_id=serializer.validated_data['parent'],
        )
        if comment is None:
            return not_found_response()
        return Response(CommentSerializer(comment).data, status=status.HTTP_201_CREATED)


class ReactionToggleView(APIView):
    """
    POST /api/posts/<id>/react/
    POST /api/comments/<id>/react/

    Body:
    {
        "reaction_type": "like" | "love" | "care" | "haha" | "wow" | "sad" | "angry",
        "is_primary_action": true | false
    }

    Returns:
    {
        "success": true,
        "action": "created" | "removed" | "switched",
        "reaction_type": "love" | null,
        "previous_type": "like" | null,
        "entity": { ...post or comment, same shape as the feed... }
    }

    404 when the post/comment no longer exists.
    """
    permission_classes = [permissions.IsAuthenticated]
    target_type = None

    def post(self, request, target_id):
        serializer = ReactionToggleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return toggle_response(
            request,
            self.target_type,
            target_id,
            serializer.validated_data['reaction_type'],
            serializer.validated_data['is_primary_action'],
        )


class TargetedReactionToggleView(APIView):
    """
    POST /api/reactions/toggle/

    Same as ReactionToggleView with the target in the body:
    {"target_type": "post" | "comment", "target_id": 123, "reaction_type": ..., "is_primary_action": ...}
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = TargetedReactionToggleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        return toggle_response(
            request,
            data['target_type'],
            data['target_id'],
            data['reaction_type'],
            data['is_primary_action'],
        )


def toggle_response(request, target_type, target_id, reaction_type, is_primary_action):
    result = toggle_reaction(
        target_type,
        target_id,
        request.user.id,
        reaction_type,
        is_primary_action=is_primary_action,
    )
    if result.not_found:
        return not_found_response()
    return Response(ReactionToggleResultSerializer(result, context={'request': request}).data)


class ReactorListView(PaginatedReadMixin, APIView):
    """
    GET /api/posts/<id>/reactions/?type=all|like|love|...&cursor=&limit=
    GET /api/comments/<id>/reactions/

    Who reacted, newest first.
    """
    permission_classes = [permissions.AllowAny]
    target_type = None

    def get(self, request, target_id):
        query = ReactorListQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        if get_reactable(self.target_type, target_id) is None:
            return not_found_response()

        cursor, limit = self.page_params(request)
        page = get_reactor_page(
            self.target_type, target_id, query.validated_data['type'], cursor, limit
        )
        return self.page_response(page, ReactorSerializer(page.items, many=True).data)


class ShareView(PaginatedReadMixin, APIView):
    """
    POST /api/posts/<id>/share/   share the post (idempotent)
    GET  /api/posts/<id>/shares/  who shared it, newest first
    """
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]

    def post(self, request, post_id):
        post = share_post(post_id, request.user.id)
        if post is None:
            return not_found_response()
        return Response(PostSerializer(post).data)

    def get(self, request, post_id):
        if get_post(post_id) is None:
            return not_found_response()
        cursor, limit = self.page_params(request)
        page = get_share_page(post_id, cursor, limit)
        return self.page_response(page, PostActivitySerializer(page.items, many=True).data)


class SaveView(PaginatedReadMixin, APIView):
    """
    POST /api/posts/<id>/save/   save / unsave the post
    GET  /api/posts/<id>/saves/  who saved it, newest first
    """
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]

    def post(self, request, post_id):
        post = toggle_save(post_id, request.user.id)
        if post is None:
            return not_found_response()
        return Response(PostSerializer(post).data)

    def get(self, request, post_id):
        if get_post(post_id) is None:
            return not_found_response()
        cursor, limit = self.page_params(request)
        page = get_save_page(post_id, cursor, limit)
        return self.page_response(page, PostActivitySerializer(page.items, many=True).data)


# ============================================================================
# AUTHENTICATION
# ============================================================================

class SignUpView(APIView):
    """
    POST /api/auth/sign-up/

    Body: {"full_name": "...", "email": "...", "password": "..."}
    Creates the account and logs it in (session).
    """
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = SignUpSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = serializer.save()

        login(request, user, backend='django.contrib.auth.backends.ModelBackend')
        logger.info("User %s signed up", user.id)
        return Response(UserSerializer(user).data, status=status.HTTP_201_CREATED)


class LoginView(APIView):
    """
    POST /api/auth/login/

    Body: {"email": "...", "password": "..."}
    """
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = LoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        email = serializer.validated_data['email'].strip().lower()
        user = authenticate(
            request,
            username=email,
            password=serializer.validated_data['password'],
        )
        if user is None:
            return Response(
                {'error': 'Invalid credentials'},
                status=status.HTTP_400_BAD_REQUEST
            )

        login(request, user)
        return Response(UserSerializer(user).data)


class LogoutView(APIView):
    """POST /api/auth/logout/"""
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        logout(request)
        return Response(status=status.HTTP_204_NO_CONTENT)


class WhoAmIView(APIView):
    """
    GET /api/auth/whoami/

    Returns current authenticated user info.
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        if request.user.is_authenticated:
            return Response({
                'authenticated': True,
                'user': UserSerializer(request.user).data
            })
        return Response({
            'authenticated': False,
            'user': None
        })
