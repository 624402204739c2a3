"""
Efficient Query Strategies
==========================

Read paths for posts, comments, reactions, shares and saves.

Every post/comment returned to a client carries the viewer's own state
(their reaction, whether they shared/saved the post). That state is
computed with correlated subqueries in the same SELECT, so a page of 10
posts is still one query, not 1 + 10 * 3.

THE N+1 PROBLEM, COMMENT TREES:
-------------------------------
Fetch ALL comments for a post in ONE query, select_related the author,
and build the tree in Python with an O(n) single pass.
"""

from typing import Optional

from django.contrib.contenttypes.models import ContentType
from django.db.models import (
    BooleanField,
    CharField,
    Count,
    Exists,
    IntegerField,
    OuterRef,
    QuerySet,
    Subquery,
    Value,
)
from django.db.models.functions import Coalesce

from . import cache
from .models import REACTABLE_MODELS, Comment, Post, Reaction, Save, Share
from .pagination import Page, paginate_after


def _count_of(queryset: QuerySet, group_field: str) -> Coalesce:
    """Correlated COUNT(*) subquery, 0 when there are no rows."""
    counted = (
        queryset
        .order_by()
        .values(group_field)
        .annotate(n=Count('pk'))
        .values('n')
    )
    return Coalesce(Subquery(counted, output_field=IntegerField()), 0)


def _my_reaction(model, viewer_id: Optional[int]):
    if viewer_id is None:
        return Value(None, output_field=CharField())
    return Subquery(
        Reaction.objects
        .filter(
            content_type=ContentType.objects.get_for_model(model),
            object_id=OuterRef('pk'),
            user_id=viewer_id,
        )
        .values('reaction_type')[:1],
        output_field=CharField(),
    )


def posts_for_viewer(viewer_id: Optional[int] = None) -> QuerySet:
    """
    Posts annotated with share/save counts and the viewer's own state.

    Query: 1 (author + profile JOIN, counts and viewer state as subqueries)
    """
    queryset = (
        Post.objects
        .select_related('author', 'author__profile')
        .annotate(
            share_count=_count_of(Share.objects.filter(post=OuterRef('pk')), 'post'),
            save_count=_count_of(Save.objects.filter(post=OuterRef('pk')), 'post'),
            my_reaction=_my_reaction(Post, viewer_id),
        )
    )
    if viewer_id is None:
        return queryset.annotate(
            is_shared=Value(False, output_field=BooleanField()),
            is_saved=Value(False, output_field=BooleanField()),
        )
    return queryset.annotate(
        is_shared=Exists(Share.objects.filter(post=OuterRef('pk'), user_id=viewer_id)),
        is_saved=Exists(Save.objects.filter(post=OuterRef('pk'), user_id=viewer_id)),
    )


def comments_for_viewer(viewer_id: Optional[int] = None) -> QuerySet:
    """Comments annotated with their reply count and the viewer's reaction."""
    return (
        Comment.objects
        .select_related('author', 'author__profile')
        .annotate(
            reply_count=_count_of(Comment.objects.filter(parent=OuterRef('pk')), 'parent'),
            my_reaction=_my_reaction(Comment, viewer_id),
        )
    )


def reactable_for_viewer(target_type: str, viewer_id: Optional[int] = None) -> QuerySet:
    if target_type == 'post':
        return posts_for_viewer(viewer_id)
    return comments_for_viewer(viewer_id)


def get_reactable(target_type: str, target_id: int, viewer_id: Optional[int] = None):
    """The post or comment in the same shape as paginated reads, or None."""
    return reactable_for_viewer(target_type, viewer_id).filter(pk=target_id).first()


def get_post(post_id: int, viewer_id: Optional[int] = None) -> Optional[Post]:
    return get_reactable('post', post_id, viewer_id)


# ============================================================================
# PAGINATED READS
# ============================================================================

def get_feed_page(viewer_id: Optional[int], cursor: Optional[int] = None,
                  limit: Optional[int] = None) -> Page:
    """Newest posts first, after post ``cursor``."""
    return cache.cached(
        (cache.POSTS,),
        ('feed', viewer_id, cursor, limit),
        lambda: paginate_after(posts_for_viewer(viewer_id), cursor, limit),
    )


def get_comment_page(post_id: int, viewer_id: Optional[int],
                     parent_id: Optional[int] = None,
                     cursor: Optional[int] = None,
                     limit: Optional[int] = None) -> Page:
    """Top-level comments of a post, or the replies to ``parent_id``."""
    def build():
        queryset = comments_for_viewer(viewer_id).filter(post_id=post_id, parent_id=parent_id)
        return paginate_after(queryset, cursor, limit)

    return cache.cached(
        (cache.COMMENTS,),
        ('comments', post_id, parent_id, viewer_id, cursor, limit),
        build,
    )


def get_reactor_page(target_type: str, target_id: int,
                     reaction_type: Optional[str] = None,
                     cursor: Optional[int] = None,
                     limit: Optional[int] = None) -> Page:
    """
    Who reacted to a post or comment, newest first.

    ``reaction_type`` of None (or "all") lists every reaction.
    """
    model = REACTABLE_MODELS[target_type]
    if reaction_type == 'all':
        reaction_type = None

    def build():
        queryset = (
            Reaction.objects
            .select_related('user', 'user__profile')
            .filter(
                content_type=ContentType.objects.get_for_model(model),
                object_id=target_id,
            )
        )
        if reaction_type is not None:
            queryset = queryset.filter(reaction_type=reaction_type)
        return paginate_after(queryset, cursor, limit)

    collection_tag = cache.POST_REACTIONS if target_type == 'post' else cache.COMMENT_REACTIONS
    return cache.cached(
        (collection_tag, cache.entity_reactions_tag(target_type, target_id)),
        ('reactors', target_type, target_id, reaction_type or 'all', cursor, limit),
        build,
    )


def get_share_page(post_id: int, cursor: Optional[int] = None,
                   limit: Optional[int] = None) -> Page:
    return cache.cached(
        (cache.SHARES,),
        ('shares', post_id, cursor, limit),
        lambda: paginate_after(
            Share.objects.select_related('user', 'user__profile').filter(post_id=post_id),
            cursor,
            limit,
        ),
    )


def get_save_page(post_id: int, cursor: Optional[int] = None,
                  limit: Optional[int] = None) -> Page:
    return cache.cached(
        (cache.SAVES,),
        ('saves', post_id, cursor, limit),
        lambda: paginate_after(
            Save.objects.select_related('user', 'user__profile').filter(post_id=post_id),
            cursor,
            limit,
        ),
    )


# ============================================================================
# COMMENT TREE
# ============================================================================

def get_all_comments_for_post(post_id: int, viewer_id: Optional[int] = None) -> list[Comment]:
    """
    Fetch ALL comments for a post in a SINGLE query, oldest first so a
    parent is normally seen before its replies.
    """
    return list(
        comments_for_viewer(viewer_id)
        .filter(post_id=post_id)
        .order_by('created_at', 'id')
    )


def build_comment_tree(flat_comments: list[Comment]) -> list[dict]:
    """
    Build nested tree structure from flat list.

    Algorithm: O(n) single pass with hash map
    1. First pass: Create lookup dict {id -> node}
    2. Second pass: Attach children to parents

    Output:
        [{'comment': Comment(id=1), 'replies': [{'comment': ..., 'replies': []}]}]
    """
    nodes = {}
    for comment in flat_comments:
        nodes[comment.id] = {
            'comment': comment,
            'replies': []
        }

    root_nodes = []
    for comment in flat_comments:
        node = nodes[comment.id]
        if comment.parent_id is None:
            root_nodes.append(node)
        else:
            parent_node = nodes.get(comment.parent_id)
            if parent_node:
                parent_node['replies'].append(node)
            else:
                # Orphan (parent outside the fetched set): show at top level
                root_nodes.append(node)

    return root_nodes


def get_post_with_comment_tree(post_id: int, viewer_id: Optional[int] = None) -> Optional[dict]:
    """
    Post with its fully nested comment tree.

    TOTAL QUERIES: 2
    - 1 for post + author + viewer state
    - 1 for all comments + authors + viewer state
    """
    post = get_post(post_id, viewer_id)
    if not post:
        return None

    flat_comments = get_all_comments_for_post(post_id, viewer_id)
    return {
        'post': post,
        'comments': build_comment_tree(flat_comments),
        'comment_count': len(flat_comments)
    }
