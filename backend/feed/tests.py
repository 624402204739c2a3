"""
Tests for SocialFeed

Focus areas:
1. Reaction state machine (posts and comments share one implementation)
2. Reaction concurrency (counters always equal reaction rows)
3. Comment tree building (no N+1)
4. Last-seen-id pagination
5. Cache invalidation on commit
6. API contract (status codes and response shapes)
"""

import threading
from io import StringIO
from unittest.mock import patch

from django.contrib.auth.models import User
from django.contrib.contenttypes.models import ContentType
from django.core.management import call_command
from django.db import IntegrityError, connection
from django.test import TestCase, TransactionTestCase, override_settings
from django.test.utils import CaptureQueriesContext
from rest_framework.test import APITestCase

from . import cache as feed_cache
from . import services
from .exceptions import (
    NOT_FOUND_MESSAGE,
    TRANSIENT_ERROR_MESSAGE,
    FeedValidationError,
    ReactionConflictError,
    ReactionValidationError,
)
from .models import COUNTER_FIELDS, MAX_COMMENT_DEPTH, REACTION_TYPES, Comment, Post, Reaction, Save, Share
from .pagination import paginate_after
from .queries import (
    build_comment_tree,
    get_all_comments_for_post,
    get_comment_page,
    get_feed_page,
    get_post_with_comment_tree,
    get_reactor_page,
    get_save_page,
    get_share_page,
)
from .services import (
    create_comment,
    create_post,
    react_to_comment,
    react_to_post,
    recount_reactions,
    release_user_reactions,
    share_post,
    toggle_reaction,
    toggle_save,
)

LOCMEM_CACHE = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'feed-tests',
    }
}


def reaction_rows(entity):
    """Reaction rows pointing at a post or comment."""
    return Reaction.objects.filter(
        content_type=ContentType.objects.get_for_model(type(entity)),
        object_id=entity.pk,
    )


def counter_total(entity):
    entity.refresh_from_db()
    return sum(getattr(entity, field) for field in COUNTER_FIELDS)


class ReactionStateMachineTestCase(TestCase):
    """
    Test the reaction toggle transitions.

    CRITICAL: These tests verify that:
    1. A user has at most one reaction per post/comment
    2. The seven counters always sum to the number of reaction rows
    3. A switch moves exactly one count between two counters
    """

    def setUp(self):
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.other = User.objects.create_user('other', 'o@test.com', 'pass')
        self.post = Post.objects.create(author=self.author, content='Hello world')
        self.comment = Comment.objects.create(post=self.post, author=self.author, content='First!')

    def test_first_reaction_is_created(self):
        result = react_to_post(self.post.id, self.user.id, 'love')

        self.assertTrue(result.success)
        self.assertEqual(result.action, 'created')
        self.assertEqual(result.reaction_type, 'love')
        self.assertIsNone(result.previous_type)

        self.post.refresh_from_db()
        self.assertEqual(self.post.love_count, 1)
        self.assertEqual(reaction_rows(self.post).get().reaction_type, 'love')

    def test_entity_in_result_reflects_toggle(self):
        """The returned post carries the new counters and the caller's reaction."""
        result = react_to_post(self.post.id, self.user.id, 'haha')

        self.assertEqual(result.entity.pk, self.post.pk)
        self.assertEqual(result.entity.haha_count, 1)
        self.assertEqual(result.entity.my_reaction, 'haha')

    def test_same_type_twice_removes(self):
        """Toggling the same type twice leaves no reaction."""
        react_to_post(self.post.id, self.user.id, 'like')
        result = react_to_post(self.post.id, self.user.id, 'like')

        self.assertEqual(result.action, 'removed')
        self.assertIsNone(result.reaction_type)
        self.assertEqual(result.previous_type, 'like')
        self.assertIsNone(result.entity.my_reaction)
        self.assertEqual(reaction_rows(self.post).count(), 0)
        self.assertEqual(counter_total(self.post), 0)

    def test_switch_moves_one_count(self):
        react_to_post(self.post.id, self.other.id, 'like')
        react_to_post(self.post.id, self.user.id, 'like')

        result = react_to_post(self.post.id, self.user.id, 'angry')

        self.assertEqual(result.action, 'switched')
        self.assertEqual(result.previous_type, 'like')
        self.assertEqual(result.reaction_type, 'angry')

        self.post.refresh_from_db()
        self.assertEqual(self.post.like_count, 1)  # other's like untouched
        self.assertEqual(self.post.angry_count, 1)
        for field in ('love_count', 'care_count', 'haha_count', 'wow_count', 'sad_count'):
            self.assertEqual(getattr(self.post, field), 0)
        self.assertEqual(reaction_rows(self.post).count(), 2)

    def test_switch_keeps_single_row(self):
        react_to_post(self.post.id, self.user.id, 'like')
        react_to_post(self.post.id, self.user.id, 'wow')
        react_to_post(self.post.id, self.user.id, 'sad')

        rows = reaction_rows(self.post).filter(user=self.user)
        self.assertEqual(rows.count(), 1)
        self.assertEqual(rows.get().reaction_type, 'sad')
        self.assertEqual(counter_total(self.post), 1)

    def test_primary_action_always_removes(self):
        """The main button removes the reaction whatever type it sends."""
        react_to_post(self.post.id, self.user.id, 'love')
        result = react_to_post(self.post.id, self.user.id, 'like', is_primary_action=True)

        self.assertEqual(result.action, 'removed')
        self.assertEqual(result.previous_type, 'love')
        self.post.refresh_from_db()
        self.assertEqual(self.post.love_count, 0)
        self.assertEqual(self.post.like_count, 0)

    def test_primary_action_without_reaction_creates(self):
        result = react_to_post(self.post.id, self.user.id, 'like', is_primary_action=True)

        self.assertEqual(result.action, 'created')
        self.assertEqual(result.reaction_type, 'like')

    def test_comment_uses_same_state_machine(self):
        first = react_to_comment(self.comment.id, self.user.id, 'care')
        second = react_to_comment(self.comment.id, self.user.id, 'wow')
        third = react_to_comment(self.comment.id, self.user.id, 'wow')

        self.assertEqual([first.action, second.action, third.action], ['created', 'switched', 'removed'])
        self.assertEqual(counter_total(self.comment), 0)
        self.assertEqual(reaction_rows(self.comment).count(), 0)

    def test_post_and_comment_reactions_are_independent(self):
        react_to_post(self.post.id, self.user.id, 'like')
        react_to_comment(self.comment.id, self.user.id, 'like')

        self.assertEqual(counter_total(self.post), 1)
        self.assertEqual(counter_total(self.comment), 1)

    def test_counters_match_rows_after_many_toggles(self):
        users = [self.user, self.other, self.author]
        sequence = ['like', 'love', 'love', 'haha', 'like', 'angry', 'angry', 'sad']
        for i, reaction_type in enumerate(sequence):
            react_to_post(self.post.id, users[i % 3].id, reaction_type)

        self.post.refresh_from_db()
        rows = reaction_rows(self.post)
        self.assertEqual(counter_total(self.post), rows.count())
        for reaction_type in REACTION_TYPES:
            self.assertEqual(
                getattr(self.post, f'{reaction_type}_count'),
                rows.filter(reaction_type=reaction_type).count(),
            )
        self.assertLessEqual(rows.values('user').distinct().count(), len(users))

    def test_missing_entity_returns_not_found(self):
        result = toggle_reaction('post', 999999, self.user.id, 'like')

        self.assertFalse(result.success)
        self.assertTrue(result.not_found)
        self.assertIsNone(result.entity)
        self.assertEqual(Reaction.objects.count(), 0)

    def test_deleted_comment_returns_not_found(self):
        comment_id = self.comment.id
        self.comment.delete()

        result = react_to_comment(comment_id, self.user.id, 'like')
        self.assertTrue(result.not_found)

    def test_invalid_input_rejected(self):
        with self.assertRaises(ReactionValidationError):
            toggle_reaction('post', self.post.id, self.user.id, 'dislike')
        with self.assertRaises(ReactionValidationError):
            toggle_reaction('video', self.post.id, self.user.id, 'like')
        with self.assertRaises(ReactionValidationError):
            toggle_reaction('post', 0, self.user.id, 'like')
        with self.assertRaises(ReactionValidationError):
            toggle_reaction('post', self.post.id, None, 'like')

        self.assertEqual(Reaction.objects.count(), 0)


class ReactionRetryTestCase(TestCase):
    """A unique-constraint collision is retried once, then reported."""

    def setUp(self):
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.post = Post.objects.create(author=self.user, content='Hello')

    def test_unique_violation_retried_once(self):
        real_apply = services._apply_toggle
        calls = []

        def collide_once(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise IntegrityError('UNIQUE constraint failed: feed_reaction.user_id')
            return real_apply(*args, **kwargs)

        with patch('feed.services._apply_toggle', side_effect=collide_once):
            result = react_to_post(self.post.id, self.user.id, 'like')

        self.assertEqual(len(calls), 2)
        self.assertEqual(result.action, 'created')
        self.assertEqual(counter_total(self.post), 1)

    def test_second_collision_raises_conflict(self):
        collision = IntegrityError('UNIQUE constraint failed: feed_reaction.user_id')

        with patch('feed.services._apply_toggle', side_effect=collision) as apply_toggle:
            with self.assertRaises(ReactionConflictError):
                react_to_post(self.post.id, self.user.id, 'like')

        self.assertEqual(apply_toggle.call_count, services.MAX_TOGGLE_ATTEMPTS)
        self.assertEqual(counter_total(self.post), 0)

    def test_other_integrity_errors_not_retried(self):
        failure = IntegrityError('NOT NULL constraint failed: feed_reaction.user_id')

        with patch('feed.services._apply_toggle', side_effect=failure) as apply_toggle:
            with self.assertRaises(IntegrityError):
                react_to_post(self.post.id, self.user.id, 'like')

        self.assertEqual(apply_toggle.call_count, 1)

    def test_stale_reaction_row_retried(self):
        real_apply = services._apply_toggle
        calls = []

        def stale_once(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise services._StaleReaction()
            return real_apply(*args, **kwargs)

        react_to_post(self.post.id, self.user.id, 'like')
        with patch('feed.services._apply_toggle', side_effect=stale_once):
            result = react_to_post(self.post.id, self.user.id, 'love')

        self.assertEqual(result.action, 'switched')
        self.post.refresh_from_db()
        self.assertEqual(self.post.like_count, 0)
        self.assertEqual(self.post.love_count, 1)


class ReactionConcurrencyTestCase(TransactionTestCase):
    """
    Test concurrent toggles from real threads.

    Each thread gets its own connection; the file-backed test database
    is shared between them.
    """

    def setUp(self):
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.users = [
            User.objects.create_user(f'user{i}', f'u{i}@test.com', 'pass')
            for i in range(4)
        ]
        self.post = Post.objects.create(author=self.author, content='Race me')

    def _run_concurrently(self, calls):
        errors = []
        barrier = threading.Barrier(len(calls))

        def worker(call):
            try:
                barrier.wait()
                call()
            except Exception as exc:
                errors.append(exc)
            finally:
                connection.close()

        threads = [threading.Thread(target=worker, args=(call,)) for call in calls]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return errors

    def test_concurrent_first_reactions_all_counted(self):
        calls = [
            (lambda user_id=user.id: react_to_post(self.post.id, user_id, 'like'))
            for user in self.users
        ]
        errors = self._run_concurrently(calls)

        self.assertEqual(errors, [])
        self.post.refresh_from_db()
        self.assertEqual(self.post.like_count, len(self.users))
        self.assertEqual(reaction_rows(self.post).count(), len(self.users))

    def test_concurrent_toggles_by_same_user_stay_consistent(self):
        user_id = self.users[0].id
        calls = [
            lambda: react_to_post(self.post.id, user_id, 'like'),
            lambda: react_to_post(self.post.id, user_id, 'love'),
        ]
        errors = self._run_concurrently(calls)

        self.assertEqual(errors, [])
        rows = reaction_rows(self.post)
        self.assertLessEqual(rows.count(), 1)
        self.assertEqual(counter_total(self.post), rows.count())


class CommentTreeTestCase(TestCase):
    """
    Test comment tree building.

    CRITICAL: Verify N+1 prevention.
    """

    def setUp(self):
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.post = Post.objects.create(author=self.user, content='Content ' * 10)

    def test_tree_building_single_level(self):
        """Flat comments should be returned as separate trees."""
        c1 = Comment.objects.create(post=self.post, author=self.user, content='Comment 1')
        c2 = Comment.objects.create(post=self.post, author=self.user, content='Comment 2')

        tree = build_comment_tree(get_all_comments_for_post(self.post.id))

        self.assertEqual(len(tree), 2)
        self.assertEqual(tree[0]['comment'].id, c1.id)
        self.assertEqual(tree[1]['comment'].id, c2.id)

    def test_tree_building_nested(self):
        """Nested comments should be in replies array."""
        c1 = create_comment(self.user.id, self.post.id, content='Comment 1')
        c2 = create_comment(self.user.id, self.post.id, content='Reply to 1', parent_id=c1.id)
        c3 = create_comment(self.user.id, self.post.id, content='Reply to reply', parent_id=c2.id)

        tree = build_comment_tree(get_all_comments_for_post(self.post.id))

        self.assertEqual(len(tree), 1)
        self.assertEqual(tree[0]['comment'].id, c1.id)
        self.assertEqual(tree[0]['replies'][0]['comment'].id, c2.id)
        self.assertEqual(tree[0]['replies'][0]['replies'][0]['comment'].id, c3.id)
        self.assertEqual(c3.depth, 2)

    def test_no_n_plus_one_queries(self):
        """Loading 50 comments must NOT cause 50 queries."""
        parent = None
        for i in range(50):
            if i % 5 == 0:
                parent = Comment.objects.create(post=self.post, author=self.user, content=f'Comment {i}')
            else:
                Comment.objects.create(
                    post=self.post, author=self.user, content=f'Reply {i}', parent=parent, depth=1
                )
        viewer = User.objects.create_user('viewer', 'v@test.com', 'pass')
        react_to_comment(parent.id, viewer.id, 'love')

        with CaptureQueriesContext(connection) as context:
            result = get_post_with_comment_tree(self.post.id, viewer.id)

        self.assertLessEqual(
            len(context), 4,
            f"Expected ≤4 queries, got {len(context)}. Queries: {[q['sql'][:100] for q in context]}"
        )
        self.assertEqual(result['comment_count'], 50)
        self.assertEqual(result['post'].comment_count, 50)

        reacted = [
            node['comment'] for node in result['comments'] if node['comment'].id == parent.id
        ]
        self.assertEqual(reacted[0].my_reaction, 'love')

    def test_missing_post(self):
        self.assertIsNone(get_post_with_comment_tree(999999))


class PostAndCommentCreationTestCase(TestCase):

    def setUp(self):
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')

    def test_profile_created_for_new_user(self):
        self.assertTrue(self.user.profile.avatar_background_color.startswith('#'))

    def test_create_post_returns_feed_shape(self):
        post = create_post(self.user.id, content='  hello  ')

        self.assertEqual(post.content, 'hello')
        self.assertEqual(post.images, [])
        self.assertEqual(post.share_count, 0)
        self.assertFalse(post.is_saved)
        self.assertIsNone(post.my_reaction)

    def test_images_only_post_allowed(self):
        image = {'src': 'https://example.com/a.png', 'width': 100, 'height': 50}
        post = create_post(self.user.id, content='', images=[image])

        self.assertEqual(post.images, [image])

    def test_text_required_when_images_empty(self):
        with self.assertRaises(FeedValidationError):
            create_post(self.user.id, content='   ', images=[])

    def test_bad_image_rejected(self):
        with self.assertRaises(FeedValidationError):
            create_post(self.user.id, content='x', images=[{'src': 'a.png', 'width': 0, 'height': 1}])

    def test_comment_count_maintained(self):
        post = create_post(self.user.id, content='post')
        comment = create_comment(self.user.id, post.id, content='one')
        create_comment(self.user.id, post.id, content='two', parent_id=comment.id)

        post.refresh_from_db()
        self.assertEqual(post.comment_count, 2)

        Comment.objects.get(pk=comment.pk).delete()  # cascades to the reply
        post.refresh_from_db()
        self.assertEqual(post.comment_count, 0)

    def test_comment_on_missing_post(self):
        self.assertIsNone(create_comment(self.user.id, 999999, content='hello?'))

    def test_parent_must_belong_to_post(self):
        post_a = create_post(self.user.id, content='a')
        post_b = create_post(self.user.id, content='b')
        comment = create_comment(self.user.id, post_a.id, content='on a')

        with self.assertRaises(FeedValidationError):
            create_comment(self.user.id, post_b.id, content='on b', parent_id=comment.id)

    def test_max_depth_enforced(self):
        post = create_post(self.user.id, content='deep')
        parent = create_comment(self.user.id, post.id, content='0')
        for i in range(MAX_COMMENT_DEPTH):
            parent = create_comment(self.user.id, post.id, content=str(i + 1), parent_id=parent.id)
        self.assertEqual(parent.depth, MAX_COMMENT_DEPTH)

        with self.assertRaises(FeedValidationError):
            create_comment(self.user.id, post.id, content='too deep', parent_id=parent.id)


class ShareAndSaveTestCase(TestCase):

    def setUp(self):
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.post = Post.objects.create(author=self.user, content='Share me')

    def test_share_is_idempotent(self):
        first = share_post(self.post.id, self.user.id)
        second = share_post(self.post.id, self.user.id)

        self.assertTrue(first.is_shared)
        self.assertEqual(second.share_count, 1)
        self.assertEqual(Share.objects.count(), 1)

    def test_save_toggles(self):
        saved = toggle_save(self.post.id, self.user.id)
        self.assertTrue(saved.is_saved)
        self.assertEqual(saved.save_count, 1)

        unsaved = toggle_save(self.post.id, self.user.id)
        self.assertFalse(unsaved.is_saved)
        self.assertEqual(Save.objects.count(), 0)

    def test_missing_post(self):
        self.assertIsNone(share_post(999999, self.user.id))
        self.assertIsNone(toggle_save(999999, self.user.id))


class PaginationTestCase(TestCase):

    def setUp(self):
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.posts = [
            Post.objects.create(author=self.user, content=f'Post {i}') for i in range(25)
        ]
        self.newest_first = [post.id for post in reversed(self.posts)]

    def test_first_page_newest_first(self):
        page = get_feed_page(None, limit=10)

        self.assertEqual([post.id for post in page.items], self.newest_first[:10])
        self.assertTrue(page.has_more)
        self.assertEqual(page.next_cursor, self.newest_first[9])

    def test_cursor_continues_after_last_seen(self):
        seen = []
        cursor = None
        while True:
            page = get_feed_page(None, cursor=cursor, limit=10)
            seen.extend(post.id for post in page.items)
            if not page.has_more:
                break
            cursor = page.next_cursor

        self.assertEqual(seen, self.newest_first)

    def test_short_page_has_no_more(self):
        page = get_feed_page(None, cursor=self.newest_first[19], limit=10)

        self.assertEqual(len(page.items), 5)
        self.assertFalse(page.has_more)
        self.assertIsNone(page.next_cursor)

    def test_exact_multiple_of_page_size(self):
        """A full last page still reports has_more; the page after it is empty."""
        Post.objects.filter(pk__in=[post.pk for post in self.posts[:5]]).delete()

        first = get_feed_page(None, limit=10)
        second = get_feed_page(None, cursor=first.next_cursor, limit=10)
        third = get_feed_page(None, cursor=second.next_cursor, limit=10)

        self.assertEqual(len(first.items), 10)
        self.assertEqual(len(second.items), 10)
        self.assertTrue(second.has_more)
        self.assertEqual(second.next_cursor, self.newest_first[19])
        self.assertEqual(third.items, [])
        self.assertFalse(third.has_more)
        self.assertIsNone(third.next_cursor)

    def test_unknown_cursor_gives_empty_page(self):
        page = paginate_after(Post.objects.all(), cursor=999999)

        self.assertEqual(page.items, [])
        self.assertFalse(page.has_more)

    def test_reactor_page_filters_by_type(self):
        others = [
            User.objects.create_user(f'other{i}', f'o{i}@test.com', 'pass') for i in range(3)
        ]
        post = self.posts[0]
        react_to_post(post.id, others[0].id, 'like')
        react_to_post(post.id, others[1].id, 'love')
        react_to_post(post.id, others[2].id, 'like')

        all_page = get_reactor_page('post', post.id, 'all')
        like_page = get_reactor_page('post', post.id, 'like')

        self.assertEqual(len(all_page.items), 3)
        self.assertEqual(
            [reaction.user_id for reaction in like_page.items], [others[2].id, others[0].id]
        )


@override_settings(CACHES=LOCMEM_CACHE)
class CacheInvalidationTestCase(TestCase):
    """Cached reads are invalidated when a mutation commits."""

    def setUp(self):
        from django.core.cache import cache
        cache.clear()
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.post = Post.objects.create(author=self.user, content='Cached')

    def test_cached_page_served_until_tag_bumped(self):
        first = get_feed_page(None)
        Post.objects.create(author=self.user, content='Sneaky')  # bypasses services

        self.assertEqual(len(get_feed_page(None).items), len(first.items))

        feed_cache.invalidate(feed_cache.POSTS)
        self.assertEqual(len(get_feed_page(None).items), len(first.items) + 1)

    def test_toggle_invalidates_feed_on_commit(self):
        self.assertEqual(get_feed_page(None).items[0].like_count, 0)

        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            react_to_post(self.post.id, self.user.id, 'like')

        self.assertEqual(len(callbacks), 1)
        self.assertEqual(get_feed_page(None).items[0].like_count, 1)

    def test_reactor_list_invalidated_by_toggle(self):
        self.assertEqual(get_reactor_page('post', self.post.id).items, [])

        with self.captureOnCommitCallbacks(execute=True):
            react_to_post(self.post.id, self.user.id, 'wow')

        self.assertEqual(len(get_reactor_page('post', self.post.id).items), 1)

    def test_not_found_toggle_invalidates_nothing(self):
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            toggle_reaction('post', 999999, self.user.id, 'like')

        self.assertEqual(callbacks, [])

    def tag_versions(self, *tags):
        return {tag: feed_cache.tag_version(tag) for tag in tags}

    def assertBumped(self, before, after, tags):
        for tag in before:
            expected = before[tag] + 1 if tag in tags else before[tag]
            self.assertEqual(after[tag], expected, f'tag {tag!r}')

    def test_comment_toggle_invalidates_comment_reads(self):
        comment = Comment.objects.create(post=self.post, author=self.user, content='Hi')
        entity_tag = feed_cache.entity_reactions_tag('comment', comment.id)
        all_tags = (
            feed_cache.POSTS, feed_cache.COMMENTS, feed_cache.POST_REACTIONS,
            feed_cache.COMMENT_REACTIONS, entity_tag,
        )
        self.assertEqual(get_comment_page(self.post.id, None).items[0].like_count, 0)
        self.assertEqual(get_reactor_page('comment', comment.id).items, [])
        before = self.tag_versions(*all_tags)

        with self.captureOnCommitCallbacks(execute=True):
            react_to_comment(comment.id, self.user.id, 'like')

        self.assertBumped(
            before, self.tag_versions(*all_tags),
            {feed_cache.COMMENTS, feed_cache.COMMENT_REACTIONS, entity_tag},
        )
        self.assertEqual(get_comment_page(self.post.id, None).items[0].like_count, 1)
        self.assertEqual(len(get_reactor_page('comment', comment.id).items), 1)

    def test_create_comment_invalidates_comments_and_posts(self):
        all_tags = (feed_cache.POSTS, feed_cache.COMMENTS, feed_cache.SHARES, feed_cache.SAVES)
        self.assertEqual(get_comment_page(self.post.id, None).items, [])
        self.assertEqual(get_feed_page(None).items[0].comment_count, 0)
        before = self.tag_versions(*all_tags)

        with self.captureOnCommitCallbacks(execute=True):
            create_comment(self.user.id, self.post.id, content='Fresh')

        self.assertBumped(before, self.tag_versions(*all_tags), {feed_cache.POSTS, feed_cache.COMMENTS})
        self.assertEqual(len(get_comment_page(self.post.id, None).items), 1)
        self.assertEqual(get_feed_page(None).items[0].comment_count, 1)

    def test_first_share_invalidates_posts_and_shares(self):
        all_tags = (feed_cache.POSTS, feed_cache.SHARES, feed_cache.SAVES)
        self.assertEqual(get_share_page(self.post.id).items, [])
        self.assertEqual(get_feed_page(self.user.id).items[0].share_count, 0)
        before = self.tag_versions(*all_tags)

        with self.captureOnCommitCallbacks(execute=True):
            share_post(self.post.id, self.user.id)

        after = self.tag_versions(*all_tags)
        self.assertBumped(before, after, {feed_cache.POSTS, feed_cache.SHARES})
        self.assertEqual(len(get_share_page(self.post.id).items), 1)
        self.assertTrue(get_feed_page(self.user.id).items[0].is_shared)

        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            share_post(self.post.id, self.user.id)

        self.assertEqual(callbacks, [])
        self.assertEqual(self.tag_versions(*all_tags), after)

    def test_toggle_save_invalidates_posts_and_saves(self):
        all_tags = (feed_cache.POSTS, feed_cache.SHARES, feed_cache.SAVES)
        self.assertEqual(get_save_page(self.post.id).items, [])
        self.assertFalse(get_feed_page(self.user.id).items[0].is_saved)
        before = self.tag_versions(*all_tags)

        with self.captureOnCommitCallbacks(execute=True):
            toggle_save(self.post.id, self.user.id)

        after = self.tag_versions(*all_tags)
        self.assertBumped(before, after, {feed_cache.POSTS, feed_cache.SAVES})
        self.assertEqual(len(get_save_page(self.post.id).items), 1)
        self.assertTrue(get_feed_page(self.user.id).items[0].is_saved)

        with self.captureOnCommitCallbacks(execute=True):
            toggle_save(self.post.id, self.user.id)

        self.assertBumped(after, self.tag_versions(*all_tags), {feed_cache.POSTS, feed_cache.SAVES})
        self.assertEqual(get_save_page(self.post.id).items, [])
        self.assertFalse(get_feed_page(self.user.id).items[0].is_saved)

    def test_user_deletion_invalidates_reaction_reads(self):
        reactor = User.objects.create_user('reactor', 'r@test.com', 'pass')
        react_to_post(self.post.id, reactor.id, 'love')
        self.assertEqual(get_feed_page(None).items[0].love_count, 1)
        self.assertEqual(len(get_reactor_page('post', self.post.id).items), 1)

        with self.captureOnCommitCallbacks(execute=True):
            reactor.delete()

        self.assertEqual(get_feed_page(None).items[0].love_count, 0)
        self.assertEqual(get_reactor_page('post', self.post.id).items, [])


class UserDeletionTestCase(TestCase):
    """Deleting a user takes their reactions off the counters."""

    def setUp(self):
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.other = User.objects.create_user('other', 'o@test.com', 'pass')
        self.post = Post.objects.create(author=self.author, content='Stay')
        self.comment = Comment.objects.create(post=self.post, author=self.author, content='Here')

    def test_deleted_users_reactions_released(self):
        react_to_post(self.post.id, self.user.id, 'love')
        react_to_post(self.post.id, self.other.id, 'like')
        react_to_comment(self.comment.id, self.user.id, 'haha')

        self.user.delete()

        self.post.refresh_from_db()
        self.assertEqual(self.post.love_count, 0)
        self.assertEqual(self.post.like_count, 1)
        self.assertEqual(counter_total(self.post), reaction_rows(self.post).count())
        self.assertEqual(counter_total(self.comment), 0)
        self.assertEqual(reaction_rows(self.comment).count(), 0)

    def test_queryset_delete_releases_once(self):
        react_to_post(self.post.id, self.user.id, 'wow')
        react_to_post(self.post.id, self.other.id, 'wow')

        User.objects.filter(pk=self.user.pk).delete()

        self.post.refresh_from_db()
        self.assertEqual(self.post.wow_count, 1)
        self.assertEqual(reaction_rows(self.post).count(), 1)

    def test_deleting_author_with_reacted_content(self):
        """The author's own posts go away with them; other counters stay exact."""
        other_post = Post.objects.create(author=self.other, content='Elsewhere')
        react_to_post(self.post.id, self.other.id, 'like')
        react_to_post(other_post.id, self.author.id, 'care')

        self.author.delete()

        self.assertFalse(Post.objects.filter(pk=self.post.pk).exists())
        self.assertEqual(Reaction.objects.count(), 0)
        self.assertEqual(counter_total(other_post), 0)

    def test_release_without_reactions(self):
        self.assertEqual(release_user_reactions(self.user.id), 0)


class ReconciliationTestCase(TestCase):

    def setUp(self):
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.post = Post.objects.create(author=self.user, content='Drifty')

    def test_consistent_counters_untouched(self):
        react_to_post(self.post.id, self.user.id, 'like')

        self.assertEqual(recount_reactions('post', self.post.id), {})

    def test_drift_repaired(self):
        react_to_post(self.post.id, self.user.id, 'like')
        Post.objects.filter(pk=self.post.pk).update(like_count=7, sad_count=2)

        drift = recount_reactions('post', self.post.id)

        self.assertEqual(drift, {'like_count': (7, 1), 'sad_count': (2, 0)})
        self.post.refresh_from_db()
        self.assertEqual(self.post.like_count, 1)
        self.assertEqual(self.post.sad_count, 0)

    def test_missing_entity(self):
        self.assertIsNone(recount_reactions('comment', 999999))

    def test_management_command_reports_repairs(self):
        Post.objects.filter(pk=self.post.pk).update(haha_count=3)
        out = StringIO()

        call_command('reconcile_reaction_counts', '--target', 'post', stdout=out)

        self.assertIn('repaired 1', out.getvalue())
        self.post.refresh_from_db()
        self.assertEqual(self.post.haha_count, 0)


class ReactionApiTestCase(APITestCase):

    def setUp(self):
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.post = Post.objects.create(author=self.user, content='API post')
        self.comment = Comment.objects.create(post=self.post, author=self.user, content='API comment')
        self.client.force_authenticate(self.user)

    def test_react_to_post(self):
        response = self.client.post(
            f'/api/posts/{self.post.id}/react/', {'reaction_type': 'love'}, format='json'
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['action'], 'created')
        self.assertEqual(response.data['entity']['love_count'], 1)
        self.assertEqual(response.data['entity']['my_reaction'], 'love')
        self.assertEqual(response.data['entity']['reaction_counts'], [{'type': 'love', 'count': 1}])

    def test_react_to_comment_via_unified_endpoint(self):
        response = self.client.post('/api/reactions/toggle/', {
            'target_type': 'comment',
            'target_id': self.comment.id,
            'reaction_type': 'haha',
        }, format='json')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['entity']['haha_count'], 1)
        self.assertEqual(response.data['entity']['id'], self.comment.id)

    def test_missing_post_is_404(self):
        response = self.client.post('/api/posts/999999/react/', {'reaction_type': 'like'}, format='json')

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data['error'], NOT_FOUND_MESSAGE)

    def test_unknown_reaction_type_is_400(self):
        response = self.client.post(
            f'/api/posts/{self.post.id}/react/', {'reaction_type': 'meh'}, format='json'
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(Reaction.objects.count(), 0)

    def test_conflict_is_409(self):
        collision = IntegrityError('UNIQUE constraint failed: feed_reaction.user_id')
        with patch('feed.services._apply_toggle', side_effect=collision):
            response = self.client.post(
                f'/api/posts/{self.post.id}/react/', {'reaction_type': 'like'}, format='json'
            )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data['error'], TRANSIENT_ERROR_MESSAGE)

    def test_anonymous_cannot_react(self):
        self.client.force_authenticate(None)
        response = self.client.post(f'/api/posts/{self.post.id}/react/', {}, format='json')

        self.assertIn(response.status_code, (401, 403))

    def test_reactor_list(self):
        react_to_post(self.post.id, self.user.id, 'sad')

        response = self.client.get(f'/api/posts/{self.post.id}/reactions/?type=sad')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data['results']), 1)
        self.assertEqual(response.data['results'][0]['user']['id'], self.user.id)
        self.assertFalse(response.data['has_more'])


class FeedApiTestCase(APITestCase):

    def setUp(self):
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        for i in range(12):
            Post.objects.create(author=self.user, content=f'Post {i}')

    def test_feed_shape(self):
        response = self.client.get('/api/feed/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data['results']), 10)
        self.assertTrue(response.data['has_more'])
        self.assertEqual(response.data['next_cursor'], response.data['results'][-1]['id'])
        self.assertIn('author', response.data['results'][0])
        self.assertIn('is_saved', response.data['results'][0])

    def test_feed_cursor(self):
        first = self.client.get('/api/feed/').data
        second = self.client.get(f"/api/feed/?cursor={first['next_cursor']}").data

        self.assertEqual(len(second['results']), 2)
        self.assertFalse(second['has_more'])
        self.assertIsNone(second['next_cursor'])

    def test_bad_cursor_is_400(self):
        response = self.client.get('/api/feed/?cursor=abc')

        self.assertEqual(response.status_code, 400)

    def test_create_post_and_comment(self):
        self.client.force_authenticate(self.user)

        post = self.client.post('/api/posts/', {'content': 'New post'}, format='json')
        self.assertEqual(post.status_code, 201)

        comment = self.client.post(
            f"/api/posts/{post.data['id']}/comments/", {'content': 'Nice'}, format='json'
        )
        self.assertEqual(comment.status_code, 201)
        self.assertEqual(comment.data['depth'], 0)

        detail = self.client.get(f"/api/posts/{post.data['id']}/")
        self.assertEqual(detail.data['comment_count'], 1)
        self.assertEqual(detail.data['comments'][0]['comment']['content'], 'Nice')

    def test_empty_post_is_400(self):
        self.client.force_authenticate(self.user)
        response = self.client.post('/api/posts/', {'content': ''}, format='json')

        self.assertEqual(response.status_code, 400)

    def test_share_and_save_endpoints(self):
        self.client.force_authenticate(self.user)
        post = Post.objects.first()

        shared = self.client.post(f'/api/posts/{post.id}/share/')
        saved = self.client.post(f'/api/posts/{post.id}/save/')
        shares = self.client.get(f'/api/posts/{post.id}/shares/')

        self.assertTrue(shared.data['is_shared'])
        self.assertTrue(saved.data['is_saved'])
        self.assertEqual(len(shares.data['results']), 1)


class AuthApiTestCase(APITestCase):

    def test_sign_up_logs_in(self):
        response = self.client.post('/api/auth/sign-up/', {
            'full_name': 'Ada Lovelace',
            'email': 'Ada@Example.com',
            'password': 'analytical',
        }, format='json')

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['username'], 'ada@example.com')
        self.assertEqual(response.data['full_name'], 'Ada Lovelace')

        whoami = self.client.get('/api/auth/whoami/')
        self.assertTrue(whoami.data['authenticated'])

    def test_duplicate_email_rejected(self):
        User.objects.create_user('ada@example.com', 'ada@example.com', 'analytical')

        response = self.client.post('/api/auth/sign-up/', {
            'email': 'ada@example.com',
            'password': 'analytical',
        }, format='json')

        self.assertEqual(response.status_code, 400)
        self.assertIn('Email already exists', str(response.data))

    def test_login_and_logout(self):
        User.objects.create_user('ada@example.com', 'ada@example.com', 'analytical')

        bad = self.client.post('/api/auth/login/', {
            'email': 'ada@example.com', 'password': 'wrong-password'
        }, format='json')
        self.assertEqual(bad.status_code, 400)

        good = self.client.post('/api/auth/login/', {
            'email': 'ada@example.com', 'password': 'analytical'
        }, format='json')
        self.assertEqual(good.status_code, 200)

        self.client.post('/api/auth/logout/')
        self.assertFalse(self.client.get('/api/auth/whoami/').data['authenticated'])
