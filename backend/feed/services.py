"""
Reaction Engine & Write Services
================================

This module handles every mutation of the feed:
1. Reaction toggles on posts and comments (the state machine below)
2. Post / comment creation
3. Shares and saves
4. Counter reconciliation

REACTION STATE MACHINE:
-----------------------
Per (user, entity) the state is NoReaction or Reacted(T):

    NoReaction  --react(X)-------------------------> Reacted(X)     counter[X] += 1
    Reacted(T)  --react(T) or primary button-------> NoReaction     counter[T] -= 1
    Reacted(T)  --react(X), X != T, from selector--> Reacted(X)     counter[T] -= 1, counter[X] += 1

The same function serves posts and comments; the entity model is a
parameter.

CONCURRENCY STRATEGY:
---------------------
Naive: read reaction -> compute -> write reaction -> write counter from
the value read earlier. Two concurrent toggles lose an update and the
counters drift away from the reaction rows.

Instead, one transaction per toggle:
- SELECT ... FOR UPDATE on the entity row serializes toggles per entity
- the reaction row is changed with a compare-and-swap on its current
  type (UPDATE/DELETE ... WHERE reaction_type = <type we read>)
- counters move with F() expressions in SQL, clamped at zero
- reaction and counter changes commit together or not at all

If the insert hits the unique constraint (another request created the
reaction first) or the compare-and-swap finds the row changed, the
transaction is rolled back and the whole transition is re-read and
re-applied once. A second failure is reported as ReactionConflictError.
"""

import logging
from typing import Literal, Optional

from django.contrib.contenttypes.models import ContentType
from django.db import IntegrityError, transaction
from django.db.models import Count, F
from django.db.models.functions import Greatest
from django.utils import timezone

from . import cache
from .exceptions import (
    FeedValidationError,
    ReactionConflictError,
    ReactionValidationError,
    is_unique_violation,
)
from .models import (
    MAX_COMMENT_DEPTH,
    MAX_CONTENT_LENGTH,
    REACTABLE_MODELS,
    REACTION_TYPES,
    Comment,
    Post,
    Reaction,
    Save,
    Share,
    counter_field,
)
from .queries import get_post, get_reactable

logger = logging.getLogger(__name__)

MAX_TOGGLE_ATTEMPTS = 2
MAX_IMAGES = 10

ReactionAction = Literal['created', 'removed', 'switched', 'not_found']
NOT_FOUND = 'not_found'


class ReactionResult:
    """Result of a reaction toggle."""
    def __init__(
        self,
        success: bool,
        action: ReactionAction,
        entity=None,
        reaction_type: Optional[str] = None,
        previous_type: Optional[str] = None,
    ):
        self.success = success
        self.action = action
        # Post/comment in the same shape as paginated reads; None if gone
        self.entity = entity
        # The caller's reaction after the toggle
        self.reaction_type = reaction_type
        self.previous_type = previous_type

    @property
    def not_found(self) -> bool:
        return self.action == 'not_found'

    def __repr__(self):
        return (
            f"ReactionResult(action={self.action!r}, reaction_type={self.reaction_type!r}, "
            f"previous_type={self.previous_type!r})"
        )


class _StaleReaction(Exception):
    """The reaction row changed between our read and our write."""


def _increment(reaction_type: str) -> dict:
    field = counter_field(reaction_type)
    return {field: F(field) + 1}


def _decrement(reaction_type: str) -> dict:
    field = counter_field(reaction_type)
    return {field: Greatest(F(field) - 1, 0)}


def _is_positive_id(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _validate_toggle(target_type, target_id, user_id, reaction_type) -> None:
    if target_type not in REACTABLE_MODELS:
        raise ReactionValidationError(f"Invalid target_type: {target_type}")
    if reaction_type not in REACTION_TYPES:
        raise ReactionValidationError(f"Invalid reaction type: {reaction_type}")
    if not _is_positive_id(target_id):
        raise ReactionValidationError("target_id must be a positive integer")
    if not _is_positive_id(user_id):
        raise ReactionValidationError("user_id must be a positive integer")


def _reaction_tags(target_type: str, target_id: int) -> tuple[str, ...]:
    if target_type == 'post':
        collection_tags = (cache.POSTS, cache.POST_REACTIONS)
    else:
        collection_tags = (cache.COMMENTS, cache.COMMENT_REACTIONS)
    return collection_tags + (cache.entity_reactions_tag(target_type, target_id),)


def _apply_toggle(target_type: str, target_id: int, user_id: int,
                  reaction_type: str, is_primary_action: bool) -> ReactionResult:
    """One attempt at the transition. Must run inside transaction.atomic()."""
    model = REACTABLE_MODELS[target_type]

    # Row lock on the entity: concurrent toggles on it queue up here
    locked = (
        model.objects
        .select_for_update()
        .filter(pk=target_id)
        .values_list('pk', flat=True)
        .first()
    )
    if locked is None:
        return ReactionResult(success=False, action=NOT_FOUND)

    content_type = ContentType.objects.get_for_model(model)
    current = (
        Reaction.objects
        .select_for_update()
        .filter(user_id=user_id, content_type=content_type, object_id=target_id)
        .values_list('pk', 'reaction_type')
        .first()
    )
    counters = model.objects.filter(pk=target_id)

    if current is None:
        Reaction.objects.create(
            user_id=user_id,
            content_type=content_type,
            object_id=target_id,
            reaction_type=reaction_type,
        )
        counters.update(**_increment(reaction_type))
        return ReactionResult(success=True, action='created', reaction_type=reaction_type)

    reaction_id, previous_type = current
    same_row = Reaction.objects.filter(pk=reaction_id, reaction_type=previous_type)

    if previous_type == reaction_type or is_primary_action:
        deleted, _ = same_row.delete()
        if not deleted:
            raise _StaleReaction()
        counters.update(**_decrement(previous_type))
        return ReactionResult(success=True, action='removed', previous_type=previous_type)

    updated = same_row.update(reaction_type=reaction_type, updated_at=timezone.now())
    if not updated:
        raise _StaleReaction()
    counters.update(**_decrement(previous_type), **_increment(reaction_type))
    return ReactionResult(
        success=True,
        action='switched',
        reaction_type=reaction_type,
        previous_type=previous_type,
    )


def toggle_reaction(
    target_type: str,
    target_id: int,
    user_id: int,
    reaction_type: str,
    is_primary_action: bool = False,
) -> ReactionResult:
    """
    Toggle ``user_id``'s reaction on a post or comment.

    ``is_primary_action`` is True for the main reaction button: it always
    removes an existing reaction, whatever ``reaction_type`` says. From the
    selector, picking the current type removes it and picking another
    type switches to it.

    RETURNS:
    - ReactionResult whose ``entity`` is the updated post/comment as the
      caller sees it, or action == 'not_found' (entity is None) when the
      post/comment no longer exists.

    RAISES:
    - ReactionValidationError before touching the database on bad input
    - ReactionConflictError when a concurrent toggle won twice in a row
    """
    _validate_toggle(target_type, target_id, user_id, reaction_type)

    for attempt in range(1, MAX_TOGGLE_ATTEMPTS + 1):
        try:
            with transaction.atomic():
                result = _apply_toggle(
                    target_type, target_id, user_id, reaction_type, is_primary_action
                )
                if result.success:
                    cache.invalidate_on_commit(*_reaction_tags(target_type, target_id))
                    # Re-read inside the transaction so the entity reflects
                    # exactly this transition
                    result.entity = get_reactable(target_type, target_id, user_id)
            break
        except (IntegrityError, _StaleReaction) as exc:
            if isinstance(exc, IntegrityError) and not is_unique_violation(exc):
                raise
            if attempt == MAX_TOGGLE_ATTEMPTS:
                raise ReactionConflictError(target_type, target_id, user_id) from exc
            logger.info(
                "Reaction toggle on %s %s by user %s raced a concurrent toggle; retrying",
                target_type, target_id, user_id,
            )

    if result.not_found:
        logger.info("Reaction toggle on missing %s %s by user %s", target_type, target_id, user_id)
    return result


def react_to_post(post_id: int, user_id: int, reaction_type: str,
                  is_primary_action: bool = False) -> ReactionResult:
    return toggle_reaction('post', post_id, user_id, reaction_type, is_primary_action)


def react_to_comment(comment_id: int, user_id: int, reaction_type: str,
                     is_primary_action: bool = False) -> ReactionResult:
    return toggle_reaction('comment', comment_id, user_id, reaction_type, is_primary_action)


def recount_reactions(target_type: str, target_id: int) -> Optional[dict]:
    """
    Recompute the seven counters of one post/comment from its reaction rows.

    Returns {counter_field: (stored, actual)} for every counter that had
    drifted (empty dict when consistent), or None if the entity is gone.
    """
    if target_type not in REACTABLE_MODELS:
        raise ReactionValidationError(f"Invalid target_type: {target_type}")
    model = REACTABLE_MODELS[target_type]
    content_type = ContentType.objects.get_for_model(model)

    with transaction.atomic():
        entity = model.objects.select_for_update().filter(pk=target_id).first()
        if entity is None:
            return None

        actual = dict(
            Reaction.objects
            .filter(content_type=content_type, object_id=target_id)
            .order_by()
            .values_list('reaction_type')
            .annotate(n=Count('pk'))
        )
        updates = {counter_field(t): actual.get(t, 0) for t in REACTION_TYPES}
        drift = {
            field: (getattr(entity, field), value)
            for field, value in updates.items()
            if getattr(entity, field) != value
        }
        if drift:
            model.objects.filter(pk=target_id).update(**updates)
            cache.invalidate_on_commit(*_reaction_tags(target_type, target_id))
            logger.warning("Repaired counter drift on %s %s: %s", target_type, target_id, drift)

    return drift


def release_user_reactions(user_id: int) -> int:
    """
    Take every reaction of ``user_id`` off its post/comment counters.

    Called right before the user's reaction rows are cascade-deleted, in
    the same transaction. Returns the number of reactions released.
    """
    by_content_type = {
        ContentType.objects.get_for_model(model).pk: (target_type, model)
        for target_type, model in REACTABLE_MODELS.items()
    }
    reactions = (
        Reaction.objects
        .filter(user_id=user_id)
        .values_list('content_type_id', 'object_id', 'reaction_type')
    )

    released = 0
    for content_type_id, object_id, reaction_type in reactions:
        target_type, model = by_content_type[content_type_id]
        model.objects.filter(pk=object_id).update(**_decrement(reaction_type))
        cache.invalidate_on_commit(*_reaction_tags(target_type, object_id))
        released += 1

    if released:
        logger.info("Released %s reactions of deleted user %s", released, user_id)
    return released


# ============================================================================
# POSTS & COMMENTS
# ============================================================================

def _clean_content(content: Optional[str]) -> str:
    content = (content or '').strip()
    if len(content) > MAX_CONTENT_LENGTH:
        raise FeedValidationError(f"Text must be at most {MAX_CONTENT_LENGTH} characters.")
    return content


def _clean_images(images) -> list[dict]:
    """
    Images arrive already hosted: [{"src": url, "width": px, "height": px}].
    """
    if images is None:
        return []
    if not isinstance(images, list):
        raise FeedValidationError("Images must be a list.")
    if len(images) > MAX_IMAGES:
        raise FeedValidationError(f"At most {MAX_IMAGES} images are allowed.")

    cleaned = []
    for image in images:
        if not isinstance(image, dict):
            raise FeedValidationError("Each image must be an object with src, width and height.")
        src = image.get('src')
        width = image.get('width')
        height = image.get('height')
        if not isinstance(src, str) or not src.strip():
            raise FeedValidationError("Image src is required.")
        if not _is_positive_id(width) or not _is_positive_id(height):
            raise FeedValidationError("Image width and height must be positive integers.")
        cleaned.append({'src': src.strip(), 'width': width, 'height': height})
    return cleaned


def _validate_body(content, images) -> tuple[str, list[dict]]:
    content = _clean_content(content)
    images = _clean_images(images)
    if not content and not images:
        raise FeedValidationError("Text is required when images are empty")
    return content, images


def create_post(author_id: int, content: Optional[str] = None, images=None) -> Post:
    """Create a post and return it in feed shape."""
    content, images = _validate_body(content, images)

    with transaction.atomic():
        post = Post.objects.create(author_id=author_id, content=content, images=images)
        cache.invalidate_on_commit(cache.POSTS)

    logger.info("User %s created post %s", author_id, post.pk)
    return get_post(post.pk, author_id)


def create_comment(author_id: int, post_id: int, content: Optional[str] = None,
                   images=None, parent_id: Optional[int] = None) -> Optional[Comment]:
    """
    Create a comment (or a reply when ``parent_id`` is given).

    Returns None when the post no longer exists.
    """
    content, images = _validate_body(content, images)

    with transaction.atomic():
        if not Post.objects.filter(pk=post_id).exists():
            return None

        depth = 0
        if parent_id is not None:
            parent = Comment.objects.filter(pk=parent_id).values('post_id', 'depth').first()
            if parent is None or parent['post_id'] != post_id:
                raise FeedValidationError("Parent comment must belong to the same post.")
            if parent['depth'] >= MAX_COMMENT_DEPTH:
                raise FeedValidationError(
                    f"Maximum reply depth ({MAX_COMMENT_DEPTH}) reached. Cannot nest deeper."
                )
            depth = parent['depth'] + 1

        comment = Comment.objects.create(
            post_id=post_id,
            author_id=author_id,
            parent_id=parent_id,
            content=content,
            images=images,
            depth=depth,
        )
        cache.invalidate_on_commit(cache.COMMENTS, cache.POSTS)

    return get_reactable('comment', comment.pk, author_id)


# ============================================================================
# SHARES & SAVES
# ============================================================================

def share_post(post_id: int, user_id: int) -> Optional[Post]:
    """
    Share a post. Sharing an already shared post is a no-op.

    Returns the post as the user sees it, or None if it no longer exists.
    """
    if not Post.objects.filter(pk=post_id).exists():
        return None

    try:
        with transaction.atomic():
            _, created = Share.objects.get_or_create(post_id=post_id, user_id=user_id)
            if created:
                cache.invalidate_on_commit(cache.POSTS, cache.SHARES)
    except IntegrityError as exc:
        # A concurrent request shared it first: same end state
        if not is_unique_violation(exc):
            raise

    return get_post(post_id, user_id)


def toggle_save(post_id: int, user_id: int) -> Optional[Post]:
    """
    Save the post if the user has not saved it, otherwise unsave it.

    Returns the post as the user sees it, or None if it no longer exists.
    """
    with transaction.atomic():
        locked = (
            Post.objects
            .select_for_update()
            .filter(pk=post_id)
            .values_list('pk', flat=True)
            .first()
        )
        if locked is None:
            return None

        deleted, _ = Save.objects.filter(post_id=post_id, user_id=user_id).delete()
        if not deleted:
            Save.objects.create(post_id=post_id, user_id=user_id)
        cache.invalidate_on_commit(cache.POSTS, cache.SAVES)

        return get_post(post_id, user_id)
