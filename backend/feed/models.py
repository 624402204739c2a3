"""
Data Models for SocialFeed
==========================

Design Philosophy:
------------------
1. Posts and Comments are both "reactable": they share an abstract base
   with one denormalized counter per reaction type.
   - Counters are only ever changed by services.toggle_reaction (and the
     reconciliation command), always with F() expressions in SQL.

2. Reactions use a polymorphic approach via ContentType
   - One table for post and comment reactions, so the toggle state
     machine is written once and parameterized by model
   - Unique constraint (user, content_type, object_id) is the
     one-reaction-per-user invariant, enforced at DB level

3. Comments use Adjacency List pattern (parent_id FK)
   - Whole tree for a post is fetched in one query and assembled in Python

4. Shares and Saves are plain (user, post) link tables, unique per pair.

Indexes Strategy:
-----------------
- post.created_at: feed ordering, last-seen-id pagination
- comment.post_id + comment.parent_id + comment.created_at: comment pages
- reaction.content_type + reaction.object_id + reaction.created_at: reactor lists
"""

from django.contrib.auth.models import User
from django.contrib.contenttypes.fields import GenericForeignKey, GenericRelation
from django.contrib.contenttypes.models import ContentType
from django.db import models
from django.utils import timezone


class ReactionType(models.TextChoices):
    LIKE = 'like', 'Like'
    LOVE = 'love', 'Love'
    CARE = 'care', 'Care'
    HAHA = 'haha', 'Haha'
    WOW = 'wow', 'Wow'
    SAD = 'sad', 'Sad'
    ANGRY = 'angry', 'Angry'


REACTION_TYPES = tuple(ReactionType.values)


def counter_field(reaction_type: str) -> str:
    """Name of the counter column holding the count for ``reaction_type``."""
    return f'{reaction_type}_count'


COUNTER_FIELDS = tuple(counter_field(t) for t in REACTION_TYPES)


class ReactableModel(models.Model):
    """
    Abstract base for anything users can react to.

    The seven counters must always equal the number of Reaction rows of
    the matching type pointing at this row.
    """
    like_count = models.PositiveIntegerField(default=0)
    love_count = models.PositiveIntegerField(default=0)
    care_count = models.PositiveIntegerField(default=0)
    haha_count = models.PositiveIntegerField(default=0)
    wow_count = models.PositiveIntegerField(default=0)
    sad_count = models.PositiveIntegerField(default=0)
    angry_count = models.PositiveIntegerField(default=0)

    reactions = GenericRelation('feed.Reaction')

    class Meta:
        abstract = True

    def reaction_counts(self) -> dict[str, int]:
        return {t: getattr(self, counter_field(t)) for t in REACTION_TYPES}

    @property
    def reaction_total(self) -> int:
        return sum(self.reaction_counts().values())


class Profile(models.Model):
    """Display data kept next to Django's built-in User."""
    user = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        related_name='profile'
    )
    full_name = models.CharField(max_length=100, blank=True)
    avatar_background_color = models.CharField(max_length=7, default='#3498db')

    def __str__(self):
        return self.full_name or self.user.username


class Post(ReactableModel):
    """
    A feed post: optional text plus already-hosted images.

    Images are stored as a list of {"src", "width", "height"} dicts.
    """
    author = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='posts',
        db_index=True
    )
    content = models.TextField(blank=True, default='')
    images = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True  # For feed ordering - critical for cursor pagination
    )
    updated_at = models.DateTimeField(auto_now=True)

    # Denormalized for display - updated via signals
    comment_count = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['-created_at', '-id'], name='post_created_id_idx'),
            models.Index(fields=['author', '-created_at'], name='post_author_created_idx'),
        ]

    def __str__(self):
        return f"Post {self.pk} by {self.author.username}"


class Comment(ReactableModel):
    """
    Threaded comment using Adjacency List pattern.

    Depth is stored so the reply limit can be checked without walking
    the ancestors.
    """
    post = models.ForeignKey(
        Post,
        on_delete=models.CASCADE,
        related_name='comments',
        db_index=True
    )
    author = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='comments'
    )
    parent = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='replies',
        db_index=True
    )
    content = models.TextField(blank=True, default='')
    images = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True
    )
    updated_at = models.DateTimeField(auto_now=True)
    depth = models.PositiveSmallIntegerField(default=0)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['post', 'parent', '-created_at'], name='comment_post_parent_idx'),
            models.Index(fields=['parent', '-created_at'], name='comment_parent_created_idx'),
        ]

    def __str__(self):
        return f"Comment by {self.author.username} on {self.post_id}"


class Reaction(models.Model):
    """
    One user's reaction to one post or comment.

    CONCURRENCY STRATEGY:
    - Unique constraint (user, content_type, object_id) enforced at DB level
    - Toggles run inside one transaction holding a row lock on the target
    - IntegrityError on insert means a concurrent request won: retried once
    """
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='reactions'
    )
    reaction_type = models.CharField(
        max_length=10,
        choices=ReactionType.choices
    )

    content_type = models.ForeignKey(
        ContentType,
        on_delete=models.CASCADE
    )
    object_id = models.PositiveBigIntegerField()
    content_object = GenericForeignKey('content_type', 'object_id')

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'content_type', 'object_id'],
                name='unique_reaction_per_user_per_object'
            ),
            models.CheckConstraint(
                condition=models.Q(reaction_type__in=REACTION_TYPES),
                name='reaction_type_is_known'
            ),
        ]
        indexes = [
            # Reactor lists, newest first
            models.Index(fields=['content_type', 'object_id', '-created_at'], name='reaction_target_created_idx'),
            # Reactor lists filtered by type
            models.Index(fields=['content_type', 'object_id', 'reaction_type'], name='reaction_target_type_idx'),
        ]

    def __str__(self):
        return f"{self.user.username} reacted {self.reaction_type} to {self.content_type.model} {self.object_id}"


class Share(models.Model):
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='shares'
    )
    post = models.ForeignKey(
        Post,
        on_delete=models.CASCADE,
        related_name='shares'
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'post'],
                name='unique_share_per_user_per_post'
            )
        ]
        indexes = [
            models.Index(fields=['post', '-created_at'], name='share_post_created_idx'),
        ]

    def __str__(self):
        return f"{self.user.username} shared post {self.post_id}"


class Save(models.Model):
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='saves'
    )
    post = models.ForeignKey(
        Post,
        on_delete=models.CASCADE,
        related_name='saves'
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'post'],
                name='unique_save_per_user_per_post'
            )
        ]
        indexes = [
            models.Index(fields=['post', '-created_at'], name='save_post_created_idx'),
        ]

    def __str__(self):
        return f"{self.user.username} saved post {self.post_id}"


# ============================================================================
# CONSTANTS
# ============================================================================
MAX_COMMENT_DEPTH = 10
MAX_CONTENT_LENGTH = 5000

# Avatar colours handed out at sign-up
AVATAR_COLORS = (
    '#3498db',
    '#2ecc71',
    '#f39c12',
    '#9b59b6',
    '#1abc9c',
    '#16a085',
    '#2980b9',
)

REACTABLE_MODELS = {
    'post': Post,
    'comment': Comment,
}
