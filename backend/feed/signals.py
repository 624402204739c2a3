"""
Django Signals for maintaining denormalized data.

IMPORTANT: Signals do NOT fire on:
- bulk_create()
- bulk_update()
- QuerySet.update()

Reaction counters are changed with QuerySet.update(F(...)) inside the
reaction toggle transaction, so no signal touches them. The one exception
is user deletion: the user's reactions cascade away, so their counts are
released first (pre_delete runs inside the delete transaction).

QuerySet.delete() DOES send pre_delete/post_delete for every collected
row, cascades included.

These signals ARE used for:
- Comment creation/deletion (post.comment_count)
- User creation (profile with an avatar colour)
- User deletion (reaction counters)
"""

import random

from django.contrib.auth.models import User
from django.db.models import F
from django.db.models.functions import Greatest
from django.db.models.signals import post_delete, post_save, pre_delete
from django.dispatch import receiver

from .models import AVATAR_COLORS, Comment, Post, Profile
from .services import release_user_reactions


@receiver(post_save, sender=Comment)
def increment_comment_count(sender, instance, created, **kwargs):
    """When a new comment is created, increment the post's comment count."""
    if created:
        Post.objects.filter(id=instance.post_id).update(
            comment_count=F('comment_count') + 1
        )


@receiver(post_delete, sender=Comment)
def decrement_comment_count(sender, instance, **kwargs):
    """
    When a comment is deleted, decrement the post's comment count.

    Cascaded replies fire this once each, so the count stays exact.
    """
    Post.objects.filter(id=instance.post_id).update(
        comment_count=Greatest(F('comment_count') - 1, 0)
    )


@receiver(post_save, sender=User)
def create_profile(sender, instance, created, **kwargs):
    """Every user gets a profile with a random avatar background colour."""
    if created:
        Profile.objects.get_or_create(
            user=instance,
            defaults={'avatar_background_color': random.choice(AVATAR_COLORS)}
        )


@receiver(pre_delete, sender=User)
def release_reactions(sender, instance, **kwargs):
    """Decrement the counters of everything the user reacted to."""
    release_user_reactions(instance.pk)
