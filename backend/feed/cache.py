"""
Tag-based read cache
====================

Read paths (feed pages, comment pages, reactor lists...) are cached under
keys that embed the current version of every tag they depend on.
Invalidating a tag just bumps its version, so every key built with the
old version becomes unreachable and ages out on its own.

Mutations register their invalidations with transaction.on_commit():
nothing is invalidated for a rolled-back transaction, and readers may see
a stale page for the short window between commit and the bump.
"""

import logging
from typing import Callable, Iterable, TypeVar

from django.conf import settings
from django.core.cache import cache
from django.db import transaction

logger = logging.getLogger(__name__)

T = TypeVar('T')

KEY_PREFIX = 'feed'
TAG_VERSION_PREFIX = f'{KEY_PREFIX}:tag-version:'

# Tag names shared by services (writers) and queries (readers)
POSTS = 'posts'
COMMENTS = 'comments'
POST_REACTIONS = 'reactions'
COMMENT_REACTIONS = 'comment-reactions'
SHARES = 'shares'
SAVES = 'saves'


def entity_reactions_tag(target_type: str, target_id: int) -> str:
    return f'reactions:{target_type}:{target_id}'


def _version_key(tag: str) -> str:
    return f'{TAG_VERSION_PREFIX}{tag}'


def tag_version(tag: str) -> int:
    key = _version_key(tag)
    version = cache.get(key)
    if version is None:
        cache.add(key, 1, timeout=None)
        version = cache.get(key) or 1
    return version


def invalidate(tag: str) -> None:
    """Make every cached value depending on ``tag`` unreachable."""
    key = _version_key(tag)
    try:
        cache.incr(key)
    except ValueError:
        # Never read yet: start past the version readers would create
        cache.set(key, 2, timeout=None)
    logger.debug("Invalidated cache tag %s", tag)


def invalidate_on_commit(*tags: str) -> None:
    """Invalidate ``tags`` once the current transaction commits."""
    def _invalidate():
        for tag in tags:
            invalidate(tag)

    transaction.on_commit(_invalidate)


def build_key(tags: Iterable[str], parts: Iterable[object]) -> str:
    versions = ','.join(f'{tag}@{tag_version(tag)}' for tag in tags)
    return f"{KEY_PREFIX}:{':'.join(str(part) for part in parts)}|{versions}"


def cached(tags: Iterable[str], parts: Iterable[object], build: Callable[[], T]) -> T:
    """
    Return the cached value for ``parts`` under the current versions of
    ``tags``, calling ``build`` on a miss.
    """
    key = build_key(tuple(tags), parts)
    value = cache.get(key)
    if value is None:
        value = build()
        cache.set(key, value, getattr(settings, 'CACHE_TIMEOUT', 300))
    return value
