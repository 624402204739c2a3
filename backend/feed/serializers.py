"""
DRF Serializers
===============

Serializers handle:
1. Validation of incoming data
2. Transformation of model instances to JSON
3. Nested comment tree serialization

DESIGN DECISIONS:
-----------------
1. Posts and comments are always serialized from the viewer-annotated
   querysets in queries.py, so the feed, detail view and toggle response
   all have the same shape
2. Reaction counts are exposed both as the seven raw counters and as a
   sorted list of the non-zero ones (what the UI shows next to the icons)
3. Input serializers only validate; writes go through services.py
"""

from django.contrib.auth.models import User
from rest_framework import serializers

from .models import (
    COUNTER_FIELDS,
    MAX_CONTENT_LENGTH,
    REACTABLE_MODELS,
    REACTION_TYPES,
    Comment,
    Post,
    Profile,
)


def _profile_of(user):
    try:
        return user.profile
    except Profile.DoesNotExist:
        return None


class UserSerializer(serializers.ModelSerializer):
    """Minimal user representation for embedding in other objects."""
    full_name = serializers.SerializerMethodField()
    avatar_background_color = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ['id', 'username', 'full_name', 'avatar_background_color']
        read_only_fields = ['id', 'username']

    def get_full_name(self, obj):
        profile = _profile_of(obj)
        return profile.full_name if profile else ''

    def get_avatar_background_color(self, obj):
        profile = _profile_of(obj)
        return profile.avatar_background_color if profile else None


class ImageSerializer(serializers.Serializer):
    src = serializers.CharField(max_length=2048)
    width = serializers.IntegerField(min_value=1)
    height = serializers.IntegerField(min_value=1)


class ReactableFieldsMixin(serializers.Serializer):
    """Fields shared by posts and comments: counters and the viewer's reaction."""
    my_reaction = serializers.SerializerMethodField()
    reaction_total = serializers.SerializerMethodField()
    reaction_counts = serializers.SerializerMethodField()

    def get_my_reaction(self, obj):
        return getattr(obj, 'my_reaction', None)

    def get_reaction_total(self, obj):
        return obj.reaction_total

    def get_reaction_counts(self, obj):
        """Non-zero reaction types, most used first."""
        counts = [
            {'type': reaction_type, 'count': count}
            for reaction_type, count in obj.reaction_counts().items()
            if count > 0
        ]
        return sorted(counts, key=lambda entry: entry['count'], reverse=True)


class PostSerializer(ReactableFieldsMixin, serializers.ModelSerializer):
    """
    Post as it appears in the feed and in reaction/share/save responses.

    Expects an instance from queries.posts_for_viewer().
    """
    author = UserSerializer(read_only=True)
    share_count = serializers.SerializerMethodField()
    save_count = serializers.SerializerMethodField()
    is_shared = serializers.SerializerMethodField()
    is_saved = serializers.SerializerMethodField()

    class Meta:
        model = Post
        fields = [
            'id',
            'content',
            'images',
            'author',
            *COUNTER_FIELDS,
            'reaction_total',
            'reaction_counts',
            'my_reaction',
            'comment_count',
            'share_count',
            'save_count',
            'is_shared',
            'is_saved',
            'created_at',
            'updated_at',
        ]
        read_only_fields = [
            'content', 'images', *COUNTER_FIELDS, 'comment_count', 'created_at', 'updated_at'
        ]

    def get_share_count(self, obj):
        return getattr(obj, 'share_count', 0)

    def get_save_count(self, obj):
        return getattr(obj, 'save_count', 0)

    def get_is_shared(self, obj):
        return bool(getattr(obj, 'is_shared', False))

    def get_is_saved(self, obj):
        return bool(getattr(obj, 'is_saved', False))


class CommentSerializer(ReactableFieldsMixin, serializers.ModelSerializer):
    """
    Serializer for individual comments.

    NOTE: This does NOT include nested replies!
    Tree structure is handled by CommentTreeSerializer.
    """
    author = UserSerializer(read_only=True)
    reply_count = serializers.SerializerMethodField()

    class Meta:
        model = Comment
        fields = [
            'id',
            'post',
            'parent',
            'content',
            'images',
            'author',
            'depth',
            *COUNTER_FIELDS,
            'reaction_total',
            'reaction_counts',
            'my_reaction',
            'reply_count',
            'created_at',
        ]
        read_only_fields = [
            'post', 'parent', 'content', 'images', 'depth', *COUNTER_FIELDS, 'created_at'
        ]

    def get_reply_count(self, obj):
        return getattr(obj, 'reply_count', 0)


class CommentTreeSerializer(serializers.Serializer):
    """
    Serializer for nested comment tree.

    Serializes the pre-built structure from queries.build_comment_tree():
    {
        "comment": { ...comment data... },
        "replies": [ ...nested CommentTreeSerializer... ]
    }
    """
    comment = CommentSerializer()
    replies = serializers.SerializerMethodField()

    def get_replies(self, obj):
        """Recursively serialize replies."""
        return CommentTreeSerializer(obj['replies'], many=True).data


class PostDetailSerializer(PostSerializer):
    """
    Post with its nested comment tree.

    Comments are passed as pre-built tree in context.
    """
    comments = serializers.SerializerMethodField()

    class Meta(PostSerializer.Meta):
        fields = PostSerializer.Meta.fields + ['comments']
        read_only_fields = PostSerializer.Meta.read_only_fields

    def get_comments(self, obj):
        comment_tree = self.context.get('comment_tree', [])
        return CommentTreeSerializer(comment_tree, many=True).data


class BodySerializer(serializers.Serializer):
    """
    Text + images body shared by posts and comments.

    Text is optional when at least one image is attached.
    """
    content = serializers.CharField(
        required=False,
        allow_blank=True,
        trim_whitespace=True,
        max_length=MAX_CONTENT_LENGTH,
        default=''
    )
    images = ImageSerializer(many=True, required=False, default=list)

    def validate(self, attrs):
        if not attrs.get('content') and not attrs.get('images'):
            raise serializers.ValidationError({
                'content': 'Text is required when images are empty.'
            })
        return attrs


class PostCreateSerializer(BodySerializer):
    pass


class CommentCreateSerializer(BodySerializer):
    """Body plus an optional parent comment id for replies."""
    parent = serializers.IntegerField(required=False, allow_null=True, min_value=1, default=None)


class ReactionToggleSerializer(serializers.Serializer):
    """
    Body of a reaction toggle.

    is_primary_action: true when the main reaction button was clicked,
    false when a type was picked from the selector.
    """
    reaction_type = serializers.ChoiceField(choices=REACTION_TYPES, default='like')
    is_primary_action = serializers.BooleanField(default=False)


class TargetedReactionToggleSerializer(ReactionToggleSerializer):
    """Unified toggle: the target is named in the body."""
    target_type = serializers.ChoiceField(choices=list(REACTABLE_MODELS))
    target_id = serializers.IntegerField(min_value=1)


class ReactionToggleResultSerializer(serializers.Serializer):
    """Response of a toggle: what happened plus the updated entity."""
    success = serializers.BooleanField()
    action = serializers.CharField()
    reaction_type = serializers.CharField(allow_null=True)
    previous_type = serializers.CharField(allow_null=True)
    entity = serializers.SerializerMethodField()

    def get_entity(self, obj):
        if obj.entity is None:
            return None
        if isinstance(obj.entity, Post):
            return PostSerializer(obj.entity, context=self.context).data
        return CommentSerializer(obj.entity, context=self.context).data


class ReactorListQuerySerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=['all', *REACTION_TYPES], default='all')


class ReactorSerializer(serializers.Serializer):
    """One entry of a "who reacted" list."""
    id = serializers.IntegerField()
    reaction_type = serializers.CharField()
    user = UserSerializer()
    created_at = serializers.DateTimeField()


class PostActivitySerializer(serializers.Serializer):
    """One entry of a "who shared" / "who saved" list."""
    id = serializers.IntegerField()
    user = UserSerializer()
    created_at = serializers.DateTimeField()


class SignUpSerializer(serializers.Serializer):
    full_name = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    email = serializers.EmailField(max_length=100)
    password = serializers.CharField(min_length=8, max_length=100, write_only=True)

    def validate_email(self, value):
        value = value.strip().lower()
        if User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError('Email already exists')
        return value

    def create(self, validated_data):
        email = validated_data['email']
        user = User.objects.create_user(
            username=email,
            email=email,
            password=validated_data['password'],
        )
        profile = user.profile
        profile.full_name = validated_data.get('full_name', '').strip()
        profile.save(update_fields=['full_name'])
        return user


class LoginSerializer(serializers.Serializer):
    email = serializers.EmailField(max_length=100)
    password = serializers.CharField(max_length=100, write_only=True)

