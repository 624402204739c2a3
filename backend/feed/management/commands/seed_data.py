"""
Management command to seed the database with sample data.

Usage: python manage.py seed_data
"""

import random
from datetime import timedelta
from django.core.management.base import BaseCommand
from django.contrib.auth.models import User
from django.utils import timezone

from feed.models import REACTION_TYPES, Post, Comment, Reaction, Share, Save
from feed.services import create_comment, create_post, share_post, toggle_reaction, toggle_save


class Command(BaseCommand):
    help = 'Seed the database with sample data for testing'

    def add_arguments(self, parser):
        parser.add_argument(
            '--users',
            type=int,
            default=10,
            help='Number of users to create'
        )
        parser.add_argument(
            '--posts',
            type=int,
            default=20,
            help='Number of posts to create'
        )
        parser.add_argument(
            '--comments',
            type=int,
            default=100,
            help='Number of comments to create'
        )
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing data before seeding'
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            Reaction.objects.all().delete()
            Share.objects.all().delete()
            Save.objects.all().delete()
            Comment.objects.all().delete()
            Post.objects.all().delete()
            User.objects.filter(is_superuser=False).delete()

        self.stdout.write('Creating users...')
        users = self._create_users(options['users'])

        self.stdout.write('Creating posts...')
        posts = self._create_posts(users, options['posts'])

        self.stdout.write('Creating comments...')
        comments = self._create_comments(users, posts, options['comments'])

        self.stdout.write('Creating reactions, shares and saves...')
        reaction_count = self._create_reactions(users, posts, comments)
        self._create_shares_and_saves(users, posts)

        self.stdout.write(self.style.SUCCESS(
            f'Successfully created:\n'
            f'  - {len(users)} users\n'
            f'  - {len(posts)} posts\n'
            f'  - {len(comments)} comments\n'
            f'  - {reaction_count} reactions'
        ))

    def _create_users(self, count):
        users = []
        for i in range(count):
            email = f'user{i+1}@example.com'
            user = User.objects.filter(username=email).first()
            if user is None:
                user = User.objects.create_user(
                    username=email,
                    email=email,
                    password='password123'
                )
                user.profile.full_name = f'User {i+1}'
                user.profile.save(update_fields=['full_name'])
            users.append(user)
        return users

    def _create_posts(self, users, count):
        posts = []
        contents = [
            "Just discovered this amazing trick!",
            "What do you think about this? I'd love to hear your perspectives.",
            "Check out my latest project.",
            "Unpopular opinion: pineapple belongs on pizza.",
            "TIL something interesting about octopuses.",
        ]

        for i in range(count):
            images = []
            if random.random() < 0.3:
                images = [{
                    'src': f'https://picsum.photos/seed/{i+1}/800/600',
                    'width': 800,
                    'height': 600,
                }]
            post = create_post(
                random.choice(users).id,
                content=f"{random.choice(contents)} #{i+1}",
                images=images,
            )
            # Spread posts over the last two days so the feed has some depth
            Post.objects.filter(pk=post.pk).update(
                created_at=timezone.now() - timedelta(hours=random.randint(0, 48))
            )
            posts.append(post)
        return posts

    def _create_comments(self, users, posts, count):
        comments = []
        comment_texts = [
            "Great point! I totally agree.",
            "Hmm, I'm not sure about this...",
            "Thanks for sharing!",
            "Can you elaborate on this?",
            "Well said!",
        ]

        for _ in range(count):
            post = random.choice(posts)

            # 30% chance of being a reply to existing comment
            parent_id = None
            existing_comments = [c for c in comments if c.post_id == post.id and c.depth < 6]
            if existing_comments and random.random() < 0.3:
                parent_id = random.choice(existing_comments).id

            comment = create_comment(
                random.choice(users).id,
                post.id,
                content=random.choice(comment_texts),
                parent_id=parent_id,
            )
            comments.append(comment)

        return comments

    def _create_reactions(self, users, posts, comments):
        created = 0
        targets = [('post', post.id) for post in posts]
        targets += [('comment', comment.id) for comment in comments if random.random() < 0.3]

        for target_type, target_id in targets:
            reactors = random.sample(users, k=random.randint(0, len(users)))
            for reactor in reactors:
                # Mostly likes, like real feeds
                reaction_type = 'like' if random.random() < 0.6 else random.choice(REACTION_TYPES)
                result = toggle_reaction(target_type, target_id, reactor.id, reaction_type)
                if result.action == 'created':
                    created += 1
        return created

    def _create_shares_and_saves(self, users, posts):
        for post in posts:
            for user in random.sample(users, k=random.randint(0, len(users) // 3)):
                share_post(post.id, user.id)
            for user in random.sample(users, k=random.randint(0, len(users) // 3)):
                toggle_save(post.id, user.id)
