"""
Management command to seed the database with sample discussions.

Usage: python manage.py seed_data [--users N] [--discussions N] [--replies N] [--clear]

Everything goes through the service layer so counters come out consistent.
"""

import random
from datetime import timedelta
from django.core.management.base import BaseCommand
from django.contrib.auth.models import User
from django.utils import timezone

from discussions.models import Bookmark, Discussion, DiscussionView, LegalCategory, Reply
from discussions import resolution, services
from discussions.exceptions import DiscussionError


class Command(BaseCommand):
    help = 'Seed the database with sample legal discussions for testing'

    def add_arguments(self, parser):
        parser.add_argument(
            '--users',
            type=int,
            default=10,
            help='Number of users to create'
        )
        parser.add_argument(
            '--discussions',
            type=int,
            default=20,
            help='Number of discussions to create'
        )
        parser.add_argument(
            '--replies',
            type=int,
            default=150,
            help='Number of replies to create'
        )
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing data before seeding'
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            Bookmark.objects.all().delete()
            DiscussionView.objects.all().delete()
            Discussion.objects.all().delete()
            User.objects.filter(is_superuser=False).delete()

        self.stdout.write('Creating users...')
        users = self._create_users(options['users'])

        self.stdout.write('Creating discussions...')
        discussions = self._create_discussions(users, options['discussions'])

        self.stdout.write('Creating replies...')
        replies = self._create_replies(users, discussions, options['replies'])

        self.stdout.write('Creating upvotes, follows and saves...')
        self._create_reactions(users, discussions, replies)

        self.stdout.write('Resolving some discussions...')
        resolved = self._resolve_some(discussions)

        self.stdout.write(self.style.SUCCESS(
            f'Successfully created:\n'
            f'  - {len(users)} users\n'
            f'  - {len(discussions)} discussions ({resolved} resolved)\n'
            f'  - {len(replies)} replies\n'
            f'  - Upvotes, follows and saves'
        ))

    def _create_users(self, count):
        users = []
        first_names = ['Asha', 'Ravi', 'Meera', 'Karan', 'Farah', 'Vikram', 'Neha', 'Arjun']
        for i in range(count):
            username = f'advocate{i+1}'
            user = User.objects.filter(username=username).first()
            if user is None:
                user = User.objects.create_user(
                    username=username,
                    email=f'{username}@example.com',
                    password='password123',
                    first_name=first_names[i % len(first_names)],
                    last_name='Advocate',
                )
            users.append(user)
        return users

    def _create_discussions(self, users, count):
        discussions = []
        titles = [
            "Is anticipatory bail available for offences under special statutes?",
            "Scope of Article 21 after recent privacy judgments",
            "Enforceability of arbitration clauses in unstamped agreements",
            "Consumer forum jurisdiction over e-commerce platforms",
            "Maintenance rights of a live-in partner",
            "Liability of intermediaries for user generated content",
            "Can a trademark be registered for a single colour?",
            "Tax treatment of compensation received for land acquisition",
        ]
        descriptions = [
            "Looking for views from practitioners on how the courts have approached this question recently.",
            "I came across conflicting High Court decisions on this point and would like to understand the prevailing view.",
            "A client has raised this issue and I want to check whether there is settled law before advising.",
            "Sharing my analysis of the judgment below, happy to hear counter arguments from the community.",
        ]
        tag_pool = ['bail', 'ipc', 'crpc', 'article-21', 'arbitration', 'gst', 'trademark',
                    'consumer', 'privacy', 'maintenance', 'it-act']

        for i in range(count):
            discussion = services.create_discussion(
                random.choice(users),
                title=f"{random.choice(titles)} #{i+1}",
                description=random.choice(descriptions),
                category=random.choice(LegalCategory.values),
                discussion_type=random.choice(Discussion.DiscussionType.values),
                tags=random.sample(tag_pool, k=random.randint(0, 3)),
                is_public=random.random() > 0.1,
            )
            # Spread creation times for the list sorts
            Discussion.objects.filter(pk=discussion.pk).update(
                created_at=timezone.now() - timedelta(hours=random.randint(0, 72))
            )
            discussions.append(discussion)
        return discussions

    def _create_replies(self, users, discussions, count):
        replies = []
        reply_texts = [
            "The Supreme Court addressed this squarely, the answer is yes with conditions.",
            "I respectfully disagree, the statute excludes this expressly.",
            "Could you share the citation you are relying on?",
            "In practice the trial courts are far stricter than the precedent suggests.",
            "This was referred to a larger bench, so the question is still open.",
            "Agreed. The limitation point is the real issue here.",
        ]

        for _ in range(count):
            discussion = random.choice(discussions)

            # 40% chance of nesting under an existing reply
            parent_id = None
            existing = [r for r in replies if r.discussion_id == discussion.id]
            if existing and random.random() < 0.4:
                parent_id = random.choice(existing).id

            author = discussion.author if not discussion.is_public else random.choice(users)
            try:
                reply = services.add_reply(author, discussion.id, random.choice(reply_texts),
                                           parent_reply_id=parent_id)
            except DiscussionError as e:
                self.stdout.write(self.style.WARNING(f'Skipped reply: {e.message}'))
                continue
            replies.append(reply)

        return replies

    def _create_reactions(self, users, discussions, replies):
        for discussion in discussions:
            if not discussion.is_public:
                continue
            for user in random.sample(users, k=len(users) // 2):
                services.toggle_upvote(user, services.UpvoteTarget.discussion(discussion.id))
            for user in random.sample(users, k=len(users) // 3):
                services.toggle_follow(user, discussion.id)
            for user in random.sample(users, k=len(users) // 4):
                services.toggle_discussion_save(user, discussion.id)

        for reply in replies:
            if random.random() < 0.4:
                for user in random.sample(users, k=min(3, len(users))):
                    services.toggle_upvote(user, services.UpvoteTarget.reply(reply.id))

    def _resolve_some(self, discussions):
        resolved = 0
        for discussion in discussions:
            if random.random() > 0.3:
                continue
            best = (
                Reply.objects
                .filter(discussion=discussion, is_deleted=False)
                .order_by('-upvote_count', 'created_at')
                .first()
            )
            if best is not None:
                resolution.mark_best_answer(discussion.author, discussion.id, best.id)
            else:
                resolution.mark_resolved(discussion.author, discussion.id)
            resolved += 1
        return resolved
