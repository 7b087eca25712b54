"""
Management command to recompute denormalized counters from the link tables.

Usage: python manage.py reconcile_counters [--discussion ID] [--dry-run]
"""

from django.core.management.base import BaseCommand

from discussions.aggregates import reconcile_all


class Command(BaseCommand):
    help = 'Recompute reply/upvote/save/follower/view counters and fix any drift'

    def add_arguments(self, parser):
        parser.add_argument(
            '--discussion',
            type=int,
            action='append',
            dest='discussions',
            help='Only reconcile this discussion (repeatable)'
        )
        parser.add_argument(
            '--batch-size',
            type=int,
            default=200,
            help='Discussions per transaction'
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Report drift without writing corrections'
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        drifts = reconcile_all(
            batch_size=options['batch_size'],
            dry_run=dry_run,
            discussion_ids=options['discussions'],
        )

        for drift in drifts:
            self.stdout.write(
                f"  {drift['model']} {drift['id']} {drift['field']}: "
                f"{drift['stored']} -> {drift['actual']}"
            )

        if not drifts:
            self.stdout.write(self.style.SUCCESS('All counters are consistent.'))
        elif dry_run:
            self.stdout.write(self.style.WARNING(f'{len(drifts)} counters would be corrected.'))
        else:
            self.stdout.write(self.style.SUCCESS(f'Corrected {len(drifts)} counters.'))
