"""
Management command to repair reaction counter drift.

Recomputes the seven per-type counters of every post and/or comment from
the reaction rows and rewrites the ones that disagree.

Usage: python manage.py reconcile_reaction_counts [--target post|comment]
"""

from django.core.management.base import BaseCommand

from feed.models import REACTABLE_MODELS
from feed.services import recount_reactions


class Command(BaseCommand):
    help = 'Recompute reaction counters from reaction rows and fix any drift'

    def add_arguments(self, parser):
        parser.add_argument(
            '--target',
            choices=list(REACTABLE_MODELS),
            help='Only reconcile posts or only comments (default: both)'
        )

    def handle(self, *args, **options):
        target_types = [options['target']] if options['target'] else list(REACTABLE_MODELS)

        for target_type in target_types:
            model = REACTABLE_MODELS[target_type]
            checked = 0
            repaired = 0
            for target_id in model.objects.values_list('pk', flat=True).iterator():
                drift = recount_reactions(target_type, target_id)
                if drift is None:
                    # Deleted while we were iterating
                    continue
                checked += 1
                if drift:
                    repaired += 1
                    self.stdout.write(f'  {target_type} {target_id}: {self._describe(drift)}')

            style = self.style.WARNING if repaired else self.style.SUCCESS
            self.stdout.write(style(
                f'{target_type}: checked {checked}, repaired {repaired}'
            ))

    def _describe(self, drift):
        return ', '.join(
            f'{field} {stored} -> {actual}'
            for field, (stored, actual) in sorted(drift.items())
        )
