"""
Management command to create upcoming sessions for recurring occasions.

Run it periodically (e.g. daily via cron) so the next sessions of every
active recurring occasion always exist.
"""

import logging
from datetime import datetime

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from attendance import services
from attendance.models import Occasion
from attendance.types import DEFAULT_SESSION_COUNT

logger = logging.getLogger(__name__)


def _parse_clock(value):
    try:
        return datetime.strptime(value, '%H:%M').time()
    except ValueError:
        raise CommandError(f'Invalid time "{value}", expected HH:MM')


class Command(BaseCommand):
    help = 'Create the next sessions of active recurring occasions'

    def add_arguments(self, parser):
        parser.add_argument(
            '--sessions',
            type=int,
            default=DEFAULT_SESSION_COUNT,
            help=f'Number of upcoming occurrences per occasion (default: {DEFAULT_SESSION_COUNT})'
        )
        parser.add_argument(
            '--start',
            default='09:00',
            help='Session start time as HH:MM (default: 09:00)'
        )
        parser.add_argument(
            '--end',
            default='11:00',
            help='Session end time as HH:MM (default: 11:00)'
        )

    def handle(self, *args, **options):
        count = options['sessions']
        if count < 1:
            raise CommandError('--sessions must be at least 1')

        start_clock = _parse_clock(options['start'])
        end_clock = _parse_clock(options['end'])
        if end_clock <= start_clock:
            raise CommandError('--end must be after --start')

        today = timezone.localdate()
        self.stdout.write(
            f'Generating the next {count} session(s) per recurring occasion...'
        )

        total_created = 0
        for occasion in Occasion.objects.active().recurring():
            try:
                created = services.materialize_sessions(
                    occasion, count, start_clock, end_clock, today
                )
            except ValueError as exc:
                logger.warning("Skipped occasion %s: %s", occasion.pk, exc)
                self.stderr.write(f'Skipped "{occasion.name}": {exc}')
                continue
            total_created += len(created)

        self.stdout.write(
            self.style.SUCCESS(
                f'Successfully generated {total_created} new session(s)'
            )
        )
