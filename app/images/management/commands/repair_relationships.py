# portfolio/app/images/management/commands/repair_relationships.py

from django.core.management.base import BaseCommand, CommandError
from images.exceptions import NotFound
from images.relationships import get_engine


class Command(BaseCommand):
    help = 'Re-aligns series membership lists, image back-references, covers and category counts.'

    def add_arguments(self, parser):
        parser.add_argument('--series', type=int, help='Only check the series with this id.')
        parser.add_argument('--recount', action='store_true', help='Also recount published images per category.')
        parser.add_argument('--dry-run', action='store_true', help='Report what would change without writing.')

    def handle(self, *args, **options):
        try:
            report = get_engine().repair(
                series_id=options['series'],
                recount=options['recount'],
                dry_run=options['dry_run'],
            )
        except NotFound as e:
            raise CommandError(str(e))

        for series_pk, image_pk in report['dropped']:
            self.stdout.write(f'Series {series_pk}: dropped image {image_pk} from the list')
        for series_pk, image_pk in report['relinked']:
            self.stdout.write(f'Series {series_pk}: relinked image {image_pk}')
        for series_pk, image_pk in report['released']:
            self.stdout.write(f'Series {series_pk}: released image {image_pk}')
        for series_pk, old, new in report['covers_fixed']:
            self.stdout.write(f'Series {series_pk}: cover {old} -> {new}')
        for category_pk, old, new in report['categories_recounted']:
            self.stdout.write(f'Category {category_pk}: image_count {old} -> {new}')

        changes = sum(len(report[k]) for k in ('dropped', 'relinked', 'released', 'covers_fixed', 'categories_recounted'))
        prefix = 'Dry run: ' if options['dry_run'] else ''

        if changes == 0:
            self.stdout.write(self.style.SUCCESS(f"{prefix}Checked {report['series_checked']} series, nothing to repair."))
            return

        verb = 'would apply' if options['dry_run'] else 'applied'
        self.stdout.write(self.style.SUCCESS(f"{prefix}Checked {report['series_checked']} series, {verb} {changes} fix(es)."))
