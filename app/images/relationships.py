# portfolio/app/images/relationships.py
"""
Keeps images, series and categories consistent with each other.

Series.image_ids is the ordered membership list and MediaImage.series is its
back-reference; ImageCategory.image_count is a denormalised count of published
images. Every mutation of those fields goes through RelationshipEngine so the
pairs stay in step and the query cache is invalidated afterwards.
"""
import logging

from django.db import DatabaseError, transaction

from core.apps import get_query_cache
from series.models import Series

from .exceptions import InvalidReference, NotFound, PartialCascadeFailure
from .models import ImageCategory, MediaImage

logger = logging.getLogger(__name__)

IMAGES = 'images'
SERIES = 'series'
CATEGORIES = 'categories'


def as_pk(value):
    """Returns `value` as an integer primary key, or None if it cannot be one."""
    if isinstance(value, bool):
        return None
    try:
        pk = int(value)
    except (TypeError, ValueError):
        return None
    return pk if pk > 0 else None


def drop_members(series, image_ids):
    """
    Filters `image_ids` out of the series' sequence (in memory). If the cover
    was among them it moves to the new first member, or is unset.
    Returns True if anything changed.
    """
    doomed = set(image_ids)
    remaining = [pk for pk in series.image_ids if pk not in doomed]
    changed = len(remaining) != len(series.image_ids)
    series.image_ids = remaining
    if series.cover_image_id is not None and series.cover_image_id in doomed:
        series.cover_image_id = remaining[0] if remaining else None
        changed = True
    return changed


class RelationshipEngine:

    def __init__(self, cache):
        self.cache = cache

    # --- Lookups ---

    def _get(self, model, pk, kind, lock=False):
        manager = model.objects.select_for_update() if lock else model.objects
        pk_value = as_pk(pk)
        if pk_value is None:
            raise NotFound(kind, pk)
        try:
            return manager.get(pk=pk_value)
        except model.DoesNotExist:
            raise NotFound(kind, pk)

    def _get_series(self, pk, lock=False):
        return self._get(Series, pk, 'Series', lock=lock)

    def _get_image(self, pk, lock=False):
        return self._get(MediaImage, pk, 'Image', lock=lock)

    def _get_category(self, pk, lock=False):
        return self._get(ImageCategory, pk, 'Category', lock=lock)

    def invalidate(self, *namespaces):
        """
        Drops the namespaces now and again once the outermost transaction
        commits. A caller such as the admin may still hold a transaction open,
        and a reader in between can re-cache the rows it has not committed yet.
        Outside a transaction the second pass runs immediately.
        """
        self.cache.invalidate_namespaces(*namespaces)
        transaction.on_commit(lambda: self.cache.invalidate_namespaces(*namespaces))

    def _detach_from_series(self, image_ids, keep_series_pk=None):
        """
        Removes images from whatever series currently claims them through the
        back-reference (except `keep_series_pk`). The caller rewrites the
        back-references afterwards.
        """
        previous = {}
        rows = MediaImage.objects.filter(pk__in=image_ids, series__isnull=False).values_list('pk', 'series_id')
        for image_pk, series_pk in rows:
            if series_pk != keep_series_pk:
                previous.setdefault(series_pk, []).append(image_pk)

        for series_pk, members in previous.items():
            old_series = Series.objects.select_for_update().filter(pk=series_pk).first()
            if old_series is not None and drop_members(old_series, members):
                old_series.save(update_fields=['image_ids', 'cover_image', 'updated_at'])
                logger.info(f"[detach] Images {members} left series {series_pk}")
        return list(previous)

    # --- Series membership ---

    def add_image_to_series(self, series_id, image_id):
        """
        Appends the image to the series and points its back-reference at it.
        Adding an existing member is a no-op. An image that belonged to
        another series is removed from that series first.
        """
        with transaction.atomic():
            series = self._get_series(series_id, lock=True)
            image = self._get_image(image_id)

            if series.has_image(image.pk) and image.series_id == series.pk:
                logger.info(f"[add_image_to_series] Image {image.pk} already in series {series.pk}")
                return series

            self._detach_from_series([image.pk], keep_series_pk=series.pk)

            if not series.has_image(image.pk):
                series.image_ids.append(image.pk)
                series.save(update_fields=['image_ids', 'updated_at'])

            image.series = series
            image.save(update_fields=['series', 'updated_at'])

        self.invalidate(SERIES, IMAGES)
        logger.info(f"[add_image_to_series] Image {image.pk} -> series {series.pk}")
        return series

    def remove_image_from_series(self, series_id, image_id):
        """
        Removes the image from the series, moving the cover if needed, and
        clears the image's back-reference. Removing a non-member is a no-op.
        """
        image_pk = as_pk(image_id)
        with transaction.atomic():
            series = self._get_series(series_id, lock=True)

            if image_pk is None or not series.has_image(image_pk):
                # Heal a back-reference left behind by an interrupted write.
                healed = MediaImage.objects.filter(pk=image_pk, series=series).update(series=None) if image_pk else 0
                if healed:
                    logger.warning(f"[remove_image_from_series] Cleared stale back-reference on image {image_pk}")
                else:
                    logger.info(f"[remove_image_from_series] Image {image_id} is not in series {series.pk}")
            else:
                drop_members(series, [image_pk])
                series.save(update_fields=['image_ids', 'cover_image', 'updated_at'])
                MediaImage.objects.filter(pk=image_pk, series=series).update(series=None)
                healed = 1

        if healed:
            self.invalidate(SERIES, IMAGES)
            logger.info(f"[remove_image_from_series] Image {image_pk} removed from series {series.pk}")
        return series

    def reorder_series_images(self, series_id, ordered_ids):
        """
        Sets the series order to `ordered_ids`, keeping only ids that are
        already members. Ids that are not members are ignored and never
        added. Members missing from `ordered_ids` leave the series.
        """
        with transaction.atomic():
            series = self._get_series(series_id, lock=True)
            current = set(series.image_ids)

            new_order = []
            for raw in ordered_ids:
                pk = as_pk(raw)
                if pk in current and pk not in new_order:
                    new_order.append(pk)

            ignored = [raw for raw in ordered_ids if as_pk(raw) not in current]
            dropped = [pk for pk in series.image_ids if pk not in new_order]

            series.image_ids = new_order
            if series.cover_image_id in dropped:
                series.cover_image_id = new_order[0] if new_order else None
            series.save(update_fields=['image_ids', 'cover_image', 'updated_at'])

            if dropped:
                MediaImage.objects.filter(pk__in=dropped, series=series).update(series=None)

            members = MediaImage.objects.filter(pk__in=new_order)
            positions = {pk: index for index, pk in enumerate(new_order)}
            moved = []
            for image in members:
                if image.order != positions[image.pk]:
                    image.order = positions[image.pk]
                    moved.append(image)
            if moved:
                MediaImage.objects.bulk_update(moved, ['order'])

        if ignored:
            logger.warning(f"[reorder_series_images] Ignored non-member ids {ignored} for series {series.pk}")
        if dropped:
            logger.info(f"[reorder_series_images] Members {dropped} not in new order left series {series.pk}")

        self.invalidate(SERIES, IMAGES)
        logger.info(f"[reorder_series_images] Series {series.pk} reordered: {new_order}")
        return series

    def set_cover_image(self, series_id, image_id):
        with transaction.atomic():
            series = self._get_series(series_id, lock=True)
            if image_id in (None, ''):
                series.cover_image = None
            else:
                image = self._get_image(image_id)
                if not series.has_image(image.pk):
                    raise InvalidReference(f"Image {image.pk} is not part of series {series.pk}.")
                series.cover_image = image
            series.save(update_fields=['cover_image', 'updated_at'])

        self.invalidate(SERIES)
        return series

    # --- Series lifecycle ---

    def create_series(self, series, image_ids=(), cover_image_id=None):
        """
        Saves an unsaved Series instance (e.g. from SeriesForm.save(commit=False))
        with an initial membership list. Every image must exist; images are
        taken out of any series they were in before.
        """
        ordered = []
        for raw in image_ids:
            pk = as_pk(raw)
            if pk is None:
                raise NotFound('Image', raw)
            if pk not in ordered:
                ordered.append(pk)

        cover_pk = as_pk(cover_image_id) if cover_image_id not in (None, '') else None
        if cover_image_id not in (None, '') and cover_pk not in ordered:
            raise InvalidReference(f"Cover image {cover_image_id} must be one of the series images.")

        with transaction.atomic():
            existing = set(MediaImage.objects.filter(pk__in=ordered).values_list('pk', flat=True))
            missing = [pk for pk in ordered if pk not in existing]
            if missing:
                raise NotFound('Image', missing[0])

            series.image_ids = ordered
            series.cover_image_id = cover_pk
            series.save()

            if ordered:
                self._detach_from_series(ordered, keep_series_pk=series.pk)
                MediaImage.objects.filter(pk__in=ordered).update(series=series)

        self.invalidate(SERIES, IMAGES)
        logger.info(f"[create_series] Series created: {series.title} ({len(ordered)} images)")
        return series

    def update_series(self, series_id, changes):
        """
        Applies metadata edits. Membership can only change through the
        add/remove/reorder operations; a cover outside the members is rejected.
        """
        if 'image_ids' in changes:
            raise InvalidReference("Series membership cannot be edited directly.")

        with transaction.atomic():
            series = self._get_series(series_id, lock=True)
            for field, value in changes.items():
                setattr(series, field, value)
            if series.cover_image_id is not None and not series.has_image(series.cover_image_id):
                raise InvalidReference(f"Cover image {series.cover_image_id} must be one of the series images.")
            series.save()

        self.invalidate(SERIES)
        logger.info(f"[update_series] Series updated: {series.title} (Status: {series.status})")
        return series

    def delete_series(self, series_id):
        """Deletes the series. Member images survive with their back-reference cleared."""
        step = 'lookup'
        with transaction.atomic():
            series = self._get_series(series_id, lock=True)
            title = series.title
            try:
                step = 'clear image back-references'
                cleared = MediaImage.objects.filter(series=series).update(series=None)
                step = 'delete series'
                series.delete()
            except DatabaseError as e:
                logger.error(f"[delete_series] Cascade failed at '{step}' for series {series_id}: {e}", exc_info=True)
                raise PartialCascadeFailure('delete_series', step, e) from e

        self.invalidate(SERIES, IMAGES)
        logger.info(f"[delete_series] Series deleted: {title} ({cleared} images released)")
        return cleared

    # --- Images ---

    def update_image(self, image_id, changes):
        """
        Applies field edits to an image. When its category or status changes,
        both the old and the new category are recounted.
        """
        if 'series' in changes or 'series_id' in changes:
            raise InvalidReference("Use the series operations to change an image's series.")

        with transaction.atomic():
            image = self._get_image(image_id, lock=True)
            previous_category_id = image.category_id
            previous_status = image.status
            for field, value in changes.items():
                setattr(image, field, value)
            image.save()

            affected = set()
            if image.category_id != previous_category_id or image.status != previous_status:
                affected = {previous_category_id, image.category_id} - {None}
                for category_pk in affected:
                    self._recount(category_pk)

        self.invalidate(IMAGES, SERIES, *([CATEGORIES] if affected else []))
        logger.info(f"[update_image] Image updated: {image.title}")
        return image

    def delete_image(self, image_id):
        """
        Takes the image out of its series (moving the cover if needed), deletes
        it and recounts its category, all in one transaction. A failing step
        raises PartialCascadeFailure and nothing is applied.
        """
        step = 'lookup'
        with transaction.atomic():
            image = self._get_image(image_id, lock=True)
            image_pk, category_pk, series_pk = image.pk, image.category_id, image.series_id
            file_name = image.image.name if image.image else None
            storage = image.image.storage
            try:
                step = 'remove from series'
                # Scan every series, not only the back-reference, so no list keeps a dangling id.
                for series in Series.objects.select_for_update().all():
                    if series.pk == series_pk or series.has_image(image_pk):
                        if drop_members(series, [image_pk]):
                            series.save(update_fields=['image_ids', 'cover_image', 'updated_at'])
                step = 'delete image'
                image.delete()
                step = 'recount category'
                if category_pk:
                    self._recount(category_pk)
            except DatabaseError as e:
                logger.error(f"[delete_image] Cascade failed at '{step}' for image {image_id}: {e}", exc_info=True)
                raise PartialCascadeFailure('delete_image', step, e) from e

            if file_name:
                transaction.on_commit(lambda: storage.delete(file_name))

        self.invalidate(IMAGES, SERIES, CATEGORIES)
        logger.info(f"[delete_image] Image {image_pk} deleted (series={series_pk}, category={category_pk})")

    # --- Categories ---

    def _recount(self, category_pk):
        count = MediaImage.objects.filter(
            category_id=category_pk,
            status=MediaImage.ImageStatus.PUBLISHED,
        ).count()
        ImageCategory.objects.filter(pk=category_pk).update(image_count=count)
        return count

    def recompute_category_count(self, category_id):
        category = self._get_category(category_id)
        category.image_count = self._recount(category.pk)
        self.invalidate(CATEGORIES)
        logger.info(f"[recompute_category_count] {category.name}: {category.image_count} published images")
        return category

    def sync_category_counts(self, *category_ids):
        """Recounts every existing category in `category_ids`, ignoring None."""
        pks = {as_pk(pk) for pk in category_ids} - {None}
        for pk in pks:
            self._recount(pk)
        if pks:
            self.invalidate(CATEGORIES)
        return pks

    def delete_category(self, category_id):
        """Deletes the category; images and series that used it keep existing, uncategorised."""
        step = 'lookup'
        with transaction.atomic():
            category = self._get_category(category_id, lock=True)
            name = category.name
            try:
                step = 'clear image references'
                cleared = MediaImage.objects.filter(category=category).update(category=None)
                step = 'clear series references'
                Series.objects.filter(category=category).update(category=None)
                step = 'delete category'
                category.delete()
            except DatabaseError as e:
                logger.error(f"[delete_category] Cascade failed at '{step}' for category {category_id}: {e}", exc_info=True)
                raise PartialCascadeFailure('delete_category', step, e) from e

        self.invalidate(CATEGORIES, IMAGES, SERIES)
        logger.info(f"[delete_category] Category deleted: {name} ({cleared} images uncategorised)")
        return cleared

    # --- Reconciliation ---

    def repair(self, series_id=None, recount=False, dry_run=False):
        """
        Brings back-references and membership lists back in line after an
        interrupted write or a direct database edit.

        The series' image_ids list is treated as authoritative, with one
        exception: an image whose back-reference names another series that
        also lists it stays there and is dropped from this one.
        Returns a report dict describing every change (applied unless dry_run).
        """
        report = {
            'series_checked': 0,
            'dropped': [],
            'relinked': [],
            'released': [],
            'covers_fixed': [],
            'categories_recounted': [],
        }

        with transaction.atomic():
            queryset = Series.objects.select_for_update().order_by('pk')
            if series_id is not None:
                queryset = queryset.filter(pk=self._get_series(series_id).pk)
            listings = {pk: set(ids or []) for pk, ids in Series.objects.values_list('pk', 'image_ids')}
            claimed = {}

            for series in queryset:
                report['series_checked'] += 1
                back_refs = dict(MediaImage.objects.filter(pk__in=series.image_ids).values_list('pk', 'series_id'))
                back_refs.update({pk: owner for pk, owner in claimed.items() if pk in back_refs})

                kept, relink = [], []
                for pk in series.image_ids:
                    if pk in kept:
                        continue
                    if pk not in back_refs:
                        report['dropped'].append((series.pk, pk))
                        continue
                    owner = back_refs[pk]
                    if owner == series.pk:
                        kept.append(pk)
                    elif owner is not None and pk in listings.get(owner, ()):
                        report['dropped'].append((series.pk, pk))
                    else:
                        kept.append(pk)
                        relink.append(pk)
                        claimed[pk] = series.pk
                        report['relinked'].append((series.pk, pk))

                taken = [pk for pk, owner in claimed.items() if owner != series.pk]
                strays = list(
                    MediaImage.objects.filter(series=series)
                    .exclude(pk__in=kept)
                    .exclude(pk__in=taken)
                    .values_list('pk', flat=True)
                )
                report['released'].extend((series.pk, pk) for pk in strays)

                cover_pk = series.cover_image_id
                if cover_pk is not None and cover_pk not in kept:
                    new_cover = kept[0] if kept else None
                    report['covers_fixed'].append((series.pk, cover_pk, new_cover))
                    cover_pk = new_cover

                changed = kept != series.image_ids or cover_pk != series.cover_image_id
                if dry_run:
                    continue
                if changed:
                    series.image_ids = kept
                    series.cover_image_id = cover_pk
                    series.save(update_fields=['image_ids', 'cover_image', 'updated_at'])
                if relink:
                    MediaImage.objects.filter(pk__in=relink).update(series=series)
                if strays:
                    MediaImage.objects.filter(pk__in=strays).update(series=None)

            if recount:
                for category in ImageCategory.objects.all():
                    actual = MediaImage.objects.filter(
                        category=category, status=MediaImage.ImageStatus.PUBLISHED
                    ).count()
                    if actual != category.image_count:
                        report['categories_recounted'].append((category.pk, category.image_count, actual))
                        if not dry_run:
                            ImageCategory.objects.filter(pk=category.pk).update(image_count=actual)

        if not dry_run and any(report[k] for k in ('dropped', 'relinked', 'released', 'covers_fixed', 'categories_recounted')):
            self.invalidate(SERIES, IMAGES, CATEGORIES)
        logger.info(
            f"[repair] checked={report['series_checked']} dropped={len(report['dropped'])} "
            f"relinked={len(report['relinked'])} released={len(report['released'])} "
            f"covers={len(report['covers_fixed'])} recounted={len(report['categories_recounted'])}"
            + (" (dry run)" if dry_run else "")
        )
        return report


def get_engine():
    """Engine bound to the process-wide query cache owned by the core app."""
    return RelationshipEngine(cache=get_query_cache())
