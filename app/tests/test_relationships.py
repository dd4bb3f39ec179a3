"""
RelationshipEngine: series membership, cascading deletes and category counts.
"""
import pytest
from django.core.files.base import ContentFile
from django.db import DatabaseError, transaction

from images.exceptions import InvalidReference, NotFound, PartialCascadeFailure
from images.models import ImageCategory, MediaImage
from images.relationships import as_pk, drop_members
from series.models import Series

pytestmark = pytest.mark.django_db


def reload(*objects):
    for obj in objects:
        obj.refresh_from_db()
    return objects[0] if len(objects) == 1 else objects


class TestHelpers:

    @pytest.mark.parametrize('value, expected', [
        (3, 3), ('7', 7), (0, None), (-2, None), ('I_GHOST', None), (None, None), (True, None), (2.0, 2),
    ])
    def test_as_pk(self, value, expected):
        assert as_pk(value) == expected

    def test_drop_members_moves_cover(self):
        series = Series(image_ids=[1, 2, 3], cover_image_id=1)
        assert drop_members(series, [1]) is True
        assert series.image_ids == [2, 3]
        assert series.cover_image_id == 2

    def test_drop_members_last_unsets_cover(self):
        series = Series(image_ids=[4], cover_image_id=4)
        drop_members(series, [4])
        assert series.image_ids == []
        assert series.cover_image_id is None

    def test_drop_members_nothing_to_do(self):
        series = Series(image_ids=[1, 2], cover_image_id=1)
        assert drop_members(series, [9]) is False
        assert series.image_ids == [1, 2]


class TestAddImageToSeries:

    def test_sets_both_sides(self, engine, make_image, make_series):
        image = make_image()
        series = make_series()

        engine.add_image_to_series(series.pk, image.pk)

        series, image = reload(series, image)
        assert series.image_ids == [image.pk]
        assert image.series_id == series.pk

    def test_idempotent(self, engine, make_image, make_series):
        image = make_image()
        series = make_series()

        engine.add_image_to_series(series.pk, image.pk)
        engine.add_image_to_series(series.pk, image.pk)

        assert reload(series).image_ids == [image.pk]

    def test_appends_in_call_order(self, engine, make_image, make_series):
        first, second = make_image('a'), make_image('b')
        series = make_series()

        engine.add_image_to_series(series.pk, second.pk)
        engine.add_image_to_series(series.pk, first.pk)

        assert reload(series).image_ids == [second.pk, first.pk]

    def test_moves_image_out_of_previous_series(self, engine, make_image, make_series):
        image, other = make_image('a'), make_image('b')
        old = make_series('Old', images=[image, other], cover=image)
        new = make_series('New')

        engine.add_image_to_series(new.pk, image.pk)

        old, new, image = reload(old, new, image)
        assert old.image_ids == [other.pk]
        assert old.cover_image_id == other.pk
        assert new.image_ids == [image.pk]
        assert image.series_id == new.pk

    def test_repairs_missing_back_reference(self, engine, make_image, make_series):
        image = make_image()
        series = make_series(images=[image])
        MediaImage.objects.filter(pk=image.pk).update(series=None)

        engine.add_image_to_series(series.pk, image.pk)

        assert reload(series).image_ids == [image.pk]
        assert reload(image).series_id == series.pk

    def test_unknown_ids(self, engine, make_image, make_series):
        image = make_image()
        series = make_series()

        with pytest.raises(NotFound):
            engine.add_image_to_series(series.pk + 100, image.pk)
        with pytest.raises(NotFound):
            engine.add_image_to_series(series.pk, image.pk + 100)
        with pytest.raises(NotFound):
            engine.add_image_to_series('abc', image.pk)

    def test_invalidates_series_and_images_only(self, engine, make_image, make_series):
        image = make_image()
        series = make_series()
        for key in ('series:list', 'images:list', 'categories:list'):
            engine.cache.set(key, 'stale')

        engine.add_image_to_series(series.pk, image.pk)

        assert engine.cache.stats()['keys'] == ['categories:list']

    def test_invalidates_again_once_the_outer_transaction_commits(
            self, engine, make_image, make_series, django_capture_on_commit_callbacks):
        image = make_image()
        series = make_series()

        with django_capture_on_commit_callbacks(execute=True):
            with transaction.atomic():
                engine.add_image_to_series(series.pk, image.pk)
                # A reader between the write and the commit re-caches old rows.
                engine.cache.set('series:list', 'read before commit')
            assert engine.cache.get('series:list') == 'read before commit'

        assert engine.cache.get('series:list') is None


class TestRemoveImageFromSeries:

    def test_removing_cover_promotes_new_first(self, engine, make_image, make_series):
        i1, i2, i3 = make_image('1'), make_image('2'), make_image('3')
        s1 = make_series(images=[i1, i2, i3], cover=i1)

        engine.remove_image_from_series(s1.pk, i1.pk)

        s1, i1 = reload(s1, i1)
        assert s1.image_ids == [i2.pk, i3.pk]
        assert s1.cover_image_id == i2.pk
        assert i1.series_id is None

    def test_removing_non_cover_keeps_cover(self, engine, make_image, make_series):
        i1, i2 = make_image('1'), make_image('2')
        series = make_series(images=[i1, i2], cover=i1)

        engine.remove_image_from_series(series.pk, i2.pk)

        series = reload(series)
        assert series.image_ids == [i1.pk]
        assert series.cover_image_id == i1.pk

    def test_removing_last_member_unsets_cover(self, engine, make_image, make_series):
        image = make_image()
        series = make_series(images=[image], cover=image)

        engine.remove_image_from_series(series.pk, image.pk)

        series = reload(series)
        assert series.image_ids == []
        assert series.cover_image_id is None

    def test_non_member_is_noop(self, engine, make_image, make_series):
        member, outsider = make_image('in'), make_image('out')
        series = make_series(images=[member])
        other = make_series('Other', images=[outsider])
        engine.cache.set('series:list', 'cached')

        engine.remove_image_from_series(series.pk, outsider.pk)

        assert reload(series).image_ids == [member.pk]
        assert reload(outsider).series_id == other.pk
        assert engine.cache.get('series:list') == 'cached'

    def test_clears_stale_back_reference(self, engine, make_image, make_series):
        image = make_image()
        series = make_series()
        MediaImage.objects.filter(pk=image.pk).update(series=series)

        engine.remove_image_from_series(series.pk, image.pk)

        assert reload(image).series_id is None

    def test_unknown_series(self, engine, make_image):
        with pytest.raises(NotFound):
            engine.remove_image_from_series(999, make_image().pk)


class TestReorderSeriesImages:

    def test_ghost_ids_are_ignored(self, engine, make_image, make_series):
        i1, i3 = make_image('1'), make_image('3')
        s1 = make_series(images=[i1, i3])

        engine.reorder_series_images(s1.pk, [i3.pk, i1.pk, 'I_GHOST'])

        assert reload(s1).image_ids == [i3.pk, i1.pk]

    def test_never_adds_non_members(self, engine, make_image, make_series):
        member, outsider = make_image('in'), make_image('out')
        series = make_series(images=[member])

        engine.reorder_series_images(series.pk, [outsider.pk, member.pk])

        assert reload(series).image_ids == [member.pk]
        assert reload(outsider).series_id is None

    def test_duplicates_collapse(self, engine, make_image, make_series):
        a, b = make_image('a'), make_image('b')
        series = make_series(images=[a, b])

        engine.reorder_series_images(series.pk, [b.pk, a.pk, b.pk, str(a.pk)])

        assert reload(series).image_ids == [b.pk, a.pk]

    def test_omitted_members_leave_the_series(self, engine, make_image, make_series):
        a, b, c = make_image('a'), make_image('b'), make_image('c')
        series = make_series(images=[a, b, c], cover=a)

        engine.reorder_series_images(series.pk, [c.pk, b.pk])

        series, a = reload(series, a)
        assert series.image_ids == [c.pk, b.pk]
        assert series.cover_image_id == c.pk
        assert a.series_id is None
        assert reload(b).series_id == series.pk

    def test_writes_positions(self, engine, make_image, make_series):
        a, b, c = make_image('a'), make_image('b'), make_image('c')
        series = make_series(images=[a, b, c])

        engine.reorder_series_images(series.pk, [c.pk, a.pk, b.pk])

        assert [reload(img).order for img in (c, a, b)] == [0, 1, 2]

    def test_last_write_wins(self, engine, make_image, make_series):
        a, b = make_image('a'), make_image('b')
        series = make_series(images=[a, b])

        engine.reorder_series_images(series.pk, [b.pk, a.pk])
        engine.reorder_series_images(series.pk, [a.pk, b.pk])

        assert reload(series).image_ids == [a.pk, b.pk]


class TestCoverImage:

    def test_set_cover_to_member(self, engine, make_image, make_series):
        a, b = make_image('a'), make_image('b')
        series = make_series(images=[a, b], cover=a)

        engine.set_cover_image(series.pk, b.pk)

        assert reload(series).cover_image_id == b.pk

    def test_cover_outside_series_is_rejected(self, engine, make_image, make_series):
        member, outsider = make_image('in'), make_image('out')
        series = make_series(images=[member], cover=member)

        with pytest.raises(InvalidReference):
            engine.set_cover_image(series.pk, outsider.pk)
        assert reload(series).cover_image_id == member.pk

    @pytest.mark.parametrize('value', [None, ''])
    def test_unset_cover(self, engine, make_image, make_series, value):
        image = make_image()
        series = make_series(images=[image], cover=image)

        engine.set_cover_image(series.pk, value)

        assert reload(series).cover_image_id is None


class TestSeriesLifecycle:

    def test_create_with_images(self, engine, make_image):
        a, b = make_image('a'), make_image('b')

        series = engine.create_series(Series(title='Night'), image_ids=[b.pk, a.pk, b.pk], cover_image_id=a.pk)

        series = reload(series)
        assert series.slug == 'night'
        assert series.image_ids == [b.pk, a.pk]
        assert series.cover_image_id == a.pk
        assert set(MediaImage.objects.filter(series=series).values_list('pk', flat=True)) == {a.pk, b.pk}

    def test_create_takes_images_from_previous_series(self, engine, make_image, make_series):
        image = make_image()
        old = make_series('Old', images=[image], cover=image)

        new = engine.create_series(Series(title='New'), image_ids=[image.pk])

        old = reload(old)
        assert old.image_ids == []
        assert old.cover_image_id is None
        assert reload(image).series_id == new.pk

    def test_create_with_missing_image(self, engine, make_image):
        image = make_image()

        with pytest.raises(NotFound):
            engine.create_series(Series(title='Broken'), image_ids=[image.pk, image.pk + 50])
        assert not Series.objects.filter(title='Broken').exists()

    def test_create_with_cover_outside_images(self, engine, make_image):
        a, b = make_image('a'), make_image('b')

        with pytest.raises(InvalidReference):
            engine.create_series(Series(title='Broken'), image_ids=[a.pk], cover_image_id=b.pk)
        assert not Series.objects.exists()

    def test_update_metadata(self, engine, make_series, make_category):
        series = make_series()
        category = make_category()

        engine.update_series(series.pk, {'title': 'Renamed', 'category': category, 'featured': True})

        series = reload(series)
        assert (series.title, series.category_id, series.featured) == ('Renamed', category.pk, True)

    def test_update_cover_must_be_member(self, engine, make_image, make_series):
        member, outsider = make_image('in'), make_image('out')
        series = make_series(images=[member])

        with pytest.raises(InvalidReference):
            engine.update_series(series.pk, {'cover_image': outsider})
        assert reload(series).cover_image_id is None

    def test_update_cannot_touch_membership(self, engine, make_series):
        series = make_series()

        with pytest.raises(InvalidReference):
            engine.update_series(series.pk, {'image_ids': [1]})

    def test_delete_series_keeps_images(self, engine, make_image, make_series):
        a, b = make_image('a'), make_image('b')
        series = make_series(images=[a, b], cover=a)

        released = engine.delete_series(series.pk)

        assert released == 2
        assert not Series.objects.filter(pk=series.pk).exists()
        a, b = reload(a, b)
        assert a.series_id is None and b.series_id is None

    def test_delete_missing_series(self, engine):
        with pytest.raises(NotFound):
            engine.delete_series(404)

    def test_delete_series_failure_rolls_back(self, engine, make_image, make_series, monkeypatch):
        image = make_image()
        series = make_series(images=[image])
        engine.cache.set('series:list', 'cached')

        def fail(self, *args, **kwargs):
            raise DatabaseError('disk full')
        monkeypatch.setattr(Series, 'delete', fail)

        with pytest.raises(PartialCascadeFailure) as exc_info:
            engine.delete_series(series.pk)

        assert exc_info.value.step == 'delete series'
        assert reload(image).series_id == series.pk
        assert engine.cache.get('series:list') == 'cached'


class TestDeleteImage:

    def test_removes_from_series_and_moves_cover(self, engine, make_image, make_series):
        i1, i2 = make_image('1'), make_image('2')
        series = make_series(images=[i1, i2], cover=i1)

        engine.delete_image(i1.pk)

        series = reload(series)
        assert series.image_ids == [i2.pk]
        assert series.cover_image_id == i2.pk
        assert not MediaImage.objects.filter(pk=i1.pk).exists()

    def test_recounts_category(self, engine, make_image, make_category):
        c1 = make_category()
        images = [make_image(f'img {n}', category=c1) for n in range(5)]
        assert reload(c1).image_count == 5

        engine.delete_image(images[0].pk)

        assert reload(c1).image_count == 4

    def test_deleting_draft_leaves_count(self, engine, make_image, make_category):
        category = make_category()
        make_image('live', category=category)
        draft = make_image('draft', category=category, status=MediaImage.ImageStatus.DRAFT)

        engine.delete_image(draft.pk)

        assert reload(category).image_count == 1

    def test_clears_stale_ids_in_other_series(self, engine, make_image, make_series):
        image = make_image()
        owner = make_series('Owner', images=[image])
        stale = make_series('Stale')
        Series.objects.filter(pk=stale.pk).update(image_ids=[image.pk])

        engine.delete_image(image.pk)

        assert reload(owner).image_ids == []
        assert reload(stale).image_ids == []

    def test_missing_image(self, engine):
        with pytest.raises(NotFound):
            engine.delete_image(12345)

    def test_failure_rolls_back_every_step(self, engine, make_image, make_series, make_category, monkeypatch):
        category = make_category()
        image = make_image(category=category)
        series = make_series(images=[image], cover=image)

        def fail(self, *args, **kwargs):
            raise DatabaseError('locked')
        monkeypatch.setattr(MediaImage, 'delete', fail)

        with pytest.raises(PartialCascadeFailure) as exc_info:
            engine.delete_image(image.pk)

        assert exc_info.value.operation == 'delete_image'
        assert exc_info.value.step == 'delete image'
        series = reload(series)
        assert series.image_ids == [image.pk]
        assert series.cover_image_id == image.pk
        assert MediaImage.objects.filter(pk=image.pk).exists()

    def test_stored_file_removed_on_commit(self, engine, make_image, django_capture_on_commit_callbacks):
        image = make_image()
        image.image.save('harbour.webp', ContentFile(b'not really webp'), save=True)
        storage, name = image.image.storage, image.image.name
        assert storage.exists(name)

        with django_capture_on_commit_callbacks(execute=True):
            engine.delete_image(image.pk)

        assert not storage.exists(name)

    def test_invalidates_all_namespaces(self, engine, make_image):
        image = make_image()
        for key in ('series:list', 'images:list', 'categories:list'):
            engine.cache.set(key, 'stale')

        engine.delete_image(image.pk)

        assert engine.cache.stats()['size'] == 0


class TestUpdateImage:

    def test_category_change_recounts_both(self, engine, make_image, make_category):
        street, nature = make_category('Street'), make_category('Nature')
        image = make_image(category=street)

        engine.update_image(image.pk, {'category': nature})

        street, nature = reload(street, nature)
        assert (street.image_count, nature.image_count) == (0, 1)

    def test_unpublishing_recounts(self, engine, make_image, make_category):
        category = make_category()
        image = make_image(category=category)
        make_image('other', category=category)

        engine.update_image(image.pk, {'status': MediaImage.ImageStatus.ARCHIVED})

        assert reload(category).image_count == 1

    def test_plain_edit_leaves_categories_cached(self, engine, make_image, make_category):
        image = make_image(category=make_category())
        engine.cache.set('categories:list', 'cached')

        engine.update_image(image.pk, {'title': 'Renamed'})

        assert reload(image).title == 'Renamed'
        assert engine.cache.get('categories:list') == 'cached'

    def test_series_is_not_editable(self, engine, make_image, make_series):
        image = make_image()
        series = make_series()

        with pytest.raises(InvalidReference):
            engine.update_image(image.pk, {'series': series})


class TestCategories:

    def test_new_published_image_is_counted(self, make_image, make_category):
        category = make_category()
        make_image(category=category)
        make_image('draft', category=category, status=MediaImage.ImageStatus.DRAFT)

        assert reload(category).image_count == 1

    def test_recompute_fixes_drift(self, engine, make_image, make_category):
        category = make_category()
        make_image(category=category)
        ImageCategory.objects.filter(pk=category.pk).update(image_count=40)

        result = engine.recompute_category_count(category.pk)

        assert result.image_count == 1
        assert reload(category).image_count == 1

    def test_sync_ignores_none(self, engine, make_category):
        category = make_category()
        assert engine.sync_category_counts(None, category.pk, str(category.pk)) == {category.pk}

    def test_delete_category_uncategorises(self, engine, make_image, make_series, make_category):
        category = make_category()
        a, b = make_image('a', category=category), make_image('b', category=category)
        series = make_series(category=category)

        cleared = engine.delete_category(category.pk)

        assert cleared == 2
        assert not ImageCategory.objects.filter(pk=category.pk).exists()
        a, b, series = reload(a, b, series)
        assert a.category_id is None and b.category_id is None
        assert series.category_id is None

    def test_delete_missing_category(self, engine):
        with pytest.raises(NotFound):
            engine.recompute_category_count(77)
        with pytest.raises(NotFound):
            engine.delete_category(77)


class TestRepair:

    def test_consistent_data_is_untouched(self, engine, make_image, make_series):
        image = make_image()
        make_series(images=[image], cover=image)

        report = engine.repair()

        assert report['series_checked'] == 1
        assert not any(report[k] for k in ('dropped', 'relinked', 'released', 'covers_fixed'))

    def test_drops_missing_ids(self, engine, make_image, make_series):
        a, b = make_image('a'), make_image('b')
        series = make_series(images=[a, b])
        MediaImage.objects.filter(pk=a.pk).delete()

        report = engine.repair()

        assert reload(series).image_ids == [b.pk]
        assert report['dropped'] == [(series.pk, a.pk)]

    def test_fixes_cover_outside_members(self, engine, make_image, make_series):
        member, outsider = make_image('in'), make_image('out')
        series = make_series(images=[member])
        Series.objects.filter(pk=series.pk).update(cover_image=outsider)

        report = engine.repair()

        assert reload(series).cover_image_id == member.pk
        assert report['covers_fixed'] == [(series.pk, outsider.pk, member.pk)]

    def test_relinks_listed_image_without_back_reference(self, engine, make_image, make_series):
        image = make_image()
        series = make_series(images=[image])
        MediaImage.objects.filter(pk=image.pk).update(series=None)

        report = engine.repair()

        assert reload(image).series_id == series.pk
        assert report['relinked'] == [(series.pk, image.pk)]

    def test_image_listed_twice_stays_with_its_back_reference(self, engine, make_image, make_series):
        image = make_image()
        owner = make_series('Owner', images=[image])
        stale = make_series('Stale')
        Series.objects.filter(pk=stale.pk).update(image_ids=[image.pk])

        engine.repair()

        assert reload(owner).image_ids == [image.pk]
        assert reload(stale).image_ids == []
        assert reload(image).series_id == owner.pk

    def test_releases_unlisted_back_reference(self, engine, make_image, make_series):
        image = make_image()
        series = make_series()
        MediaImage.objects.filter(pk=image.pk).update(series=series)

        report = engine.repair()

        assert reload(image).series_id is None
        assert report['released'] == [(series.pk, image.pk)]

    def test_dry_run_writes_nothing(self, engine, make_image, make_series, make_category):
        category = make_category()
        image = make_image(category=category)
        series = make_series(images=[image])
        MediaImage.objects.filter(pk=image.pk).update(series=None)
        ImageCategory.objects.filter(pk=category.pk).update(image_count=9)

        report = engine.repair(recount=True, dry_run=True)

        assert report['relinked'] and report['categories_recounted'] == [(category.pk, 9, 1)]
        assert reload(image).series_id is None
        assert reload(category).image_count == 9
        assert reload(series).image_ids == [image.pk]

    def test_single_series(self, engine, make_series):
        target = make_series('Target')
        make_series('Other')

        report = engine.repair(series_id=target.pk)

        assert report['series_checked'] == 1
        with pytest.raises(NotFound):
            engine.repair(series_id=target.pk + 100)
