"""
Contract tests shared by every PhotoStore variant.
"""

import dataclasses
from datetime import datetime, timedelta

import pytest

from photoindex.db import (
    Database, GroupMember, GroupType, PhotoRecord, SimilarityGroup, SqlPhotoStore,
    configure_database, create_store, MemoryPhotoStore
)
from photoindex.exceptions import InvalidInputError, NotFoundError, StorageFailureError


def make_group(group_type, photo_ids, representative):
    return SimilarityGroup(
        group_type=group_type,
        members=[GroupMember(photo_id=i, is_representative=i == representative) for i in photo_ids],
    )


def lowest_id(group_type, photos):
    """Repick that keeps the lowest surviving id and clears every score."""
    return min(p.id for p in photos), {p.id: None for p in photos}


def failing_repick(group_type, photos):
    raise StorageFailureError("repick unavailable")


class TestPhotos:
    """Photo records."""

    def test_add_assigns_ids(self, store, add_photo):
        first = add_photo()
        second = add_photo()
        assert first.id is not None
        assert second.id != first.id
        assert store.count_photos() == 2

    def test_get_round_trip(self, store, add_photo):
        taken = datetime(2023, 5, 1, 12, 30)
        photo = add_photo(path='/a/b.jpg', size_bytes=1234, width=40, height=30,
                          sha256_hash='ab' * 32, perceptual_hash='ff00', taken_at=taken)
        loaded = store.get_photo(photo.id)
        assert loaded == photo
        assert loaded.pixel_count == 1200
        assert store.get_photo_by_path('/a/b.jpg').id == photo.id

    def test_unknown_photo(self, store):
        assert store.get_photo(999) is None
        assert store.get_photo_by_path('/nope.jpg') is None
        with pytest.raises(NotFoundError):
            store.require_photo(999)

    def test_duplicate_path_rejected(self, store, add_photo):
        add_photo(path='/same.jpg')
        with pytest.raises(InvalidInputError):
            add_photo(path='/same.jpg')
        assert store.count_photos() == 1

    def test_update_hashes_and_description(self, store, add_photo):
        photo = add_photo()
        store.update_hashes(photo.id, 'cd' * 32, 'abcd')
        store.set_description(photo.id, 'A red kite')
        loaded = store.get_photo(photo.id)
        assert (loaded.sha256_hash, loaded.perceptual_hash) == ('cd' * 32, 'abcd')
        assert loaded.description == 'A red kite'

    def test_update_unknown_photo(self, store):
        with pytest.raises(NotFoundError):
            store.update_hashes(42, None, None)
        with pytest.raises(NotFoundError):
            store.set_description(42, 'x')

    def test_query_filters(self, store, add_photo):
        hashed = add_photo(sha256_hash='aa' * 32)
        marked = add_photo(marked_for_deletion=True, perceptual_hash='ff')
        trashed = add_photo(trashed_at=datetime(2024, 1, 1), original_path='/orig.jpg')

        assert [p.id for p in store.query_photos()] == [hashed.id, marked.id, trashed.id]
        assert [p.id for p in store.query_photos(has_sha256=True)] == [hashed.id]
        assert [p.id for p in store.query_photos(has_perceptual_hash=True)] == [marked.id]
        assert [p.id for p in store.query_photos(marked=True)] == [marked.id]
        assert [p.id for p in store.query_photos(trashed=True)] == [trashed.id]
        assert [p.id for p in store.query_photos(marked=False, trashed=False)] == [hashed.id]

    def test_modify_photo_applies_mutation(self, store, add_photo):
        photo = add_photo()
        updated = store.modify_photo(photo.id, lambda p: dataclasses.replace(p, marked_for_deletion=True))
        assert updated.marked_for_deletion
        assert store.get_photo(photo.id).marked_for_deletion

    def test_modify_photo_aborts_on_error(self, store, add_photo):
        photo = add_photo()

        def fail(p):
            raise InvalidInputError("nope")

        with pytest.raises(InvalidInputError):
            store.modify_photo(photo.id, fail)
        assert store.get_photo(photo.id) == photo

    def test_modify_photo_keeps_paths_unique(self, store, add_photo):
        add_photo(path='/taken.jpg')
        other = add_photo(path='/other.jpg')
        with pytest.raises(InvalidInputError):
            store.modify_photo(other.id, lambda p: dataclasses.replace(p, path='/taken.jpg'))
        assert store.get_photo(other.id).path == '/other.jpg'

    def test_modify_unknown_photo(self, store):
        with pytest.raises(NotFoundError):
            store.modify_photo(5, lambda p: p)

    @pytest.mark.parametrize('fields', [
        {'trashed_at': datetime(2024, 1, 1)},
        {'original_path': '/lib/orig.jpg'},
    ])
    def test_half_trashed_record_rejected(self, store, add_photo, fields):
        with pytest.raises(InvalidInputError):
            add_photo(**fields)
        assert store.count_photos() == 0

    def test_modify_to_half_trashed_rejected(self, store, add_photo):
        photo = add_photo()
        with pytest.raises(InvalidInputError):
            store.modify_photo(photo.id, lambda p: dataclasses.replace(p, trashed_at=datetime(2024, 1, 1)))
        assert store.get_photo(photo.id) == photo
        assert store.query_photos(trashed=True) == []


class TestTrashViews:
    """Trash queries over photo records."""

    def test_trashed_before_is_strict_and_ordered(self, store, add_photo):
        cutoff = datetime(2024, 6, 1)
        newer = add_photo(trashed_at=cutoff - timedelta(days=1), original_path='/x1')
        older = add_photo(trashed_at=cutoff - timedelta(days=10), original_path='/x2')
        add_photo(trashed_at=cutoff, original_path='/x3')
        add_photo()
        assert [p.id for p in store.trashed_before(cutoff)] == [older.id, newer.id]

    def test_trash_total_size(self, store, add_photo):
        assert store.trash_total_size() == 0
        add_photo(size_bytes=100, trashed_at=datetime(2024, 1, 1), original_path='/a')
        add_photo(size_bytes=50, trashed_at=datetime(2024, 1, 2), original_path='/b')
        add_photo(size_bytes=1000)
        assert store.trash_total_size() == 150


class TestEmbeddings:
    """Embedding persistence."""

    def test_put_and_get(self, store, add_photo):
        photo = add_photo()
        store.put_embedding(photo.id, [1.0, 2.0, 3.0], 'clip')
        record = store.get_embedding(photo.id, 'clip')
        assert record.dimension == 3
        assert record.vector().tolist() == [1.0, 2.0, 3.0]
        assert store.get_embedding(photo.id, 'other') is None

    def test_put_overwrites(self, store, add_photo):
        photo = add_photo()
        store.put_embedding(photo.id, [1.0, 2.0], 'clip')
        store.put_embedding(photo.id, [5.0, 6.0, 7.0], 'clip')
        assert store.get_embedding(photo.id, 'clip').vector().tolist() == [5.0, 6.0, 7.0]
        assert store.count_embeddings('clip') == 1

    def test_query_by_model(self, store, add_photo):
        a, b = add_photo(), add_photo()
        store.put_embedding(b.id, [1.0], 'clip')
        store.put_embedding(a.id, [2.0], 'clip')
        store.put_embedding(a.id, [3.0, 4.0], 'other')
        assert [r.photo_id for r in store.query_embeddings('clip')] == [a.id, b.id]
        assert store.count_embeddings() == 3
        assert store.count_embeddings('other') == 1

    def test_put_for_unknown_photo(self, store):
        with pytest.raises(NotFoundError):
            store.put_embedding(77, [1.0], 'clip')

    def test_photos_without_embeddings(self, store, add_photo):
        a, b, c = add_photo(), add_photo(), add_photo()
        add_photo(trashed_at=datetime(2024, 1, 1), original_path='/gone')
        store.put_embedding(b.id, [1.0], 'clip')
        assert store.photos_without_embeddings('clip', 10) == [(a.id, a.path), (c.id, c.path)]
        assert store.photos_without_embeddings('clip', 1) == [(a.id, a.path)]


class TestGroups:
    """Similarity group persistence."""

    def test_replace_and_list(self, store, add_photo):
        a, b, c = add_photo(), add_photo(), add_photo()
        stored = store.replace_groups(GroupType.EXACT, [make_group(GroupType.EXACT, [a.id, b.id, c.id], b.id)])
        assert len(stored) == 1
        group = stored[0]
        assert group.id is not None
        assert group.photo_ids == [a.id, b.id, c.id]
        assert group.representative_id == b.id
        assert store.list_groups(GroupType.EXACT) == stored
        assert store.get_group(group.id) == group

    def test_replace_discards_previous_groups_of_type_only(self, store, add_photo):
        a, b, c, d = add_photo(), add_photo(), add_photo(), add_photo()
        store.replace_groups(GroupType.EXACT, [make_group(GroupType.EXACT, [a.id, b.id], a.id)])
        store.replace_groups(GroupType.PERCEPTUAL, [make_group(GroupType.PERCEPTUAL, [a.id, c.id], c.id)])
        store.replace_groups(GroupType.EXACT, [make_group(GroupType.EXACT, [c.id, d.id], d.id)])

        exact = store.list_groups(GroupType.EXACT)
        assert [g.photo_ids for g in exact] == [[c.id, d.id]]
        assert [g.photo_ids for g in store.list_groups(GroupType.PERCEPTUAL)] == [[a.id, c.id]]
        assert len(store.list_groups()) == 2

    def test_replace_with_nothing_clears(self, store, add_photo):
        a, b = add_photo(), add_photo()
        store.replace_groups(GroupType.EXACT, [make_group(GroupType.EXACT, [a.id, b.id], a.id)])
        assert store.replace_groups(GroupType.EXACT, []) == []
        assert store.list_groups() == []

    @pytest.mark.parametrize('ids, representatives', [
        ([1], [1]),
        ([1, 1], [1]),
        ([1, 2], []),
        ([1, 2], [1, 2]),
    ])
    def test_invalid_group_rejected(self, store, add_photo, ids, representatives):
        add_photo(), add_photo()
        group = SimilarityGroup(
            group_type=GroupType.EXACT,
            members=[GroupMember(photo_id=i, is_representative=i in representatives and n == ids.index(i))
                     for n, i in enumerate(ids)],
        )
        with pytest.raises(InvalidInputError):
            store.replace_groups(GroupType.EXACT, [group])

    def test_overlapping_groups_rejected(self, store, add_photo):
        a, b, c = add_photo(), add_photo(), add_photo()
        groups = [make_group(GroupType.EXACT, [a.id, b.id], a.id), make_group(GroupType.EXACT, [b.id, c.id], c.id)]
        with pytest.raises(InvalidInputError):
            store.replace_groups(GroupType.EXACT, groups)

    def test_wrong_type_rejected(self, store, add_photo):
        a, b = add_photo(), add_photo()
        with pytest.raises(InvalidInputError):
            store.replace_groups(GroupType.EXACT, [make_group(GroupType.PERCEPTUAL, [a.id, b.id], a.id)])

    def test_failed_replace_keeps_previous_groups(self, store, add_photo):
        a, b = add_photo(), add_photo()
        before = store.replace_groups(GroupType.EXACT, [make_group(GroupType.EXACT, [a.id, b.id], a.id)])
        with pytest.raises(NotFoundError):
            store.replace_groups(GroupType.EXACT, [make_group(GroupType.EXACT, [a.id, 999], a.id)])
        assert store.list_groups(GroupType.EXACT) == before

    def test_unknown_group(self, store):
        with pytest.raises(NotFoundError):
            store.get_group(123)
        with pytest.raises(NotFoundError):
            store.set_representative(123, 1)

    def test_set_representative(self, store, add_photo):
        a, b, c = add_photo(), add_photo(), add_photo()
        group = store.replace_groups(GroupType.EXACT, [make_group(GroupType.EXACT, [a.id, b.id], a.id)])[0]
        store.set_representative(group.id, b.id)
        assert store.get_group(group.id).representative_id == b.id
        with pytest.raises(NotFoundError):
            store.set_representative(group.id, c.id)

    def test_set_representative_replaces_scores(self, store, add_photo):
        a, b, c = add_photo(), add_photo(), add_photo()
        group = make_group(GroupType.PERCEPTUAL, [a.id, b.id, c.id], a.id)
        for member, score in zip(group.members, [0.0, 4.0, 8.0]):
            member.similarity_score = score
        group = store.replace_groups(GroupType.PERCEPTUAL, [group])[0]

        store.set_representative(group.id, b.id, {a.id: 4.0, b.id: 0.0})
        scores = {m.photo_id: m.similarity_score for m in store.get_group(group.id).members}
        assert scores == {a.id: 4.0, b.id: 0.0, c.id: None}

    def test_set_representative_without_scores_keeps_them(self, store, add_photo):
        a, b = add_photo(), add_photo()
        group = make_group(GroupType.PERCEPTUAL, [a.id, b.id], a.id)
        group.members[1].similarity_score = 2.0
        group = store.replace_groups(GroupType.PERCEPTUAL, [group])[0]
        store.set_representative(group.id, b.id)
        assert store.get_group(group.id).member(b.id).similarity_score == 2.0


class TestDeletePhoto:
    """Photo deletion and its effect on embeddings and groups."""

    def test_removes_photo_and_embeddings(self, store, add_photo):
        photo = add_photo()
        store.put_embedding(photo.id, [1.0], 'clip')
        assert store.delete_photo(photo.id, lowest_id) == []
        assert store.get_photo(photo.id) is None
        assert store.get_embedding(photo.id, 'clip') is None
        with pytest.raises(NotFoundError):
            store.delete_photo(photo.id, lowest_id)

    def test_dissolves_groups_below_two_members(self, store, add_photo):
        a, b = add_photo(), add_photo()
        store.replace_groups(GroupType.EXACT, [make_group(GroupType.EXACT, [a.id, b.id], a.id)])
        assert store.delete_photo(b.id, failing_repick) == []
        assert store.list_groups() == []

    def test_repicks_representative_in_same_call(self, store, add_photo):
        a, b, c = add_photo(), add_photo(), add_photo()
        group = store.replace_groups(GroupType.EXACT, [make_group(GroupType.EXACT, [a.id, b.id, c.id], a.id)])[0]
        assert store.delete_photo(a.id, lowest_id) == [group.id]
        remaining = store.get_group(group.id)
        assert remaining.photo_ids == [b.id, c.id]
        assert remaining.representative_id == b.id
        assert sum(m.is_representative for m in remaining.members) == 1

    def test_repick_scores_are_stored(self, store, add_photo):
        a, b, c = add_photo(), add_photo(), add_photo()
        group = make_group(GroupType.PERCEPTUAL, [a.id, b.id, c.id], a.id)
        group = store.replace_groups(GroupType.PERCEPTUAL, [group])[0]

        def pick_c(group_type, photos):
            return c.id, {b.id: 3.0, c.id: 0.0}

        store.delete_photo(a.id, pick_c)
        members = {m.photo_id: m for m in store.get_group(group.id).members}
        assert members[c.id].is_representative
        assert members[c.id].similarity_score == 0.0
        assert members[b.id].similarity_score == 3.0

    def test_failed_repick_changes_nothing(self, store, add_photo):
        a, b, c = add_photo(), add_photo(), add_photo()
        store.put_embedding(a.id, [1.0], 'clip')
        before = store.replace_groups(GroupType.EXACT, [make_group(GroupType.EXACT, [a.id, b.id, c.id], a.id)])
        with pytest.raises(StorageFailureError):
            store.delete_photo(a.id, failing_repick)
        assert store.get_photo(a.id) == a
        assert store.get_embedding(a.id, 'clip') is not None
        assert store.list_groups() == before

    def test_repick_outside_group_changes_nothing(self, store, add_photo):
        a, b, c, outsider = add_photo(), add_photo(), add_photo(), add_photo()
        before = store.replace_groups(GroupType.EXACT, [make_group(GroupType.EXACT, [a.id, b.id, c.id], a.id)])
        with pytest.raises(NotFoundError):
            store.delete_photo(a.id, lambda group_type, photos: (outsider.id, {}))
        assert store.get_photo(a.id) == a
        assert store.list_groups() == before

    def test_non_representative_keeps_group(self, store, add_photo):
        a, b, c = add_photo(), add_photo(), add_photo()
        group = store.replace_groups(GroupType.EXACT, [make_group(GroupType.EXACT, [a.id, b.id, c.id], a.id)])[0]
        assert store.delete_photo(c.id, failing_repick) == []
        assert store.get_group(group.id).representative_id == a.id


class TestSqlSpecifics:
    """Behaviour only the SQLAlchemy store has."""

    def test_storage_failure_wraps_sqlalchemy_errors(self):
        database = Database('sqlite:///:memory:')
        store = SqlPhotoStore(database)
        with pytest.raises(StorageFailureError):
            store.count_photos()

    def test_file_database_persists(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'sub' / 'index.db'}"
        first = SqlPhotoStore(configure_database({'database': {'url': url}}))
        photo = first.add_photo(PhotoRecord(id=None, path='/p.jpg', filename='p.jpg'))
        first.database.dispose()

        second = SqlPhotoStore(configure_database({'database': {'url': url}}))
        assert second.get_photo(photo.id).path == '/p.jpg'
        assert second.database.check_connection()

    def test_create_store_selects_backend(self):
        assert isinstance(create_store({'database': {'backend': 'memory'}}), MemoryPhotoStore)
        sql = create_store({'database': {'backend': 'sql', 'url': 'sqlite:///:memory:'}})
        assert isinstance(sql, SqlPhotoStore)
        assert sql.count_photos() == 0
        with pytest.raises(ValueError):
            create_store({'database': {'backend': 'nosql'}})
