"""Unit tests for adopting placeholder rows and legacy restart keys."""

import logging

from transfer_metrics.models.metadata_entry import MetadataEntry, get_metadata, set_metadata
from transfer_metrics.models.sample import Sample
from transfer_metrics.services.legacy_adoption import RegisteredInstance, adopt_legacy

REGISTERED = [
    RegisteredInstance("rt-1", "rtorrent", "bittorrent"),
    RegisteredInstance("rt-2", "rtorrent", "bittorrent"),
    RegisteredInstance("am-1", "amule", "ed2k"),
]


def _rows(db):
    return sorted(
        (s.timestamp, s.instance_id, s.total_uploaded) for s in db.query(Sample).all()
    )


def _seed_legacy_keys(db):
    set_metadata(db, "rt_pid", "100")
    set_metadata(db, "rt_accumulated_uploaded", "500")
    set_metadata(db, "rt_accumulated_downloaded", "50")
    set_metadata(db, "rt_last_session_uploaded", "20")
    set_metadata(db, "rt_last_session_downloaded", "2")
    db.commit()


class TestAdoptRows:
    def test_placeholder_rows_go_to_first_instance(self, sync_db_session, add_samples, catalog):
        add_samples(
            (100, "rtorrent", "rtorrent", 0, 0, 10, 0),
            (200, "rtorrent", "rtorrent", 0, 0, 20, 0),
            (100, "amule", "amule", 0, 0, 5, 0),
        )

        report = adopt_legacy(sync_db_session, catalog, REGISTERED)

        assert report.adopted == {"rtorrent": "rt-1", "amule": "am-1"}
        assert report.rows_adopted == 3
        assert _rows(sync_db_session) == [
            (100, "am-1", 5),
            (100, "rt-1", 10),
            (200, "rt-1", 20),
        ]

    def test_collision_keeps_real_row(self, sync_db_session, add_samples, catalog):
        add_samples(
            (100, "rtorrent", "rtorrent", 0, 0, 10, 0),
            (300, "rtorrent", "rtorrent", 0, 0, 30, 0),
            (300, "rt-1", "rtorrent", 0, 0, 999, 0),
        )

        report = adopt_legacy(sync_db_session, catalog, REGISTERED)

        assert report.rows_adopted == 1
        assert report.rows_dropped == 1
        assert _rows(sync_db_session) == [(100, "rt-1", 10), (300, "rt-1", 999)]

    def test_instance_named_after_type_keeps_rows(self, sync_db_session, add_samples, catalog):
        add_samples((100, "amule", "amule", 0, 0, 5, 0))

        report = adopt_legacy(
            sync_db_session, catalog, [RegisteredInstance("amule", "amule")]
        )

        assert report.rows_adopted == 0
        assert _rows(sync_db_session) == [(100, "amule", 5)]

    def test_no_legacy_data_is_noop(self, sync_db_session, add_samples, catalog):
        add_samples((100, "rt-1", "rtorrent", 0, 0, 10, 0))

        report = adopt_legacy(sync_db_session, catalog, REGISTERED)

        assert not report.changed
        assert _rows(sync_db_session) == [(100, "rt-1", 10)]

    def test_empty_registry(self, sync_db_session, catalog):
        report = adopt_legacy(sync_db_session, catalog, [])
        assert report.adopted == {}
        assert not report.changed


class TestMigrateRestartKeys:
    def test_keys_renamed_and_old_removed(self, sync_db_session, catalog):
        _seed_legacy_keys(sync_db_session)

        report = adopt_legacy(sync_db_session, catalog, REGISTERED)

        assert report.metadata_keys_migrated == 5
        assert get_metadata(sync_db_session, "rt-1:pid") == "100"
        assert get_metadata(sync_db_session, "rt-1:accumulated_uploaded") == "500"
        assert get_metadata(sync_db_session, "rt-1:last_session_downloaded") == "2"
        assert get_metadata(sync_db_session, "rt_pid") is None
        assert get_metadata(sync_db_session, "rt-2:pid") is None

    def test_existing_new_key_wins(self, sync_db_session, catalog):
        _seed_legacy_keys(sync_db_session)
        set_metadata(sync_db_session, "rt-1:pid", "7")
        sync_db_session.commit()

        report = adopt_legacy(sync_db_session, catalog, REGISTERED)

        assert report.metadata_keys_migrated == 4
        assert get_metadata(sync_db_session, "rt-1:pid") == "7"
        assert get_metadata(sync_db_session, "rt_pid") is None

    def test_non_pid_types_leave_keys_alone(self, sync_db_session, catalog):
        set_metadata(sync_db_session, "am_pid", "1")
        sync_db_session.commit()

        adopt_legacy(sync_db_session, catalog, REGISTERED)

        assert get_metadata(sync_db_session, "am_pid") == "1"


class TestIdempotence:
    def test_second_run_changes_nothing(self, sync_db_session, add_samples, catalog):
        add_samples(
            (100, "rtorrent", "rtorrent", 0, 0, 10, 0),
            (300, "rtorrent", "rtorrent", 0, 0, 30, 0),
            (300, "rt-1", "rtorrent", 0, 0, 999, 0),
        )
        _seed_legacy_keys(sync_db_session)

        adopt_legacy(sync_db_session, catalog, REGISTERED)
        rows_once = _rows(sync_db_session)
        meta_once = sorted(
            (m.key, m.value) for m in sync_db_session.query(MetadataEntry).all()
        )

        report = adopt_legacy(sync_db_session, catalog, REGISTERED)

        assert not report.changed
        assert _rows(sync_db_session) == rows_once
        assert (
            sorted((m.key, m.value) for m in sync_db_session.query(MetadataEntry).all())
            == meta_once
        )


class TestRegistryCategory:
    def test_mismatched_category_logged(self, sync_db_session, catalog, caplog):
        with caplog.at_level(logging.WARNING, logger="transfer_metrics.services.legacy_adoption"):
            adopt_legacy(
                sync_db_session, catalog, [RegisteredInstance("am-1", "amule", "bittorrent")]
            )

        assert "grouping under ed2k" in caplog.text

    def test_matching_category_quiet(self, sync_db_session, catalog, caplog):
        with caplog.at_level(logging.WARNING, logger="transfer_metrics.services.legacy_adoption"):
            adopt_legacy(sync_db_session, catalog, REGISTERED)

        assert "grouping under" not in caplog.text
