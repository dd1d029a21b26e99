from __future__ import annotations

from datetime import datetime, timezone
import time
import uuid

import pytest

from tokenshift.services.rotation.ids import backup_id_for, generate_rotation_id, uuid7


def test_uuid7_monotonicity():
    ts = time.time()
    first = uuid7(ts)
    second = uuid7(ts + 0.001)
    assert first.int < second.int
    assert first.version == 7


def test_uuid7_rejects_negative_timestamp():
    with pytest.raises(ValueError):
        uuid7(-1)


def test_rotation_ids_are_uuid_strings_ordered_by_creation():
    earlier = generate_rotation_id(datetime(2026, 1, 1, tzinfo=timezone.utc))
    later = generate_rotation_id(datetime(2026, 1, 2, tzinfo=timezone.utc))
    assert len(earlier) == 36  # canonical uuid string length
    assert uuid.UUID(earlier).version == 7
    assert earlier < later


def test_backup_id_is_sortable_utc_stamp():
    moment = datetime(2026, 3, 1, 12, 30, 5, 42, tzinfo=timezone.utc)
    assert backup_id_for(moment) == "20260301T123005000042Z"
