"""Property-based tests for sync planning invariants."""

from __future__ import annotations

import string
from datetime import UTC, datetime, timedelta

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from keyknox.models.entry import CloudEntry, LocalEntry
from keyknox.services.entry_utils import create_local_entry, modification_date_of
from keyknox.services.sync_storage import compute_sync_plan

PROPERTY_SETTINGS = settings(
    max_examples=250,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

_BASE = datetime(2024, 1, 1, tzinfo=UTC)
_NAME = st.text(alphabet=string.ascii_lowercase + string.digits, min_size=1, max_size=6)
_OFFSETS = st.dictionaries(keys=_NAME, values=st.integers(0, 1000), max_size=10)


def _cloud(offsets: dict[str, int]) -> dict[str, CloudEntry]:
    return {
        name: CloudEntry(
            name=name,
            data=name.encode(),
            creation_date=_BASE,
            modification_date=_BASE + timedelta(milliseconds=offset),
        )
        for name, offset in offsets.items()
    }


def _local(offsets: dict[str, int]) -> dict[str, LocalEntry]:
    return {name: create_local_entry(entry) for name, entry in _cloud(offsets).items()}


class TestSyncPlanProperties:
    @PROPERTY_SETTINGS
    @given(cloud=_OFFSETS, local=_OFFSETS)
    def test_every_name_lands_in_exactly_one_bucket(
        self, cloud: dict[str, int], local: dict[str, int]
    ) -> None:
        plan = compute_sync_plan(_cloud(cloud), _local(local))
        buckets = plan.to_store + plan.to_update + plan.to_delete + plan.no_change
        assert sorted(buckets) == sorted(set(cloud) | set(local))

    @PROPERTY_SETTINGS
    @given(cloud=_OFFSETS, local=_OFFSETS)
    def test_cloud_decides_membership(self, cloud: dict[str, int], local: dict[str, int]) -> None:
        plan = compute_sync_plan(_cloud(cloud), _local(local))
        assert set(plan.to_delete) == set(local) - set(cloud)
        assert set(plan.to_store) == set(cloud) - set(local)

    @PROPERTY_SETTINGS
    @given(cloud=_OFFSETS, local=_OFFSETS)
    def test_only_strictly_older_local_copies_update(
        self, cloud: dict[str, int], local: dict[str, int]
    ) -> None:
        cloud_entries = _cloud(cloud)
        local_entries = _local(local)
        plan = compute_sync_plan(cloud_entries, local_entries)
        for name in plan.to_update:
            assert modification_date_of(local_entries[name]) < cloud_entries[name].modification_date
        for name in plan.no_change:
            assert (
                modification_date_of(local_entries[name]) >= cloud_entries[name].modification_date
            )

    @PROPERTY_SETTINGS
    @given(cloud=_OFFSETS)
    def test_synced_state_is_a_fixed_point(self, cloud: dict[str, int]) -> None:
        plan = compute_sync_plan(_cloud(cloud), _local(cloud))
        assert plan.is_empty
        assert sorted(plan.no_change) == sorted(cloud)
