"""
Tests: routing table lookups, role-pool ordering, reconciliation, seeding.
"""

import pytest

from opexhub.core.exceptions import ValidationError
from opexhub.models import db as _db
from opexhub.models.auth import User
from opexhub.models.workflow import RoutingEntry
from opexhub.services.routing_table import RoutingTable, add_routing_entry, seed_default_routing


def _make_user(full_name, email, role="STLD", site="NDS", routing_priority=None, is_active=True):
    u = User(full_name=full_name, email=email, site=site, role=role,
             routing_priority=routing_priority, is_active=is_active)
    _db.session.add(u)
    _db.session.flush()
    return u


def test_lookup_returns_active_entry_only(nds_routing):
    table = RoutingTable()
    assert table.lookup("NDS", 2).required_role == "CTSD"
    assert table.lookup("NDS", 9) is None
    assert table.lookup("DHJ", 2) is None


def test_role_pool_is_deterministic():
    _make_user("Meera Joshi", "meera@godeepak.com")
    _make_user("Arjun Patel", "arjun@godeepak.com")
    _make_user("Zoya Khan", "zoya@godeepak.com", routing_priority=2)
    _make_user("Yash Rao", "yash@godeepak.com", routing_priority=1)
    _make_user("Inactive Ina", "ina@godeepak.com", routing_priority=0, is_active=False)
    _make_user("Other Site", "other@godeepak.com", site="DHJ", routing_priority=0)
    _make_user("Other Role", "role@godeepak.com", role="SH", routing_priority=0)

    pool = RoutingTable().resolve_by_role("NDS", "STLD")

    assert [u.email for u in pool] == [
        "yash@godeepak.com",
        "zoya@godeepak.com",
        "arjun@godeepak.com",
        "meera@godeepak.com",
    ]


def test_reconcile_reports_drift_for_engine_owned_stages(nds_routing):
    add_routing_entry("NDS", 4, "MOC Review", "STLD", "manoj.tiwari@godeepak.com")
    add_routing_entry("NDS", 8, "Periodic Status Review with CMO", "CTSD", "ravi.kumar@godeepak.com")
    _db.session.commit()

    mismatches = RoutingTable().reconcile("NDS")

    assert {(m["stage_number"], m["field"]) for m in mismatches} == {(4, "stage_name"), (4, "required_role")}
    name = next(m for m in mismatches if m["field"] == "stage_name")
    assert name["configured"] == "MOC Review"
    assert name["executed"] == "MOC Stage"


def test_reconcile_ignores_table_routed_stages(nds_routing):
    assert RoutingTable().reconcile("NDS") == []


def test_add_routing_entry_validates_email():
    with pytest.raises(ValidationError):
        add_routing_entry("NDS", 1, "Register Initiative", "STLD", "not-an-email")


def test_add_routing_entry_normalises_email():
    entry = add_routing_entry("NDS", 1, "Register Initiative", "STLD", "Manoj.Tiwari@GODEEPAK.COM")
    assert entry.default_user_email.endswith("@godeepak.com")


def test_seed_default_routing_is_idempotent():
    first = seed_default_routing()
    second = seed_default_routing()

    assert first["routing_entries"] == 6
    assert first["users"] > 0
    assert second == {"users": 0, "routing_entries": 0}
    assert RoutingTable().lookup("DHJ", 3).required_role == "SH"
    assert _db.session.query(RoutingEntry).count() == 6
