import pytest

from visitor_desk import services
from visitor_desk.exceptions import RoleNotPermitted, ValidationFailed
from visitor_desk.models import Unit, Visitor

pytestmark = pytest.mark.django_db


def test_add_unit_normalises_block(desk_admin):
    unit = services.add_unit(desk_admin, " c ", " 305 ")

    assert (unit.block, unit.house_no) == ("C", "305")
    assert services.unit_exists("C", "305")


def test_duplicate_unit_is_refused_and_size_unchanged(desk_admin, units):
    before = Unit.objects.count()

    with pytest.raises(ValidationFailed) as excinfo:
        services.add_unit(desk_admin, "a", "101")

    assert excinfo.value.error_code == "DuplicateUnit"
    assert Unit.objects.count() == before


def test_unit_requires_block_and_house(desk_admin):
    with pytest.raises(ValidationFailed) as excinfo:
        services.add_unit(desk_admin, "A", "")

    assert excinfo.value.error_code == "MissingField"
    assert excinfo.value.field == "house_no"


def test_non_admin_cannot_add_or_delete_units(officer, units):
    with pytest.raises(RoleNotPermitted):
        services.add_unit(officer, "Z", "1")
    with pytest.raises(RoleNotPermitted):
        services.delete_unit(officer, "A", "101")

    assert Unit.objects.count() == len(units)


def test_units_sort_by_block_then_house_number(desk_admin):
    for block, house in [("B", "2"), ("A", "10"), ("A", "9"), ("A", "101"), ("A", "9B")]:
        services.add_unit(desk_admin, block, house)

    labels = [u.label for u in services.list_units()]

    assert labels == ["A-9", "A-9B", "A-10", "A-101", "B-2"]


def test_list_units_for_one_block(units):
    assert [u.house_no for u in services.list_units(block="a")] == ["101", "102"]


def test_delete_unit_reports_whether_anything_was_removed(desk_admin, units):
    assert services.delete_unit(desk_admin, "A", "102") is True
    assert services.delete_unit(desk_admin, "A", "102") is False
    assert not services.unit_exists("A", "102")


def test_delete_unit_leaves_visitors_and_residents_alone(desk_admin, resident, pending_visitor):
    services.delete_unit(desk_admin, "A", "101")

    pending_visitor.refresh_from_db()
    resident.refresh_from_db()
    assert pending_visitor.resident == "A-101"
    assert resident.unit_no == "A-101"
    assert Visitor.objects.count() == 1
