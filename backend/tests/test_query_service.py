"""
Query/pagination engine tests.

Verifies:
- paging defaults, caps and fallbacks for malformed input
- unknown sort keys fall back to the listing default instead of failing
- case-insensitive substring search across the listing's fields
- total_count is exact even when the page is past the end
"""

import pytest

from stockroom.services import item_service, movement_service, user_service
from stockroom.services.query_service import QueryParameters, PagedResult
from stockroom.models import UserRole


class TestQueryParameters:

    def test_defaults(self):
        params = QueryParameters.from_args({})
        assert params.page_number == 1
        assert params.page_size == 20
        assert params.search_term is None
        assert params.sort_by is None
        assert params.sort_order is None

    def test_camel_and_snake_case_names(self):
        camel = QueryParameters.from_args({"pageNumber": "3", "pageSize": "5", "searchTerm": "glove",
                                           "sortBy": "sku", "sortOrder": "DESC"})
        snake = QueryParameters.from_args({"page_number": "3", "page_size": "5", "search_term": "glove",
                                           "sort_by": "sku", "sort_order": "desc"})
        assert camel == snake
        assert camel.sort_order == "desc"
        assert camel.offset == 10

    @pytest.mark.parametrize("raw,expected", [("500", 100), ("0", 20), ("-4", 20), ("abc", 20), ("", 20)])
    def test_page_size_bounds(self, raw, expected):
        assert QueryParameters.from_args({"pageSize": raw}).page_size == expected

    @pytest.mark.parametrize("raw,expected", [("0", 1), ("-2", 1), ("x", 1), ("7", 7)])
    def test_page_number_bounds(self, raw, expected):
        assert QueryParameters.from_args({"pageNumber": raw}).page_number == expected

    def test_unknown_sort_order_is_ignored(self):
        assert QueryParameters(sort_order="sideways").sort_order is None

    def test_blank_search_term_is_none(self):
        assert QueryParameters(search_term="   ").search_term is None


def test_paged_result_page_math():
    result = PagedResult(items=[], total_count=41, page_number=2, page_size=20)
    assert result.total_pages == 3
    assert result.has_previous_page is True
    assert result.has_next_page is True

    last = PagedResult(items=[], total_count=40, page_number=2, page_size=20)
    assert last.total_pages == 2
    assert last.has_next_page is False

    empty = PagedResult(items=[], total_count=0, page_number=1, page_size=20)
    assert empty.total_pages == 0
    assert empty.has_previous_page is False
    assert empty.has_next_page is False


@pytest.fixture
def catalogue(db_session, manager):
    rows = [
        ("BOOT-01", "Steel-toe boots", "Footwear"),
        ("GLV-01", "Nitrile gloves", "Hand protection"),
        ("GLV-02", "Leather gloves", "Hand protection"),
        ("HLM-01", "Safety helmet", "Head protection"),
        ("MSK-01", "Dust mask 50%", "Respiratory"),
    ]
    return [
        item_service.create_item(patch={"sku": sku, "name": name, "category": cat}, operator_id=manager.id)
        for sku, name, cat in rows
    ]


class TestItemListing:

    def test_default_sort_is_name_ascending(self, catalogue):
        page = item_service.list_items(QueryParameters())
        names = [i["name"] for i in page["items"]]
        assert names == sorted(names)
        assert page["total_count"] == 5

    def test_unknown_sort_key_falls_back(self, catalogue):
        page = item_service.list_items(QueryParameters(sort_by="password_hash"))
        assert [i["name"] for i in page["items"]] == sorted(i.name for i in catalogue)

    def test_sort_by_sku_descending(self, catalogue):
        page = item_service.list_items(QueryParameters(sort_by="SKU", sort_order="desc"))
        assert [i["sku"] for i in page["items"]] == ["MSK-01", "HLM-01", "GLV-02", "GLV-01", "BOOT-01"]

    def test_search_is_case_insensitive_across_fields(self, catalogue):
        by_name = item_service.list_items(QueryParameters(search_term="GLOVES"))
        assert {i["sku"] for i in by_name["items"]} == {"GLV-01", "GLV-02"}

        by_category = item_service.list_items(QueryParameters(search_term="head prot"))
        assert [i["sku"] for i in by_category["items"]] == ["HLM-01"]

    def test_search_treats_wildcards_literally(self, catalogue):
        page = item_service.list_items(QueryParameters(search_term="50%"))
        assert [i["sku"] for i in page["items"]] == ["MSK-01"]
        assert item_service.list_items(QueryParameters(search_term="%"))["total_count"] == 1

    def test_count_is_exact_past_the_last_page(self, catalogue):
        page = item_service.list_items(QueryParameters(page_number=4, page_size=2))
        assert page["items"] == []
        assert page["total_count"] == 5
        assert page["total_pages"] == 3
        assert page["has_next_page"] is False

    def test_pages_do_not_overlap(self, catalogue):
        first = item_service.list_items(QueryParameters(page_number=1, page_size=2))
        second = item_service.list_items(QueryParameters(page_number=2, page_size=2))
        third = item_service.list_items(QueryParameters(page_number=3, page_size=2))
        skus = [i["sku"] for p in (first, second, third) for i in p["items"]]
        assert len(skus) == 5
        assert len(set(skus)) == 5


class TestMovementListing:

    def test_default_is_newest_first_and_searchable_by_item_and_people(self, item, manager, employee, clock):
        movement_service.register_checkout(item_id=item.id, operator_id=manager.id, quantity=1, recipient_id=employee.id)
        clock.advance(minutes=1)
        latest = movement_service.register_checkin(item_id=item.id, operator_id=manager.id, quantity=1)

        page = movement_service.list_movements(QueryParameters())
        assert page["total_count"] == 3
        assert page["items"][0]["id"] == latest.id

        by_recipient = movement_service.list_movements(QueryParameters(search_term="eli emp"))
        assert [m["type"] for m in by_recipient["items"]] == ["CHECKOUT"]

        by_sku = movement_service.list_movements(QueryParameters(search_term="glv-001"))
        assert by_sku["total_count"] == 3

        by_quantity = movement_service.list_movements(QueryParameters(sort_by="quantity", sort_order="desc"))
        assert by_quantity["items"][0]["quantity"] == 10


def test_user_listing_search_and_sort(db_session, manager, hr_user, employee):
    page = user_service.list_users(QueryParameters(sort_by="email"))
    assert [u["email"] for u in page["items"]] == sorted(
        ["manager@stockroom.test", "hr@stockroom.test", "employee@stockroom.test"]
    )
    by_cost_center = user_service.list_users(QueryParameters(search_term="cc-100"))
    assert [u["role"] for u in by_cost_center["items"]] == [UserRole.EMPLOYEE.value]
