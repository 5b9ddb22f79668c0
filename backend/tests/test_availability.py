"""
可售查询测试
"""
from datetime import date, timedelta
from decimal import Decimal

import pytest

from booking_engine.exceptions import ValidationError
from booking_engine.models.ledger import InventoryRecord, Property, RatePlan, Room
from booking_engine.models.schemas import AvailabilitySearch
from booking_engine.services.availability_service import (
    AvailabilityService, check_capacity, evaluate_stay, validate_stay_request,
    CLOSED_TO_ARRIVAL, CLOSED_TO_DEPARTURE, INSUFFICIENT_INVENTORY, MAX_STAY,
    MIN_STAY, MISSING_INVENTORY, STOP_SELL
)

from conftest import TENANT_ID, OTHER_TENANT_ID, seed_inventory

START = date(2031, 6, 1)


def make_day(offset: int, available: int = 3, price: str = "100.00", **fields) -> InventoryRecord:
    """未持久化的库存记录（只用于谓词测试）"""
    return InventoryRecord(
        date=START + timedelta(days=offset),
        available_rooms=available,
        total_rooms=3,
        price=Decimal(price),
        currency="EUR",
        min_stay=fields.get("min_stay", 1),
        max_stay=fields.get("max_stay"),
        closed_to_arrival=fields.get("closed_to_arrival", False),
        closed_to_departure=fields.get("closed_to_departure", False),
        stop_sell=fields.get("stop_sell", False),
    )


class TestEvaluateStay:
    """可售谓词测试"""

    def test_available_with_price_stats(self):
        records = [make_day(0, price="100.00"), make_day(1, price="120.00"), make_day(2, price="110.00")]
        result = evaluate_stay(records, START, START + timedelta(days=3), 2)

        assert result.is_available
        assert result.nights == 3
        assert result.min_available == 3
        assert result.min_price == Decimal("100.00")
        assert result.max_price == Decimal("120.00")
        assert result.avg_price == Decimal("110.00")
        assert result.nightly_prices == [Decimal("100.00"), Decimal("120.00"), Decimal("110.00")]

    def test_missing_day_is_unavailable(self):
        records = [make_day(0), make_day(2)]
        result = evaluate_stay(records, START, START + timedelta(days=3), 1)
        assert result.violations == [MISSING_INVENTORY]
        assert result.missing_dates == [START + timedelta(days=1)]

    def test_min_available_across_days(self):
        records = [make_day(0, available=3), make_day(1, available=1)]
        result = evaluate_stay(records, START, START + timedelta(days=2), 2)
        assert INSUFFICIENT_INVENTORY in result.violations
        assert result.min_available == 1

    def test_stop_sell_any_day(self):
        records = [make_day(0), make_day(1, stop_sell=True)]
        result = evaluate_stay(records, START, START + timedelta(days=2), 1)
        assert result.violations == [STOP_SELL]

    def test_closed_to_arrival_only_checks_first_day(self):
        records = [make_day(0), make_day(1, closed_to_arrival=True)]
        assert evaluate_stay(records, START, START + timedelta(days=2), 1).is_available

        records = [make_day(0, closed_to_arrival=True), make_day(1)]
        result = evaluate_stay(records, START, START + timedelta(days=2), 1)
        assert result.violations == [CLOSED_TO_ARRIVAL]

    def test_closed_to_departure_checks_last_day(self):
        records = [make_day(0, closed_to_departure=True), make_day(1)]
        assert evaluate_stay(records, START, START + timedelta(days=2), 1).is_available

        records = [make_day(0), make_day(1, closed_to_departure=True)]
        result = evaluate_stay(records, START, START + timedelta(days=2), 1)
        assert result.violations == [CLOSED_TO_DEPARTURE]

    def test_min_stay_uses_max_across_days(self):
        records = [make_day(0), make_day(1, min_stay=3)]
        result = evaluate_stay(records, START, START + timedelta(days=2), 1)
        assert result.violations == [MIN_STAY]
        assert result.required_min_stay == 3

    def test_max_stay(self):
        records = [make_day(i, max_stay=2) for i in range(3)]
        result = evaluate_stay(records, START, START + timedelta(days=3), 1)
        assert result.violations == [MAX_STAY]

    def test_records_out_of_order(self):
        records = [make_day(1, price="80.00"), make_day(0, closed_to_arrival=True)]
        result = evaluate_stay(records, START, START + timedelta(days=2), 1)
        assert result.violations == [CLOSED_TO_ARRIVAL]


class TestStayRequestValidation:

    def test_valid_request_returns_nights(self):
        today = date(2031, 1, 1)
        assert validate_stay_request(today, today + timedelta(days=2), 2, 0, 1, today=today) == 2

    @pytest.mark.parametrize("check_in_offset,nights,adults,children,rooms", [
        (0, 0, 1, 0, 1),     # 离店不晚于入住
        (-1, 2, 1, 0, 1),    # 入住日期已过
        (0, 91, 1, 0, 1),    # 超过最长入住
        (0, 2, 0, 0, 1),     # 没有成人
        (0, 2, 1, -1, 1),    # 儿童为负
        (0, 2, 1, 0, 0),     # 房间数为 0
    ])
    def test_invalid_requests(self, check_in_offset, nights, adults, children, rooms):
        today = date(2031, 1, 1)
        check_in = today + timedelta(days=check_in_offset)
        with pytest.raises(ValidationError):
            validate_stay_request(check_in, check_in + timedelta(days=nights),
                                  adults, children, rooms, today=today)


class TestCapacity:

    def test_capacity_scales_with_rooms(self):
        room = Room(max_occupancy=3, max_adults=2, max_children=1)
        assert check_capacity(room, 2, 1, 1)
        assert not check_capacity(room, 3, 0, 1)
        assert check_capacity(room, 4, 0, 2)
        assert not check_capacity(room, 2, 2, 1)


class TestAvailabilitySearch:
    """可售搜索测试"""

    def _search(self, db, stay_start, nights=2, **kwargs):
        criteria = AvailabilitySearch(
            check_in_date=stay_start,
            check_out_date=stay_start + timedelta(days=nights),
            **kwargs
        )
        return AvailabilityService(db).search(TENANT_ID, criteria)

    def test_returns_available_candidate(self, db_session, hotel, room, rate_plan,
                                         inventory, stay_start):
        results = self._search(db_session, stay_start, nights=3, adults=2, rooms=1)

        assert len(results) == 1
        result = results[0]
        assert result.room.id == room.id
        assert result.rate_plan_id == rate_plan.id
        assert result.property.name == "Harbor View Hotel"
        assert result.avg_price == Decimal("100.00")
        assert result.total_price == Decimal("300.00")
        assert result.min_available_rooms == 3
        assert result.currency == "EUR"

    def test_rejects_invalid_range(self, db_session, inventory, stay_start):
        with pytest.raises(ValidationError):
            self._search(db_session, stay_start, nights=0)

    def test_excludes_stop_sell_and_missing(self, db_session, room, rate_plan, inventory, stay_start):
        inventory[1].stop_sell = True
        db_session.commit()
        assert self._search(db_session, stay_start, nights=2) == []
        # 超出已有库存的日期
        assert self._search(db_session, stay_start + timedelta(days=6), nights=2) == []

    def test_excludes_by_capacity(self, db_session, inventory, stay_start):
        assert self._search(db_session, stay_start, adults=3, rooms=1) == []
        assert len(self._search(db_session, stay_start, adults=3, rooms=2)) == 1

    def test_filters_and_tenant_isolation(self, db_session, inventory, stay_start):
        assert len(self._search(db_session, stay_start, city="Lisbon")) == 1
        assert self._search(db_session, stay_start, city="Porto") == []
        assert self._search(db_session, stay_start, room_type="suite") == []
        assert len(self._search(db_session, stay_start, amenities=["wifi", "gym"])) == 1
        assert self._search(db_session, stay_start, amenities=["gym"]) == []
        assert self._search(db_session, stay_start, min_price=Decimal("150")) == []
        assert len(self._search(db_session, stay_start, max_price=Decimal("100"))) == 1

        criteria = AvailabilitySearch(check_in_date=stay_start,
                                      check_out_date=stay_start + timedelta(days=2))
        assert AvailabilityService(db_session).search(OTHER_TENANT_ID, criteria) == []

    def test_sorting(self, db_session, hotel, room, rate_plan, inventory, stay_start):
        other = Property(tenant_id=TENANT_ID, name="Alfama Boutique", star_rating=5,
                         city="Lisbon", country="PT", currency="EUR", is_active=True)
        db_session.add(other)
        db_session.commit()
        other_room = Room(tenant_id=TENANT_ID, property_id=other.id, name="Classic Double",
                          room_type="standard", max_occupancy=2, max_adults=2,
                          max_children=0, amenities=["wifi"], is_active=True)
        other_plan = RatePlan(tenant_id=TENANT_ID, property_id=other.id, name="Saver",
                              plan_type="non_refundable", is_active=True)
        db_session.add_all([other_room, other_plan])
        db_session.commit()
        seed_inventory(db_session, other_room, other_plan, stay_start, days=3,
                       price=Decimal("150.00"))

        by_price = self._search(db_session, stay_start)
        assert [r.property.name for r in by_price] == ["Harbor View Hotel", "Alfama Boutique"]

        by_price_desc = self._search(db_session, stay_start, sort_order="desc")
        assert [r.property.name for r in by_price_desc] == ["Alfama Boutique", "Harbor View Hotel"]

        by_rating = self._search(db_session, stay_start, sort_by="rating", sort_order="desc")
        assert by_rating[0].property.star_rating == 5

        by_name = self._search(db_session, stay_start, sort_by="name")
        assert [r.property.name for r in by_name] == ["Alfama Boutique", "Harbor View Hotel"]

    def test_ties_break_by_price_then_name(self, db_session, hotel, room, rate_plan,
                                           inventory, stay_start):
        suite = Room(tenant_id=TENANT_ID, property_id=hotel.id, name="Another Suite",
                     room_type="suite", max_occupancy=3, max_adults=2, max_children=1,
                     amenities=[], is_active=True)
        db_session.add(suite)
        db_session.commit()
        seed_inventory(db_session, suite, rate_plan, stay_start, days=3, price=Decimal("90.00"))

        results = self._search(db_session, stay_start, sort_by="rating")
        # 同一物业评分相同：按价格升序
        assert [r.room.name for r in results] == ["Another Suite", "Deluxe King"]
