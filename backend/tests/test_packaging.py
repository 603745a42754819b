"""
Tests for the packaging model: unit conversion, price math, default units.
"""

from decimal import Decimal

import pytest

from stockcore.models import ProductUnit
from stockcore.services.packaging_service import (
    UnitCache,
    best_value_unit,
    calculate_savings,
    find_matching_unit,
    is_better_value,
    price_per_base_unit,
    save_product_unit,
    to_base_units,
    variant_count,
)
from factories import make_product_unit


class TestUnitConversion:
    def test_six_pack_times_two_is_twelve_base_units(self):
        assert to_base_units(2, Decimal("6")) == 12

    def test_missing_or_invalid_pack_counts_as_one(self):
        assert to_base_units(3, None) == 3
        assert to_base_units(3, Decimal("0")) == 3
        assert to_base_units(3, Decimal("-2")) == 3

    def test_fractional_result_rounds_half_up(self):
        assert to_base_units(1, Decimal("2.5")) == 3
        assert to_base_units(3, Decimal("0.5")) == 2
        assert to_base_units(1, Decimal("0.4")) == 0

    def test_variant_count_floors(self):
        assert variant_count(88, Decimal("6")) == 14
        assert variant_count(5, Decimal("6")) == 0
        assert variant_count(-4, Decimal("1")) == 0

    def test_variant_count_is_zero_for_bad_pack(self):
        assert variant_count(100, Decimal("0")) == 0
        assert variant_count(100, None) == 0


class TestPriceMath:
    def test_price_per_base_unit_divides_by_pack(self):
        unit = ProductUnit(price_cents=1000, pack_qty=Decimal("4"))
        assert price_per_base_unit(unit) == Decimal("250")

    def test_price_per_base_unit_returns_raw_price_for_bad_pack(self):
        assert price_per_base_unit(ProductUnit(price_cents=1000, pack_qty=Decimal("0"))) == Decimal("1000")
        assert price_per_base_unit(ProductUnit(price_cents=1000, pack_qty=Decimal("-1"))) == Decimal("1000")

    def test_calculate_savings(self):
        unit = ProductUnit(price_cents=1000, pack_qty=Decimal("6"))
        assert calculate_savings(unit, 200) == 200
        assert calculate_savings(unit, 100) == 0
        assert calculate_savings(unit, 0) == 0

    def test_is_better_value(self):
        six = ProductUnit(price_cents=1000, pack_qty=Decimal("6"))
        single = ProductUnit(price_cents=200, pack_qty=Decimal("1"))
        assert is_better_value(six, single) is True
        assert is_better_value(single, six) is False

    def test_best_value_unit(self, db_session, product_a, six_pack, single_a):
        # 1000/6 per piece beats 200 per piece
        assert best_value_unit(product_a.id).id == six_pack.id

    def test_best_value_unit_ignores_unavailable(self, db_session, product_a, six_pack, single_a):
        six_pack.is_available = False
        db_session.commit()
        assert best_value_unit(product_a.id).id == single_a.id


class TestDefaultUnit:
    def test_saving_default_clears_previous_default(self, db_session, product_a, six_pack):
        assert six_pack.is_default is True

        newer = ProductUnit(product_id=product_a.id, pack_qty=Decimal("12"), price_cents=1800, is_default=True)
        save_product_unit(newer)

        db_session.expire_all()
        defaults = db_session.query(ProductUnit).filter_by(product_id=product_a.id, is_default=True).all()
        assert [u.id for u in defaults] == [newer.id]

    def test_default_is_scoped_per_product(self, db_session, product_a, product_b, six_pack):
        other = ProductUnit(product_id=product_b.id, pack_qty=Decimal("1"), price_cents=500, is_default=True)
        save_product_unit(other)

        db_session.expire_all()
        assert db_session.get(ProductUnit, six_pack.id).is_default is True

    def test_rejects_non_positive_pack(self, db_session, product_a):
        with pytest.raises(ValueError):
            save_product_unit(ProductUnit(product_id=product_a.id, pack_qty=Decimal("0")))

    def test_missing_pack_defaults_to_one(self, db_session, product_a):
        unit = save_product_unit(ProductUnit(product_id=product_a.id, pack_qty=None, price_cents=100))
        assert Decimal(unit.pack_qty) == Decimal("1")

    def test_find_matching_unit_prefers_default(self, db_session, product_a, single_a, six_pack):
        assert find_matching_unit(product_a.id).id == six_pack.id
        assert find_matching_unit(product_a.id, single_a.id).id == single_a.id

    def test_find_matching_unit_rejects_foreign_unit(self, db_session, product_a, product_b, six_pack):
        assert find_matching_unit(product_b.id, six_pack.id) is None


class TestUnitCache:
    def test_caches_hits_only(self, db_session, product_a, six_pack):
        cache = UnitCache()
        assert cache.pack_qty_for(six_pack.id) == Decimal("6")
        assert cache.pack_qty_for(999999) == Decimal("1")
        assert cache.pack_qty_for(None) == Decimal("1")
        assert len(cache) == 1

    def test_clear(self, db_session, product_a, six_pack):
        cache = UnitCache()
        cache.get(six_pack.id)
        cache.clear()
        assert len(cache) == 0

    def test_caches_are_independent(self, db_session, product_a, six_pack):
        first = UnitCache()
        first.get(six_pack.id)
        assert len(UnitCache()) == 0

    def test_bad_pack_snapshot_falls_back_to_one(self, db_session, product_a):
        broken = make_product_unit(db_session, product_a, pack_qty="0")
        assert UnitCache().pack_qty_for(broken.id) == Decimal("1")
