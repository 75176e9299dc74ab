from __future__ import annotations

from datetime import date

import pytest
from pydantic import ValidationError as PydanticValidationError

from agriprice.exceptions import ValidationError
from agriprice.models import (
    AnchorKind,
    DateAnchor,
    PriceQuery,
    PriceRecord,
    dedupe_records,
)
from agriprice.tests.utils import make_record


class TestPriceRecord:
    def test_accepts_provider_casing(self):
        record = PriceRecord.model_validate(
            {
                "State": "Andhra Pradesh",
                "District": "Kurnool",
                "Market": "Adoni",
                "Commodity": "Onion",
                "Variety": "Local",
                "Grade": "FAQ",
                "Arrival_Date": "15/06/2024",
                "Min_x0020_Price": "1,800",
                "Max_x0020_Price": "2400",
                "Modal_x0020_Price": "2100",
            }
        )
        assert record.market == "Adoni"
        assert record.arrival_date == date(2024, 6, 15)
        assert record.min_price == 1800.0
        assert record.modal_price == 2100.0

    def test_accepts_lowercase_keys_and_iso_dates(self):
        record = PriceRecord.model_validate(
            {"commodity": "Onion", "arrival_date": "2024-06-15", "modal_price": 2100, "arrivals_in_quintal": "35"}
        )
        assert record.arrival_date == date(2024, 6, 15)
        assert record.arrival_quantity == 35.0

    def test_unparsable_amounts_become_absent(self):
        record = PriceRecord.model_validate(
            {"commodity": "Onion", "min_price": "NA", "max_price": "-5", "modal_price": "abc"}
        )
        assert record.min_price is None
        assert record.max_price is None
        assert record.modal_price is None

    def test_price_order_violations_are_tolerated(self):
        record = make_record(min_price=3000, modal_price=2000, max_price=1000)
        assert record.min_price > record.max_price

    def test_commodity_is_required(self):
        with pytest.raises(PydanticValidationError):
            PriceRecord.model_validate({"market": "Adoni"})

    def test_in_scope_matches_commodity_exactly_and_locations_by_substring(self):
        record = make_record(commodity="Onion", district="Kurnool", market="Adoni(Cotton Yard)")
        assert record.in_scope(commodity="onion", market="adoni")
        assert record.in_scope(district="KURN")
        assert not record.in_scope(commodity="Onion Green")
        assert not record.in_scope(district="Guntur")

    def test_dedupe_keeps_first_occurrence(self):
        first = make_record(modal_price=2100)
        duplicate = make_record(modal_price=9999, market="ADONI")
        other_variety = make_record(variety="Bellary")
        assert dedupe_records([first, duplicate, other_variety]) == [first, other_variety]


class TestDateAnchor:
    def test_year(self):
        anchor = DateAnchor.parse("2023")
        assert anchor.kind is AnchorKind.YEAR
        assert anchor.as_date is None
        assert anchor.contains(date(2023, 12, 31))

    def test_month(self):
        anchor = DateAnchor.parse("2023-6")
        assert anchor.kind is AnchorKind.MONTH
        assert anchor.value == "2023-06"
        assert anchor.label == "June 2023"
        assert not anchor.contains(date(2023, 7, 1))

    def test_day(self):
        anchor = DateAnchor.parse("2024-06-15")
        assert anchor.kind is AnchorKind.DAY
        assert anchor.as_date == date(2024, 6, 15)

    def test_day_first_formats(self):
        assert DateAnchor.parse("15-06-2024").as_date == date(2024, 6, 15)
        assert DateAnchor.parse("15/06/2024").as_date == date(2024, 6, 15)

    def test_date_objects(self):
        assert DateAnchor.parse(date(2024, 6, 15)).value == "2024-06-15"

    @pytest.mark.parametrize("value", ["2024-13", "2024-02-30", "last week", "24"])
    def test_invalid_dates_raise(self, value):
        with pytest.raises(ValidationError) as exc_info:
            DateAnchor.parse(value)
        assert exc_info.value.field == "date"


class TestPriceQuery:
    def test_text_fields_are_cleaned(self):
        query = PriceQuery(commodity="  green   chilli ", market="")
        assert query.commodity == "green chilli"
        assert query.market is None

    def test_date_is_normalized(self):
        assert PriceQuery(date="2024-6-5").date == "2024-06-05"
        assert PriceQuery(date=" ").date is None

    def test_invalid_date_is_rejected(self):
        with pytest.raises(PydanticValidationError):
            PriceQuery(date="yesterday")

    def test_limit_bounds(self):
        with pytest.raises(PydanticValidationError):
            PriceQuery(limit=0)

    def test_has_location(self):
        assert not PriceQuery(commodity="Onion").has_location
        assert PriceQuery(market="Adoni").has_location
