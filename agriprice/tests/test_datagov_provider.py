from __future__ import annotations

import unittest
from datetime import date, timedelta
from unittest.mock import patch

import httpx

from agriprice.exceptions import (
    ConfigurationError,
    DataNotAvailableError,
    MalformedPayloadError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    is_transient_error,
)
from agriprice.providers.datagov import DataGovProvider
from agriprice.tests.utils import INVALID_JSON, MockAsyncClient, MockAsyncResponse, run
from agriprice.utils.dates import to_provider_date

CLIENT_PATH = "agriprice.providers.datagov.get_http_client"


def provider_record(day: date, **overrides):
    record = {
        "State": "Andhra Pradesh",
        "District": "Kurnool",
        "Market": "Adoni",
        "Commodity": "Onion",
        "Variety": "Local",
        "Arrival_Date": day.strftime("%d/%m/%Y"),
        "Min_x0020_Price": "1800",
        "Max_x0020_Price": "2400",
        "Modal_x0020_Price": "2100",
    }
    record.update(overrides)
    return record


class DataGovProviderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.provider = DataGovProvider(api_key="test-key")
        self.today = date.today()

    def test_requires_api_key(self) -> None:
        with self.assertRaises(ConfigurationError):
            DataGovProvider(api_key=None)

    def test_build_params(self) -> None:
        params = self.provider.build_params(
            {"commodity": "Onion", "market": "Adoni", "grade": "FAQ"},
            arrival_date=date(2024, 6, 15),
            limit=50,
        )
        self.assertEqual(params["api-key"], "test-key")
        self.assertEqual(params["format"], "json")
        self.assertEqual(params["limit"], 50)
        self.assertEqual(params["offset"], 0)
        self.assertEqual(params["filters[commodity]"], "Onion")
        self.assertEqual(params["filters[market]"], "Adoni")
        self.assertEqual(params["filters[arrival_date]"], "15-06-2024")
        self.assertNotIn("filters[grade]", params)

    def test_url_includes_resource_id(self) -> None:
        provider = DataGovProvider(api_key="k", base_url="https://api.example/resource/", resource_id="abc")
        self.assertEqual(provider.url, "https://api.example/resource/abc")

    def test_fetch_records_parses_mixed_casing(self) -> None:
        responses = [
            MockAsyncResponse(
                {
                    "records": [
                        provider_record(self.today),
                        {
                            "state": "Andhra Pradesh",
                            "district": "Kurnool",
                            "market": "Adoni",
                            "commodity": "Tomato",
                            "arrival_date": self.today.isoformat(),
                            "min_price": 900,
                            "max_price": 1300,
                            "modal_price": 1100,
                        },
                    ]
                }
            )
        ]
        client = MockAsyncClient(responses)
        with patch(CLIENT_PATH, return_value=client):
            records = run(self.provider.fetch_records({"district": "Kurnool"}))

        self.assertEqual([r.commodity for r in records], ["Onion", "Tomato"])
        self.assertEqual(records[0].modal_price, 2100.0)
        self.assertEqual(records[1].arrival_date, self.today)
        url, params = client.calls[0]
        self.assertTrue(url.endswith(DataGovProvider.DEFAULT_RESOURCE_ID))
        self.assertEqual(params["filters[district]"], "Kurnool")

    def test_unreadable_records_are_skipped(self) -> None:
        responses = [
            MockAsyncResponse({"records": [provider_record(self.today), {"Market": "Adoni"}, "junk"]})
        ]
        with patch(CLIENT_PATH, return_value=MockAsyncClient(responses)):
            records = run(self.provider.fetch_records({"market": "Adoni"}))
        self.assertEqual(len(records), 1)

    def test_recency_window_applies_without_date(self) -> None:
        old = self.today - timedelta(days=45)
        responses = [MockAsyncResponse({"records": [provider_record(self.today), provider_record(old)]})]
        with patch(CLIENT_PATH, return_value=MockAsyncClient(responses)):
            records = run(self.provider.fetch_records({"commodity": "Onion"}))
        self.assertEqual([r.arrival_date for r in records], [self.today])

    def test_skip_date_filter_keeps_old_records(self) -> None:
        old = date(2023, 6, 15)
        responses = [MockAsyncResponse({"records": [provider_record(old)]})]
        client = MockAsyncClient(responses)
        with patch(CLIENT_PATH, return_value=client):
            records = run(
                self.provider.fetch_records({"commodity": "Onion"}, arrival_date=old, skip_date_filter=True)
            )
        self.assertEqual(records[0].arrival_date, old)
        self.assertEqual(client.calls[0][1]["filters[arrival_date]"], to_provider_date(old))

    def test_missing_records_key_is_empty(self) -> None:
        responses = [MockAsyncResponse({"status": "ok", "total": 0})]
        with patch(CLIENT_PATH, return_value=MockAsyncClient(responses)):
            self.assertEqual(run(self.provider.fetch_records({"commodity": "Onion"})), [])

    def test_malformed_envelopes(self) -> None:
        for payload in (["not", "an", "object"], {"records": "nope"}, INVALID_JSON):
            with self.subTest(payload=payload):
                with patch(CLIENT_PATH, return_value=MockAsyncClient([MockAsyncResponse(payload)])):
                    with self.assertRaises(MalformedPayloadError):
                        run(self.provider.fetch_records({"commodity": "Onion"}))

    def test_rate_limit(self) -> None:
        responses = [MockAsyncResponse({}, status_code=429, headers={"Retry-After": "30"})]
        with patch(CLIENT_PATH, return_value=MockAsyncClient(responses)):
            with self.assertRaises(ProviderRateLimitError) as ctx:
                run(self.provider.fetch_records({"commodity": "Onion"}))
        self.assertEqual(ctx.exception.retry_after, 30)
        self.assertTrue(self.provider.is_rate_limited())

        # Inside the back-off window no request is made at all
        client = MockAsyncClient([])
        with patch(CLIENT_PATH, return_value=client):
            with self.assertRaises(ProviderRateLimitError):
                run(self.provider.fetch_records({"commodity": "Onion"}))
        self.assertEqual(client.calls, [])

    def test_http_errors(self) -> None:
        for status in (400, 403, 500, 503):
            with self.subTest(status=status):
                responses = [MockAsyncResponse({}, status_code=status)]
                with patch(CLIENT_PATH, return_value=MockAsyncClient(responses)):
                    with self.assertRaises(DataNotAvailableError) as ctx:
                        run(self.provider.fetch_records({"commodity": "Onion"}))
                self.assertEqual(ctx.exception.details["status"], status)

    def test_timeout(self) -> None:
        client = MockAsyncClient([httpx.ReadTimeout("timed out")])
        with patch(CLIENT_PATH, return_value=client):
            with self.assertRaises(ProviderTimeoutError) as ctx:
                run(self.provider.fetch_records({"commodity": "Onion"}))
        self.assertTrue(is_transient_error(ctx.exception))

    def test_connection_error(self) -> None:
        client = MockAsyncClient([httpx.ConnectError("refused")])
        with patch(CLIENT_PATH, return_value=client):
            with self.assertRaises(DataNotAvailableError):
                run(self.provider.fetch_records({"commodity": "Onion"}))


if __name__ == "__main__":
    unittest.main()
