# tests/test_job_handlers.py

"""Tests for the queue handlers bound to the engine and notifier."""

import unittest
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from src.models.job import Job
from src.models.price_quote import PriceQuote
from src.services.errors import SourceError, SourceUnavailable
from src.services.job_handlers import JobHandlers
from src.services.job_queue import (
    IMAGE_RECOGNITION,
    NOTIFICATIONS,
    PRICE_UPDATES,
    SCRAPING,
)


def _job(queue: str, payload: dict[str, Any]) -> Job:
    return Job(
        id=1,
        queue=queue,
        job_type="test",
        payload=payload,
        dedup_key="k",
        priority=5,
        run_at=0.0,
        max_attempts=3,
        backoff_base=1.0,
        attempts=1,
    )


def _quote() -> PriceQuote:
    return PriceQuote(product_id="p1", retailer_id="amazon", price=79.99)


class TestJobHandlers(unittest.IsolatedAsyncioTestCase):

    def setUp(self) -> None:
        self.engine = MagicMock()
        self.engine.update_product_price = AsyncMock(return_value=_quote())
        self.engine.scrape_one = AsyncMock(return_value=_quote())
        self.dispatcher = MagicMock()
        self.handlers = JobHandlers(self.engine, self.dispatcher)

    async def test_update_price_calls_engine(self) -> None:
        await self.handlers.update_price(_job(
            PRICE_UPDATES,
            {"product_id": "p1", "retailer_id": "amazon", "priority": "high"},
        ))
        self.engine.update_product_price.assert_awaited_once_with(
            "p1", "amazon",
        )

    async def test_update_price_without_result_fails(self) -> None:
        self.engine.update_product_price.return_value = None
        with self.assertRaises(SourceError):
            await self.handlers.update_price(_job(
                PRICE_UPDATES, {"product_id": "p1", "retailer_id": "amazon"},
            ))

    async def test_scrape_product_passes_url(self) -> None:
        await self.handlers.scrape_product(_job(
            SCRAPING,
            {
                "retailer_id": "ebay",
                "product_url": "https://ebay.com/itm/42",
                "product_id": "p1",
            },
        ))
        self.engine.scrape_one.assert_awaited_once_with(
            "ebay", "https://ebay.com/itm/42", "p1",
        )

    async def test_scrape_product_without_result_fails(self) -> None:
        self.engine.scrape_one.return_value = None
        with self.assertRaises(SourceError):
            await self.handlers.scrape_product(_job(
                SCRAPING,
                {
                    "retailer_id": "ebay",
                    "product_url": "https://ebay.com/itm/42",
                    "product_id": "p1",
                },
            ))

    async def test_recognize_image_without_pipeline(self) -> None:
        with self.assertRaises(SourceUnavailable):
            await self.handlers.recognize_image(
                _job(IMAGE_RECOGNITION, {"scan_id": "s1"})
            )

    async def test_recognize_image_runs_pipeline(self) -> None:
        recognizer = MagicMock()
        handlers = JobHandlers(self.engine, self.dispatcher, recognizer)
        payload = {"scan_id": "s1", "image_url": "https://img/x.jpg"}
        await handlers.recognize_image(_job(IMAGE_RECOGNITION, payload))
        recognizer.assert_called_once_with(payload)

    async def test_send_notification_dispatches(self) -> None:
        await self.handlers.send_notification(_job(
            NOTIFICATIONS,
            {"user_id": "u1", "type": "price_alert", "data": {"price": 1}},
        ))
        self.dispatcher.dispatch.assert_called_once_with(
            "u1", "price_alert", {"price": 1},
        )

    async def test_register_binds_all_queues(self) -> None:
        job_queue = MagicMock()
        self.handlers.register(job_queue)
        bound = {
            call.args[0] for call in job_queue.register_worker.call_args_list
        }
        self.assertEqual(
            bound, {PRICE_UPDATES, IMAGE_RECOGNITION, SCRAPING, NOTIFICATIONS},
        )


if __name__ == "__main__":
    unittest.main()
