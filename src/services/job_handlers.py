# src/services/job_handlers.py

"""Handlers binding each queue to the engine or a collaborator."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from src.models.job import Job
from src.services.errors import SourceError, SourceUnavailable
from src.services.job_queue import (
    IMAGE_RECOGNITION,
    NOTIFICATIONS,
    PRICE_UPDATES,
    SCRAPING,
    JobQueue,
)
from src.services.notifier import NotificationDispatcher
from src.services.price_engine import PriceEngine

logger = logging.getLogger("price_engine.handlers")

# Receives the image-recognition job payload, returns anything
RecognitionPipeline = Callable[[dict[str, Any]], Any]


class JobHandlers:
    """The four queue handlers.

    A handler returns normally on success and raises to request a
    retry.  "No adapter produced a price" counts as a failure.
    """

    def __init__(
        self,
        engine: PriceEngine,
        dispatcher: NotificationDispatcher | None = None,
        recognizer: RecognitionPipeline | None = None,
    ) -> None:
        self.engine = engine
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.recognizer = recognizer

    def register(self, job_queue: JobQueue) -> None:
        job_queue.register_worker(PRICE_UPDATES, self.update_price)
        job_queue.register_worker(IMAGE_RECOGNITION, self.recognize_image)
        job_queue.register_worker(SCRAPING, self.scrape_product)
        job_queue.register_worker(NOTIFICATIONS, self.send_notification)

    async def update_price(self, job: Job) -> None:
        product_id = job.payload["product_id"]
        retailer_id = job.payload["retailer_id"]
        logger.info(
            "Updating price for %s at %s", product_id, retailer_id,
        )
        quote = await self.engine.update_product_price(
            product_id, retailer_id,
        )
        if quote is None:
            raise SourceError(
                f"no price for {product_id} at {retailer_id}"
            )

    async def scrape_product(self, job: Job) -> None:
        product_id = job.payload["product_id"]
        retailer_id = job.payload["retailer_id"]
        logger.info("Scraping %s at %s", product_id, retailer_id)
        quote = await self.engine.scrape_one(
            retailer_id, job.payload["product_url"], product_id,
        )
        if quote is None:
            raise SourceError(
                f"scrape of {job.payload['product_url']} found no price"
            )

    async def recognize_image(self, job: Job) -> None:
        if self.recognizer is None:
            raise SourceUnavailable("no image recognition pipeline configured")
        logger.info("Recognizing image for scan %s", job.payload["scan_id"])
        await asyncio.to_thread(self.recognizer, dict(job.payload))

    async def send_notification(self, job: Job) -> None:
        await asyncio.to_thread(
            self.dispatcher.dispatch,
            job.payload["user_id"],
            job.payload["type"],
            job.payload.get("data") or {},
        )
