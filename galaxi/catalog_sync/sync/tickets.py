"""Ticket notifications: TickedCreated in, MovieDetails out (command side)."""

from __future__ import annotations

import logging

from ..bus.base import EventBus, StreamRecord
from ..messages import MovieDetails, TickedCreated
from .consumer import EventConsumer

logger = logging.getLogger(__name__)


class TicketCreatedHandler:
    def __init__(self, bus: EventBus, details_topic: str) -> None:
        self.bus = bus
        self.details_topic = details_topic

    async def handle(self, message: TickedCreated, record: StreamRecord) -> None:
        details = MovieDetails(
            function_id=message.function_id,
            num_seat=message.num_seat,
            email=message.email,
        )
        await self.bus.publish(
            self.details_topic, str(message.function_id), details.encode(), details.headers()
        )
        logger.info(
            "Sent movie details notification",
            extra={"function_id": message.function_id, "num_seat": message.num_seat},
        )


class TicketNotifier(EventConsumer):
    def __init__(
        self,
        bus: EventBus,
        topic: str = "ticket-created",
        details_topic: str = "movie-details",
        group_id: str = "movie-tickets",
        max_retries: int = 3,
        retry_delay_ms: int = 100,
    ) -> None:
        super().__init__(
            bus,
            topic,
            group_id,
            handlers={TickedCreated: TicketCreatedHandler(bus, details_topic)},
            max_retries=max_retries,
            retry_delay_ms=retry_delay_ms,
        )
