from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)


class PrismaClientManager:
    """Owns the Prisma connection used for raw ledger queries.

    `prisma` is an optional extra; without it (or without a database URL)
    `client` stays None and the budget monitor runs in its no-ledger mode.
    """

    def __init__(self, database_url: str | None = None) -> None:
        self.database_url = database_url
        self.client: Any | None = None

    async def connect(self) -> None:
        try:
            from prisma import Prisma  # type: ignore
        except ImportError:
            logger.warning("prisma is not installed; usage ledger disabled")
            self.client = None
            return

        kwargs: dict[str, Any] = {}
        if self.database_url:
            kwargs["datasource"] = {"url": self.database_url}
        self.client = Prisma(**kwargs)
        await self.client.connect()

    async def disconnect(self) -> None:
        if self.client is not None:
            await self.client.disconnect()
            self.client = None
