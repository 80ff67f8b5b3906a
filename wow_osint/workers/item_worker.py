"""Item worker: static item metadata."""

from __future__ import annotations

from datetime import datetime

from wow_osint.db.repositories.item_repo import ItemRepository
from wow_osint.ingestion.blizzard_client import BlizzardClient, parse_item
from wow_osint.models.item import Item
from wow_osint.models.jobs import ItemJob
from wow_osint.workers.base import OUTCOME_PROCESSED, FetchWorker, WorkerServices


class ItemWorker(FetchWorker):
    kind = "item"

    def __init__(self, services: WorkerServices) -> None:
        super().__init__(services)
        self.items = ItemRepository(services.conn)

    async def _execute(self, job: ItemJob, client: BlizzardClient, now: datetime) -> str:
        self.items.upsert(Item(**parse_item(await client.item(job.item_id))))
        return OUTCOME_PROCESSED
