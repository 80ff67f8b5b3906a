"""Connected-realm worker: refreshes the realm table and the in-memory directory."""

from __future__ import annotations

import logging
from datetime import datetime

from wow_osint.db.repositories.realm_repo import RealmRepository
from wow_osint.ingestion.blizzard_client import BlizzardClient, parse_connected_realm
from wow_osint.models.jobs import RealmJob
from wow_osint.models.realm import Realm
from wow_osint.workers.base import OUTCOME_PROCESSED, FetchWorker, WorkerServices

logger = logging.getLogger(__name__)


class RealmWorker(FetchWorker):
    kind = "realm"

    def __init__(self, services: WorkerServices) -> None:
        super().__init__(services)
        self.realms = RealmRepository(services.conn)

    async def _execute(self, job: RealmJob, client: BlizzardClient, now: datetime) -> str:
        data = await client.connected_realm(job.connected_realm_id)
        realms = [Realm(**fields) for fields in parse_connected_realm(data, job.region)]
        for realm in realms:
            self.realms.upsert(realm)
        self.services.realms.reload()
        logger.debug("Connected realm %d: %d realm(s)", job.connected_realm_id, len(realms))
        return OUTCOME_PROCESSED
