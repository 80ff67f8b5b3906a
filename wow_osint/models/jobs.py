"""
Crawl job payloads.

A job is a tagged union on ``kind``::

    CrawlJob = CharacterJob | GuildJob | RealmJob | ItemJob | AuctionJob

Every variant knows its ``queue_name`` and its deterministic ``job_id``,
computed from the natural key of the thing it refreshes:

    character / guild   guid                       "thrall@draenor" → "thrall-draenor"
    realm               "REALM:{connected realm}"  "REALM:1096"
    item                "ITEM:{item id}"           "ITEM:19019"
    auction             "AUCTION:{connected realm}"
    commodity auction   "COMMODITY:{last modified epoch ms}"

Equal natural keys → equal job ids → at most one live job (see ``JobQueue``).
"""

from __future__ import annotations

from datetime import timedelta
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator

from wow_osint.errors import JobValidationError
from wow_osint.models.credential import JobCredentials
from wow_osint.models.item import COMMODITY_REALM_ID
from wow_osint.taxonomy.osint_taxonomy import QueueName, SourceTag
from wow_osint.utils.converters import to_guid, to_slug


class _BaseJob(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    credentials: JobCredentials
    region: str = "eu"
    created_by: Optional[SourceTag] = None


class _EntityJob(_BaseJob):
    """Fields shared by character and guild jobs."""

    name: str
    realm: str
    guid: Optional[str] = None
    id: Optional[int] = None
    force_update: Optional[int] = None
    create_only_unique: bool = False

    @field_validator("name", "realm")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name and realm must not be blank.")
        return v.strip()

    @field_validator("force_update")
    @classmethod
    def validate_force_update(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError(f"force_update must be >= 0 milliseconds, got {v}.")
        return v

    @model_validator(mode="before")
    @classmethod
    def fill_guid(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("guid"):
            name, realm = data.get("name"), data.get("realm")
            if isinstance(name, str) and isinstance(realm, str) and name.strip() and realm.strip():
                data = {**data, "guid": to_guid(name.strip(), to_slug(realm.strip()))}
        return data

    @property
    def job_id(self) -> str:
        if self.guid is None:
            raise ValueError(f"{type(self).__name__} for {self.name}@{self.realm} has no guid.")
        return self.guid

    def force_update_window(self, default: timedelta) -> timedelta:
        """Staleness window for this job; ``force_update`` overrides the default."""
        if self.force_update:
            return timedelta(milliseconds=self.force_update)
        return default


class CharacterJob(_EntityJob):
    kind: Literal["character"] = "character"
    guild: Optional[str] = None
    guild_guid: Optional[str] = None
    guild_id: Optional[int] = None
    guild_rank: Optional[int] = None
    last_modified: Optional[int] = None

    @property
    def queue_name(self) -> QueueName:
        return QueueName.CHARACTERS


class GuildJob(_EntityJob):
    kind: Literal["guild"] = "guild"

    @property
    def queue_name(self) -> QueueName:
        return QueueName.GUILDS


class RealmJob(_BaseJob):
    kind: Literal["realm"] = "realm"
    connected_realm_id: int = Field(gt=0)

    @property
    def queue_name(self) -> QueueName:
        return QueueName.REALMS

    @property
    def job_id(self) -> str:
        return f"REALM:{self.connected_realm_id}"


class ItemJob(_BaseJob):
    kind: Literal["item"] = "item"
    item_id: int = Field(gt=0)

    @property
    def queue_name(self) -> QueueName:
        return QueueName.ITEMS

    @property
    def job_id(self) -> str:
        return f"ITEM:{self.item_id}"


class AuctionJob(_BaseJob):
    """Auction house dump of one connected realm, or the commodity market.

    ``connected_realm_id == 0`` means the region-wide commodity market.
    ``last_modified`` is the epoch-ms timestamp of the previous dump.
    """

    kind: Literal["auction"] = "auction"
    connected_realm_id: int = Field(ge=0)
    last_modified: Optional[int] = None

    @property
    def is_commodity(self) -> bool:
        return self.connected_realm_id == COMMODITY_REALM_ID

    @property
    def queue_name(self) -> QueueName:
        return QueueName.AUCTIONS

    @property
    def job_id(self) -> str:
        if self.is_commodity:
            return f"COMMODITY:{self.last_modified or 0}"
        return f"AUCTION:{self.connected_realm_id}"


CrawlJob = Annotated[
    Union[CharacterJob, GuildJob, RealmJob, ItemJob, AuctionJob],
    Field(discriminator="kind"),
]

_CRAWL_JOB_ADAPTER: TypeAdapter[Any] = TypeAdapter(CrawlJob)


def parse_job(payload: Union[str, bytes, dict[str, Any]]) -> CrawlJob:
    """Validate a raw payload into one of the job variants.

    Raises:
        JobValidationError: If the payload matches no variant.
    """
    try:
        if isinstance(payload, (str, bytes)):
            return _CRAWL_JOB_ADAPTER.validate_json(payload)
        return _CRAWL_JOB_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        kind = payload.get("kind", "unknown") if isinstance(payload, dict) else "unknown"
        raise JobValidationError(str(kind), str(exc)) from exc
