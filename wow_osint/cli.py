"""
WoW OSINT crawler: CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Execute action (DB init, scheduling, worker pass, lookup, etc.).
  5. Report result to stdout.

Install and run::

    pip install -e .
    wow-osint --help
    wow-osint init-db
    wow-osint import-keys --file config/keys.json
    wow-osint schedule realms
    wow-osint request-character Thrall draenor
    wow-osint run-workers --once
    wow-osint audit-log --character thrall-draenor
    wow-osint start-scheduler
"""

from __future__ import annotations

import asyncio
import json
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="wow-osint",
    help="WoW character and guild crawler with a field-level audit trail.",
    add_completion=False,
)


class ScheduleTarget(str, Enum):
    realms = "realms"
    auctions = "auctions"
    commodity = "commodity"
    items = "items"
    characters = "characters"
    guilds = "guilds"


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from wow_osint.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from wow_osint.utils.logging import configure_logging
    configure_logging(config.logging)


@contextmanager
def _connect(config, db_path: Optional[str] = None):
    """Connection with the schema applied (idempotent)."""
    from wow_osint.db.connection import get_connection
    from wow_osint.db.schema import apply_schema

    with get_connection(
        db_path or config.database.db_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        apply_schema(conn)
        yield conn


def _build_pool(conn, config):
    from wow_osint.credentials.auth import AuthClient
    from wow_osint.credentials.pool import CredentialPool

    auth = AuthClient(
        config.api.auth_url.format(region=config.api.region),
        timeout=config.api.timeout_seconds,
    )
    return CredentialPool.from_config(conn, config, auth_client=auth)


def _build_scheduler(conn, config):
    from wow_osint.crawl.policies import CrawlScheduler
    from wow_osint.db.repositories.realm_repo import RealmRepository
    from wow_osint.realms.directory import RealmDirectory

    realms = RealmDirectory(RealmRepository(conn).list_all)
    return CrawlScheduler.from_config(conn, config, _build_pool(conn, config), realms)


async def _fetch_connected_realm_ids(config, credential) -> list[int]:
    from wow_osint.ingestion.blizzard_client import BlizzardClient

    async with BlizzardClient(
        credential.for_job(),
        region=config.api.region,
        locale=config.api.locale,
        timeout=config.api.timeout_seconds,
        base_url=config.api.base_url,
    ) as client:
        return await client.connected_realm_index()


# ── Database & config ─────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(
        None,
        "--db-path",
        help="Override DB path from config (e.g. data/db/test.db).",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Initialize the SQLite database and apply the full schema.

    Safe to run multiple times: all DDL uses IF NOT EXISTS.
    Also runs pending schema migrations.
    """
    from wow_osint.db.migrations import run_migrations
    from wow_osint.db.schema import ALL_TABLE_NAMES

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")

    with _connect(config, target_path) as conn:
        migrations_applied = run_migrations(conn)

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo(f"  Migrations applied: {migrations_applied}")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file (default: config/default.toml).",
    ),
    show_full: bool = typer.Option(
        False,
        "--full",
        help="Print full config including all fields.",
    ),
) -> None:
    """Validate the configuration file and print parsed values.

    Exits with code 1 if the config fails validation.
    """
    config = _load_config_or_exit(config_path)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:      {config.database.db_path}")
    typer.echo(f"  Region / locale:    {config.api.region} / {config.api.locale}")
    typer.echo(f"  Clearance:          {config.credentials.clearance}")
    typer.echo(f"  Error threshold:    {config.credentials.error_threshold}")
    typer.echo(f"  Cooldown (hours):   {config.credentials.cooldown_hours}")
    typer.echo(f"  Worker concurrency: {config.workers.concurrency}")
    typer.echo(f"  Log level:          {config.logging.level}")
    typer.echo(f"  Debug mode:         {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config valid.")


# ── Credentials ───────────────────────────────────────────────────────────────

@app.command("import-keys")
def import_keys(
    keys_file: Optional[str] = typer.Option(
        None,
        "--file",
        "-f",
        help="Keys JSON file. Defaults to config.credentials.keys_file.",
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Seed the credential pool from a keys file; known client ids are skipped.

    \b
    Format:
      {"keys": [{"client": "...", "secret": "...", "tags": ["blizzard"]}]}
    """
    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    path = Path(keys_file or config.credentials.keys_file)
    if not path.exists():
        typer.echo(f"[ERROR] Keys file not found: {path}", err=True)
        raise typer.Exit(code=1)

    with _connect(config) as conn:
        try:
            inserted = _build_pool(conn, config).import_keys(path)
        except (ValueError, KeyError, json.JSONDecodeError) as exc:
            typer.echo(f"[ERROR] Invalid keys file: {exc}", err=True)
            raise typer.Exit(code=1)

    typer.echo(f"[OK] {inserted} new credential(s) imported.")


@app.command("list-credentials")
def list_credentials(
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Show every credential with its circuit state (secrets are not printed)."""
    from wow_osint.db.repositories.credential_repo import CredentialRepository

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with _connect(config) as conn:
        credentials = CredentialRepository(conn).list_all()

    if not credentials:
        typer.echo("No credentials. Run: wow-osint import-keys")
        return
    for c in credentials:
        typer.echo(
            f"  {c.client_id:<36} {c.status.value:<18} errors={c.error_counts:<5} "
            f"tags={','.join(c.tags)} expires={c.expires_at} reset={c.reset_at}"
        )


@app.command("sweep-credentials")
def sweep_credentials(
    no_refresh: bool = typer.Option(False, "--no-refresh", help="Skip token refresh."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Run the circuit-breaker sweep and refresh expiring tokens."""
    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with _connect(config) as conn:
        result = _build_pool(conn, config).sweep(refresh=not no_refresh)

    typer.echo(
        f"  checked={result.checked} reset={result.reset} tripped={result.tripped} "
        f"refreshed={result.refreshed} refresh_failed={result.refresh_failed}"
    )
    typer.echo("[OK] Sweep complete.")


# ── Scheduling ────────────────────────────────────────────────────────────────

@app.command("schedule")
def schedule(
    target: ScheduleTarget = typer.Argument(..., help="What to resync."),
    item_start: Optional[int] = typer.Option(None, "--start", help="First item id (items only)."),
    item_end: Optional[int] = typer.Option(None, "--end", help="Item id upper bound, exclusive."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Run one bulk scheduling policy and enqueue its jobs.

    \b
      realms      one job per connected realm in the upstream index
      auctions    one job per connected realm not snapshotted recently
      commodity   the region-wide commodity snapshot (singleton)
      items       one job per item id in [--start, --end)
      characters  one job per stored character
      guilds      one job per stored guild
    """
    from wow_osint.errors import CredentialPoolExhausted, OsintError

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with _connect(config) as conn:
        scheduler = _build_scheduler(conn, config)
        try:
            match target:
                case ScheduleTarget.realms:
                    credential = scheduler.pool.select(scheduler.clearance)
                    ids = asyncio.run(_fetch_connected_realm_ids(config, credential))
                    count = scheduler.schedule_realms(ids)
                case ScheduleTarget.auctions:
                    count = scheduler.schedule_auctions()
                case ScheduleTarget.commodity:
                    count = scheduler.schedule_commodity()
                case ScheduleTarget.items:
                    count = scheduler.schedule_items(
                        item_start if item_start is not None else config.crawl.item_id_start,
                        item_end if item_end is not None else config.crawl.item_id_end,
                    )
                case ScheduleTarget.characters:
                    count = scheduler.schedule_characters()
                case ScheduleTarget.guilds:
                    count = scheduler.schedule_guilds()
        except CredentialPoolExhausted as exc:
            typer.echo(f"[ERROR] {exc}. Run: wow-osint sweep-credentials", err=True)
            raise typer.Exit(code=1)
        except OsintError as exc:
            typer.echo(f"[ERROR] {exc}", err=True)
            raise typer.Exit(code=1)

    typer.echo(f"[OK] {count} {target.value} job(s) scheduled.")


def _request(kind: str, name: str, realm: str, force_update_hours: Optional[float], config_path: Optional[str]) -> None:
    from datetime import timedelta

    from wow_osint.errors import CredentialPoolExhausted, JobValidationError

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    force_update = timedelta(hours=force_update_hours) if force_update_hours is not None else None
    with _connect(config) as conn:
        scheduler = _build_scheduler(conn, config)
        request = scheduler.request_character if kind == "character" else scheduler.request_guild
        try:
            job, enqueued = request(name, realm, force_update=force_update)
        except JobValidationError as exc:
            typer.echo(f"[ERROR] {exc}", err=True)
            raise typer.Exit(code=1)
        except CredentialPoolExhausted as exc:
            typer.echo(f"[ERROR] {exc}. Run: wow-osint sweep-credentials", err=True)
            raise typer.Exit(code=1)

    if enqueued:
        typer.echo(f"[OK] {kind} job {job.job_id} queued.")
    else:
        typer.echo(f"[OK] {kind} job {job.job_id} already queued.")


@app.command("request-character")
def request_character(
    name: str = typer.Argument(..., help="Character name."),
    realm: str = typer.Argument(..., help="Realm name, slug or id."),
    force_update_hours: Optional[float] = typer.Option(
        None, "--force-update-hours", help="Refresh only if older than this (default from config)."
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Queue a refresh of one character."""
    _request("character", name, realm, force_update_hours, config_path)


@app.command("request-guild")
def request_guild(
    name: str = typer.Argument(..., help="Guild name."),
    realm: str = typer.Argument(..., help="Realm name, slug or id."),
    force_update_hours: Optional[float] = typer.Option(
        None, "--force-update-hours", help="Refresh only if older than this (default from config)."
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Queue a refresh of one guild and its roster."""
    _request("guild", name, realm, force_update_hours, config_path)


# ── Queue ─────────────────────────────────────────────────────────────────────

@app.command("queue-status")
def queue_status(
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Job counts per queue and state, and whether the commodity lock is held."""
    from wow_osint.crawl.policies import COMMODITY_LOCK_KEY
    from wow_osint.queue.job_queue import JobQueue
    from wow_osint.queue.locks import LockStore
    from wow_osint.taxonomy.osint_taxonomy import JobState, QueueName

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with _connect(config) as conn:
        queue = JobQueue.from_config(conn, config)
        typer.echo(f"  {'queue':<12}" + "".join(f"{s.value:>11}" for s in JobState))
        for queue_name in QueueName:
            counts = queue.counts(queue_name)
            typer.echo(f"  {queue_name.value:<12}" + "".join(f"{counts[s.value]:>11}" for s in JobState))
        held = LockStore(conn).is_locked(COMMODITY_LOCK_KEY)
        typer.echo(f"  commodity lock: {'held' if held else 'free'}")


@app.command("drain-queue")
def drain_queue(
    queue_name: str = typer.Argument(..., help="characters, guilds, realms, items or auctions."),
    prefix: str = typer.Option("", "--prefix", help="Only drain job ids starting with this."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Delete waiting and delayed jobs. Active jobs run to completion."""
    from wow_osint.queue.job_queue import JobQueue
    from wow_osint.taxonomy.osint_taxonomy import QueueName

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    valid = {q.value for q in QueueName}
    if queue_name not in valid:
        typer.echo(f"[ERROR] Unknown queue '{queue_name}'. Use one of: {', '.join(sorted(valid))}", err=True)
        raise typer.Exit(code=1)

    with _connect(config) as conn:
        removed = JobQueue.from_config(conn, config).drain(queue_name, job_id_prefix=prefix)

    typer.echo(f"[OK] {removed} job(s) drained from {queue_name}.")


@app.command("run-workers")
def run_workers(
    once: bool = typer.Option(False, "--once", help="Run a single pass and exit."),
    queue: Optional[list[str]] = typer.Option(
        None, "--queue", help="Serve only this queue (repeatable). Default: all."
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Claim queued jobs and run the fetch workers."""
    import signal

    from wow_osint.taxonomy.osint_taxonomy import QueueName
    from wow_osint.workers.pool import WorkerPool

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        queues = tuple(QueueName(q) for q in queue) if queue else None
    except ValueError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    with _connect(config) as conn:
        pool = WorkerPool.from_config(conn, config, queues=queues)

        if once:
            counts = asyncio.run(pool.run_once())
            typer.echo(f"[OK] Worker pass: {counts or 'nothing to do'}")
            return

        async def _serve() -> None:
            stop = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, stop.set)
                except NotImplementedError:
                    signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))
            await pool.run_forever(stop)

        typer.echo("Workers running. Press Ctrl-C to stop.")
        asyncio.run(_serve())
    typer.echo("[OK] Workers stopped.")


# ── Lookups ───────────────────────────────────────────────────────────────────

@app.command("find-realm")
def find_realm(
    query: str = typer.Argument(..., help="Realm id, name, slug or localized name."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Resolve a realm the way the crawler does."""
    from wow_osint.db.repositories.realm_repo import RealmRepository
    from wow_osint.realms.directory import RealmDirectory

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with _connect(config) as conn:
        realm = RealmDirectory(RealmRepository(conn).list_all).find_realm(query)

    if realm is None:
        typer.echo(f"[ERROR] Realm '{query}' not found.", err=True)
        raise typer.Exit(code=1)
    typer.echo(
        f"  id={realm.id} slug={realm.slug} name={realm.name} "
        f"locale_name={realm.locale_name} connected_realm={realm.connected_realm_id}"
    )


@app.command("show")
def show(
    guid: str = typer.Argument(..., help="Character or guild guid, e.g. thrall-draenor."),
    guild: bool = typer.Option(False, "--guild", help="Look up a guild instead of a character."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Print a stored character or guild with its fetch status."""
    from wow_osint.db.repositories.character_repo import CharacterRepository
    from wow_osint.db.repositories.guild_repo import GuildRepository
    from wow_osint.osint.status import CHARACTER_LAYOUT, GUILD_LAYOUT, describe_status

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with _connect(config) as conn:
        entity = GuildRepository(conn).get(guid) if guild else CharacterRepository(conn).get(guid)

    if entity is None:
        typer.echo(f"[ERROR] '{guid}' not found.", err=True)
        raise typer.Exit(code=1)

    layout = GUILD_LAYOUT if guild else CHARACTER_LAYOUT
    typer.echo(json.dumps(entity.model_dump(), indent=2, default=str))
    typer.echo(f"  status {entity.status}: {describe_status(entity.status, layout)}")


@app.command("audit-log")
def audit_log(
    character: Optional[str] = typer.Option(None, "--character", help="Character guid."),
    guild: Optional[str] = typer.Option(None, "--guild", help="Guild guid."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Print the audit history of a character or a guild."""
    from wow_osint.db.repositories.audit_repo import AuditLogRepository

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    if bool(character) == bool(guild):
        typer.echo("[ERROR] Pass exactly one of --character or --guild.", err=True)
        raise typer.Exit(code=1)

    with _connect(config) as conn:
        repo = AuditLogRepository(conn)
        entries = repo.list_for_character(character) if character else repo.list_for_guild(guild)

    if not entries:
        typer.echo("No audit entries.")
        return
    for e in entries:
        typer.echo(
            f"  {e.created_at.isoformat(timespec='seconds')}  {e.action.value:<16} "
            f"{e.original or '':>20} -> {e.updated or '':<20} "
            f"char={e.character_guid or '-'} guild={e.guild_guid or '-'}"
        )


# ── Daemon ────────────────────────────────────────────────────────────────────

@app.command("start-scheduler")
def start_scheduler(
    skip_initial: bool = typer.Option(
        False,
        "--skip-initial",
        help="Wait one full cadence before each task's first run.",
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Run the periodic scheduling policies until Ctrl-C.

    Each task runs as a ``wow-osint`` subprocess; see ``[scheduler]`` in the
    config for cadences.
    """
    from wow_osint.scheduler import SchedulerDaemon, default_cadences

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        daemon = SchedulerDaemon(
            default_cadences(config.scheduler),
            config_path=config_path,
            tick_seconds=config.scheduler.tick_seconds,
            skip_initial=skip_initial,
        )
    except RuntimeError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo("Scheduler running. Press Ctrl-C to stop.")
    daemon.start()
    typer.echo("[OK] Scheduler stopped.")


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    app()
