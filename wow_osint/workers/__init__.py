"""
Fetch workers: one per job kind, driven by ``WorkerPool``.

Modules:
    base                ``FetchWorker`` contract and ``WorkerServices`` wiring.
    character_worker    six-endpoint character refresh with rename handling.
    guild_worker        guild summary, roster diff and membership side effects.
    realm_worker        connected-realm refresh; reloads the realm directory.
    item_worker         static item metadata.
    auction_worker      auction house and commodity snapshots.
    pool                claim, run, and map outcomes onto the queue.
"""
