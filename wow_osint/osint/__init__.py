"""
OSINT core: deciding what to refresh and recording what changed.

Modules:
    status        fixed-width partial-fetch status strings.
    reconciler    create / skip / refresh gate for characters and guilds.
    auditor       field diffs, guild-master changes and roster events.
"""
