"""
Ingestion layer: upstream API clients and response parsers.

Submodules:
  blizzard_client   async Profile / Game Data API client and ``parse_*`` helpers

Credentials are not read here: every call uses the token embedded in the
job (see ``wow_osint.credentials``).
"""
