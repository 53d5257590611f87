"""
Integrations for the Vellum bridge

Key Integrations:
- bus: HTTP client for the bus sidecar on each server of the network
- discord_sync: Discord channel relay, send queue and topic
- console: Local game server console and process pipes
- essentials: Read-only lookup of player name prefixes and postfixes
"""
