"""
Flag Watch: polls a game-server statistics API for online players flagged as
possible cheaters and posts join/leave alerts to a Discord webhook.
Rate-limited, paginated fetching with per-server notify/retract reconciliation.
"""
