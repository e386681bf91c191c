"""Emopoints services.

- checkin_service: Daily emotion submissions and the 24 hour cooldown
- points_service: Point ledger and reward catalog
- audit_service: Hash-chained journal of every point movement
- analytics_service: Class-level distribution, trends and submission status
- engagement: Engine tying the above together, plus the HTTP handler

All services pass student identifiers through hash_pii() before logging.
"""
