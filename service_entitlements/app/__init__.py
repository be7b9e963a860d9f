"""
Entitlements package for the Hustl Access Layer.

Owns user records and the message allowance attached to them:

- app.models: users, subscriptions and entitlements.
- app.rules: the entitlement policy (limits, window reset, tier transitions).
- app.persistence: identity store backends (in-memory and PostgreSQL).

Guidelines:
- Quota consumption is atomic per user and keyed by the surrogate id.
- Stores return copies; callers never share mutable state with a store.
"""
