"""
Authorization Service package for the Tracker Access Layer.

This package decides whether a tenant member may perform an action on a
tracker record. It provides:

- app.main: API surface for authorization checks, policy export and
  status transitions.
- app.policy: capability matrix, object rules, evaluator and the
  row-level-security compiler built from one declarative table.
- app.persistence: PostgreSQL store for memberships and atomic transitions.
- app.security: Redis-backed tracking of cross-tenant attempts.

Guidelines:
- Decisions are never cached; memberships are read fresh for every request.
- Denial is a value; only malformed input raises.
- The application tier must never allow what the data tier denies.
"""
