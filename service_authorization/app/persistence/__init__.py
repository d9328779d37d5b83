"""
Persistence package for the Authorization Service.

Provides the asyncpg-backed store for tenant memberships, record snapshots,
atomic status transitions and installation of compiled storage policies.
"""
