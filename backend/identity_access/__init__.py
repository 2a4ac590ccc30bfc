"""Identity & access context: ID token verification and local accounts.

Exports:
    `tokens` (Firebase ID token verifier), `accounts` (account records and the
    in-memory store), `accounts_db` (Postgres store) and `domain` (roles and
    the account update schema).
"""
