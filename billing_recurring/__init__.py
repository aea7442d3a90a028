"""
billing_recurring -- Recurring invoice scheduling engine.

Periodically scans recurring profiles, claims each due occurrence exactly
once via a compare-and-swap UPDATE (safe across concurrent drivers),
materializes an invoice from the profile's template invoice, and appends
every attempt to an immutable run ledger.

Architecture:
    billing_recurring/ is a top-level package built on billing_kernel.
    Nothing in billing_kernel imports from billing_recurring.

Guarantees:
    - At most one SUCCESS run per (profile, occurrence)
    - next_run_at and version advance on every won claim, whatever the outcome
    - Failed occurrences are recorded, never retried (skip-and-advance)
    - Clock injection; no wall-clock reads in the engine
    - Graceful shutdown between profiles
"""
