"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the vault system.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. lock_invariant.py - Active locks never exceed the vault balance
2. settlement_rules.py - Reward is all-or-nothing and paid at most once
3. conservation.py - Instructions never create or destroy lamports
4. atomicity.py - Rejected operations leave no partial effect
5. idempotency.py - Resubmitted instructions are never re-applied
6. determinism.py - Reproducible addresses, accrual and rewards
7. temporal.py - Forward-only time, maturity and accrual timing

These tests use hypothesis for property-based testing.
"""
