"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending pool.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. solvency.py - Pool balance matches net collateral plus undistributed commission
2. pool_atomicity.py - All-or-nothing operation semantics
3. lock_period.py - Principal cannot leave before the lock period elapses
4. borrow_conservation.py - Every borrowed unit is accounted for
5. serialization.py - Concurrent callers observe a serial history

These tests use hypothesis for property-based testing.
"""
