"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the distribution engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. exact_sum.py - Allocations add up to the total, with no non-positive entries
2. fairness.py - Largest remainder fairness under the proportional policy
3. determinism.py - Identical inputs plan identically
4. isolation.py - A failed recipient never stops the others

These tests use hypothesis for property-based testing.
"""
