"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending core.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. atomicity.py - Failed operations leave every record unchanged
2. ctoken_ratio.py - The ctoken exchange rate never decreases
3. rounding.py - Fixed-point rounding never manufactures value
4. staleness.py - Stale prices block valuation-dependent operations
5. compounding.py - Interest accrual is idempotent per timestamp

These tests use hypothesis for property-based testing.
"""
