"""
Test suite for steadykey.

Focus areas:
- Canonical serialization determinism
- Registration protocol (first-seen, duplicates, collisions)
- Store contract (atomic insert, expiry, missing-key updates)
"""
