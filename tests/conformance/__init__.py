"""
Conformance Test Suite

Property-based tests for the behaviour every ledger-backed protocol
operation must preserve, whatever sequence of user actions produced it.

The tests are organized by invariant:
1. conservation.py - Token supply and reserve aggregate bounds
2. atomicity.py - All-or-nothing transaction semantics
3. idempotency.py - Duplicate execution handling
4. indices.py - Borrow and lending indices never decrease
5. determinism.py - Reproducible behaviour and content-addressed intents
6. temporal.py - Clock ordering, clone_at() and replay()

Random operation sequences come from strategies.py and use hypothesis.
"""
