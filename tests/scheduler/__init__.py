"""
Job Scheduler Test Suite.

- Codec, store and registry tests (leaf components)
- Selection and self-chaining dispatch tests
- Continuation, change hook and recovery tests
- Queue manager (admin surface) tests
"""
