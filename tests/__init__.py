"""Test package marker.

What:
  Marks ``tests`` as a package so ``tests.unit`` and ``tests.e2e`` modules
  import deterministically.

Invariants & Safety:
  - The file stays side-effect free.
"""
