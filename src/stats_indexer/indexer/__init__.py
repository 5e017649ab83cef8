"""Materialized index maintenance: calculator, store, changelog, actions,
mode processor and scheduled runner for each registered logical index."""
