"""
Integration tests for the Launch Trader.

These tests drive the real stream parser, engine, scheduler and submitter
together. Only the execution service's HTTP responses are faked.

Run with:
    pytest tests/integration/ -v -m integration

Skip with:
    pytest -m "not integration"
"""
