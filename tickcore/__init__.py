"""Core logic for digit-tick signal generation and staking.

This package contains pure business logic with no network or storage
dependencies: models, digit statistics, analyzers, the signal bus,
the martingale stake manager and risk-mode transforms. I/O lives in
the tickapp package.
"""
