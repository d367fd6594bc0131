"""Core mathematics and configuration for the game-night wagering engine.

This package contains pure building blocks:

- ``elo``         : expected scores and Elo-style rating updates
- ``odds_math``   : rating → probability → decimal odds (x100), payouts
- ``outcome``     : game outcomes and the winning-pick policy
- ``wager_config``: tunable constants (K-factor, house margin, odds bounds)

Nothing in this package imports from ``gamenight.services`` or
``gamenight.models``.  All modules are side-effect-free and unit-testable in
isolation.
"""
