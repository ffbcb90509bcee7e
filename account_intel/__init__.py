"""
Account Intelligence Cache

Caches and incrementally synthesizes AI-derived account artifacts:
1. Call briefs, account overviews and health ratings from Claude
2. Action items and contact insights merged across calls and emails
3. Cross-account analytics per user
4. Background warmup, periodic refresh and daily pre-warming
"""

__version__ = "0.1.0"
