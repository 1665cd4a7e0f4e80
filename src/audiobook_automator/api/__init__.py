"""External API clients for metadata resolution.

Submodules:
    audible -- Audible catalog search client
    search  -- Fuzzy scoring and best-match selection
"""
