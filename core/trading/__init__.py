"""
Shared trading core: broker gateway and repository interfaces, portfolio and
order models, and the portfolio cache.
"""
