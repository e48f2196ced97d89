"""
Listing search - two-phase hybrid search over marketplace listings.

A full-text index serves ranked candidates, a PostGIS radius phase narrows
them geographically, and a relational fallback keeps search working when
the index is down.
"""

__version__ = "0.1.0"
