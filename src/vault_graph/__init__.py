"""
Vault Graph - a bidirectional link graph engine for markdown note vaults.

Parses ``[[wikilink]]`` tokens, resolves them to note identities, keeps a
consistent backlink index while notes are added, edited, renamed and deleted,
and answers graph queries against immutable snapshots.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("vault-graph")
except PackageNotFoundError:
    __version__ = "0.3.0"
