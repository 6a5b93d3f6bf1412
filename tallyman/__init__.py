"""Tallyman: AI-assisted quality scoring for merged pull requests.

Merged pull requests are scored by a language model, recorded once per
``(sha, repo)`` and folded into per-day and per-contributor aggregates.
"""

from __future__ import annotations

__version__ = "0.1.0"
