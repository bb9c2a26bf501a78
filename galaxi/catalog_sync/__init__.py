"""
Galaxi catalog sync - keeps the movie query side consistent with the command side.

The catalog is split across two cooperating services:
- A command side owning the authoritative record of each movie (SQLite)
- A query side serving reads from a search index fronted by a TTL cache

The two sides share no transaction. They are kept consistent only through
events carried on a message bus.

Architecture:
    ┌─────────────┐     ┌───────────────┐     ┌──────────────────┐
    │   Admin     │────▶│ Command side  │────▶│ MovieStore       │
    │   (CLI)     │     │ service       │     │ (authoritative)  │
    └─────────────┘     └───────┬───────┘     └──────────────────┘
                                │ MovieCreated / Updated / Deleted
                                ▼
                        ┌─────────────────────────────────────────┐
                        │      Event bus (Kafka / in-memory)      │
                        └─────────────────────────────────────────┘
                                │                    │
                                ▼                    ▼
                        ┌───────────────┐    ┌───────────────┐
                        │ Synchronizer  │    │ Availability  │
                        │ consumers     │    │ responder     │
                        └───┬───────┬───┘    └───────┬───────┘
                            │       │ invalidate     │
                            ▼       ▼                ▼
                     ┌──────────┐ ┌───────┐   ┌──────────┐
                     │ Search   │ │ Cache │   │ Search   │
                     │ index    │ │(Redis)│   │ index    │
                     └──────────┘ └───────┘   └──────────┘

Invariants:
    - The authoritative store is the source of truth
    - The search index and every cache entry are derived state
    - Cache invalidation always follows the index write it belongs to
    - Cache failures never surface to callers; index failures always do

How to change safely:
    - Every consumer must stay idempotent (delivery is at-least-once)
    - Persisted cache keys are a compatibility surface, do not rename them
    - Message wire shapes are consumed by other services, add fields only
"""

from ._version import __version__

__all__ = ["__version__"]
