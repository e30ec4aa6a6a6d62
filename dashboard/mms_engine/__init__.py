"""
MMS Engine - membership and attendance engine for a student society dashboard.

This package implements the data layer behind the membership dashboard:
- Members with attendance histories per event type (ISM, NCS, ISS)
- Events that carry an attendance map keyed by member ID
- Subsidy and scholarship eligibility derived from member histories
- Spreadsheet import (upsert by Campus ID) and export

Architecture:
    ┌─────────────┐     ┌─────────────────┐     ┌─────────────────┐
    │ Spreadsheet │────▶│ Import          │────▶│                 │
    │   (xlsx)    │     │ Reconciler      │     │                 │
    └─────────────┘     └─────────────────┘     │                 │
                                                │  DocumentStore  │
    ┌─────────────┐     ┌─────────────────┐     │ (memory/SQLite) │
    │  Member /   │────▶│ Sync Propagator │────▶│                 │
    │ EventService│     │ (batched writes)│     │                 │
    └─────────────┘     └────────┬────────┘     └────────┬────────┘
                                 │ reads                 │ push
                                 ▼                       ▼
                        ┌─────────────────────────────────────────┐
                        │  Live subscriptions (activity-gated)    │
                        └─────────────────────────────────────────┘

Invariants:
    - An event's attendance map and each member's history agree after every
      successful propagation
    - No batch commit exceeds the store's operation limit
    - Eligibility is always derived, never stored

How to change safely:
    - Document keys are persisted; add new keys rather than renaming
    - Keep the legacy "Exco" membership value readable
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
