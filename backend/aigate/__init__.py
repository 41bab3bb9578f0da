"""
AIGate — Package Initializer
============================

What: Resilient multi-provider text-generation layer for the notes platform.
Who:  Imported by the note, chart, chat and flashcard generators, and by the
      operator API in `aigate.main`.

Architecture Note:
    ┌─────────────────────────────────────┐
    │     Routes (operator/caller API)    │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │   InvocationOrchestrator (per domain)│  ← attempt loop, classification
    ├──────────────┬──────────────────────┤
    │ Pool/Catalog │ Budgeter / Monitor   │  ← shared selection state
    ├──────────────┴──────────────────────┤
    │   Provider adapters (Gemini, Groq)  │  ← vendor SDK calls
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
