# Routes package init
"""
AIGate — API Routes Package
===========================

Route Inventory:
    - generate.py: POST /api/generate/{domain}              (run one generation)
    - status.py:   GET  /api/status                         (all domains)
                   GET  /api/status/{domain}                (one domain)
                   POST /api/status/{domain}/cooldowns/reset
                   POST /api/status/{domain}/budget/reset
    - health.py:   GET  /health                             (per-domain availability)

Routes stay thin: resolve the domain's orchestrator, call it, shape the
response. Terminal generation failures become exceptions here and are
rendered by the handlers registered in main.py.
"""
