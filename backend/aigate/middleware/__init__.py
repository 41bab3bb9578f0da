"""
AIGate — Middleware Package
===========================

Middleware Chain:
    Request → [Request ID] → [Logging] → [CORS] → Route Handler

    1. Request ID first, so every later log line (access log and
       orchestrator attempts) carries the same correlation ID
    2. Logging measures status and duration around the handler
    3. CORS is FastAPI's CORSMiddleware
"""
