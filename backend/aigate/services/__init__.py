# Services package init
"""
AIGate — Services Layer
=======================

What:  The invocation core. Routes are a thin shell around these classes.
Why:   In-process generators (notes, charts, chat, flashcards) and the HTTP
       API call the same orchestrator, so the core must not depend on HTTP.

Service Inventory:
    - CredentialPool:         round-robin API keys with cooldowns
    - ModelCatalog:           priority-ordered models with cooldowns
    - PromptBudgeter:         token estimation and prompt truncation
    - TokenBudgetMonitor:     per-domain daily token accounting
    - ProviderAdapter (abstract): vendor interface
    - GeminiProvider / GroqProvider: concrete vendors
    - InvocationOrchestrator: the attempt loop tying the above together
    - OrchestratorRegistry:   one orchestrator per configured domain
"""
