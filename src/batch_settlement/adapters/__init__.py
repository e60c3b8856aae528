"""
Adapters: Concrete implementations of ports.

This layer contains all external integrations:
- Storage adapters (SQLite)
- Settlement gateway adapters (simulated)
- Messaging adapters (EventBus, Telegram)
"""
