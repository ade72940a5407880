"""
bff_core.sessions

Server-side session package.

Responsibilities:
- Session stores (memory for dev/test, Redis for deployed environments).
- The `Session` handle passed explicitly to every component that touches session state.
- ASGI middleware that loads/persists sessions and manages the signed session cookie.
"""

# Package marker.
