"""Domain layer (pure battle and duet logic).

- Keep scoring, prize and revenue-split rules here.
- Avoid I/O: no DB sessions, no HTTP/FastAPI, no Redis.
- Collaborators (media capture) are passed in; clocks are discrete ticks.
"""
