"""Direct messaging between portal users.

Components:
    - policy: who may message whom
    - rooms: canonical conversation ids
    - gateway: WebSocket authentication
    - broadcaster: live rooms, send path and read receipts
    - store: DuckDB persistence
    - history: HTTP read path (history, partners, pin/hide)
"""
