"""
Sparkbid Backend Modules

- auth: Users provisioned by the identity provider, profile and availability
- jobs: Job lifecycle, reviews, marketplace teardown
- bids: Bid ledger and the single-winner accept
- escrow: Escrow holds, payments, provider capture callback
- conversations: Owner <-> electrician messaging after acceptance
- notifications: Lifecycle events, live sessions, push fallback
- realtime: SSE and WebSocket transports
"""
