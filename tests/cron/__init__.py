"""
Cron Scheduler Test Suite.

- Schedule calculation
- Store persistence and corruption handling
- Concurrency gate and dispatcher lifecycle
- Delivery routing
- Service facade end to end
"""
