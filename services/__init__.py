"""
Publishing services.

- platforms: capability-aware adapters (WordPress, Medium, LinkedIn)
- formatting: per-platform content adaptation
- publisher: multi-platform fan-out, health and analytics roll-ups
- scheduling: schedules, recurrence and the in-memory work queue
- streaming: publishing events and the SSE server
"""
