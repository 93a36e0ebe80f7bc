"""
Event scheduling feature package.

This vertical slice keeps every layer of recurring-event scheduling
co-located (domain types, repositories, services, jobs and API routers)
so the recurrence, attendance and reminder flows can be read end to end.
"""
