"""
callqueue: business-hours callback scheduler for refund-request calls.

NOTE:
This package __init__ MUST stay lightweight. Importing a submodule
(e.g. callqueue.scheduling.business_hours) must not pull in FastAPI.
"""

__all__: list[str] = []
