"""
Job lifecycle.

Provides job records and the status state machine, repositories, the
progress event bus, and the controller that runs each job's pipeline.
"""

from dtf_rip.jobs.controller import JobController
from dtf_rip.jobs.dispatch import DispatchBridge
from dtf_rip.jobs.events import EventBus, Subscription
from dtf_rip.jobs.models import Job, JobEvent, JobStatus
from dtf_rip.jobs.repository import InMemoryJobRepository, JobRepository, JsonJobRepository

__all__ = [
    "DispatchBridge",
    "EventBus",
    "InMemoryJobRepository",
    "Job",
    "JobController",
    "JobEvent",
    "JobRepository",
    "JobStatus",
    "JsonJobRepository",
    "Subscription",
]
