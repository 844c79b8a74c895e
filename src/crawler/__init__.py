from crawler.dispatcher import DispatchSummary, Dispatcher, bootstrap
from crawler.jobs import DetailJob, Job, JobResult, JobStatus, ListingJob, SeedJob
from crawler.store import JobStore

__all__ = [
    "DetailJob",
    "DispatchSummary",
    "Dispatcher",
    "Job",
    "JobResult",
    "JobStatus",
    "JobStore",
    "ListingJob",
    "SeedJob",
    "bootstrap",
]
