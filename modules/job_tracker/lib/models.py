from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Optional

RUN_RUNNING = "running"
RUN_SUCCESS = "success"
RUN_ERROR = "error"


@dataclass(frozen=True)
class Candidate:
    """
    A single listing as returned by an extractor (pre-storage).
    The engine stamps source_id when it upserts; extractors never set it.
    """

    external_id: str
    title: str
    url: str
    company: str = ""
    location: str = ""
    description: str = ""
    posted_date: Optional[str] = None  # YYYY-MM-DD
    closing_date: Optional[str] = None  # YYYY-MM-DD
    salary: Optional[str] = None
    job_type: Optional[str] = None
    category: Optional[str] = None

    def as_row(self, source_id: str) -> dict[str, Any]:
        row = asdict(self)
        row["source_id"] = source_id
        return row


@dataclass
class Posting:
    """
    The durable, deduplicated listing. Dedupe key: (source_id, external_id).
    """

    id: int
    source_id: str
    external_id: str
    title: str
    url: str
    company: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    posted_date: Optional[str] = None
    closing_date: Optional[str] = None
    salary: Optional[str] = None
    job_type: Optional[str] = None
    category: Optional[str] = None
    active: bool = True
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Source:
    id: str
    name: str
    url: str
    enabled: bool = True
    last_scraped: Optional[str] = None
    total_jobs: int = 0
    created_at: str = ""
    updated_at: str = ""


@dataclass
class RunLog:
    """
    One ingestion attempt for one source.
    Lifecycle: running -> (success | error), exactly once.
    """

    id: int
    source_id: str
    status: str = RUN_RUNNING
    jobs_found: int = 0
    jobs_added: int = 0
    jobs_updated: int = 0
    error_message: Optional[str] = None
    started_at: str = ""
    completed_at: Optional[str] = None
    source_name: Optional[str] = None  # populated by joined queries only


@dataclass
class RunOutcome:
    """Result of one run_one() call, success or not."""

    source_id: str
    source_name: str
    success: bool
    jobs_found: int = 0
    jobs_added: int = 0
    jobs_updated: int = 0
    error: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"sourceName": self.source_name, "success": False, "error": self.error}
        return {
            "sourceName": self.source_name,
            "success": True,
            "jobsFound": self.jobs_found,
            "jobsAdded": self.jobs_added,
            "jobsUpdated": self.jobs_updated,
        }
