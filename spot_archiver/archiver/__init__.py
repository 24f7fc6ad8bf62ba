"""
Archiving logic for spot-archiver.

    - reconcile: per-pair diff and append (the blacklist-preserving sync)
    - resolver: descriptor -> playlist ID resolution, target creation
    - job: one run over every configured pair
    - scheduler: cron scheduling of the job
"""

from spot_archiver.archiver.job import (
    ArchivalJob,
    JobReport,
    PairOutcome,
    PairStatus,
    RunStatus,
    load_global_blacklist,
)
from spot_archiver.archiver.reconcile import Reconciler, ReconcileResult, compute_additions
from spot_archiver.archiver.resolver import PlaylistResolver
from spot_archiver.archiver.scheduler import JobScheduler, build_trigger

__all__ = [
    "ArchivalJob",
    "JobReport",
    "PairOutcome",
    "PairStatus",
    "RunStatus",
    "load_global_blacklist",
    "Reconciler",
    "ReconcileResult",
    "compute_additions",
    "PlaylistResolver",
    "JobScheduler",
    "build_trigger",
]
