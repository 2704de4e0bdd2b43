"""
audiencerunner - Resumable batch jobs for spreadsheet-hosted audience tools

Breaks long audience batches into job trees, runs them through a bounded
dispatch entry point and re-invokes it until every job is terminal.
"""

__version__ = "0.1.0"
__author__ = "Audience Tools Team"


__all__ = [
    "AudienceRunnerConfig",
    "Dispatcher",
    "Job",
    "Runner",
    "load_config",
    "get_audiencerunner_home",
]

from .config import AudienceRunnerConfig, load_config, get_audiencerunner_home
from .dispatch import Dispatcher
from .runner import Runner
from .schemas import Job
