#!/usr/bin/env python3
"""
CLI Commands Package for localci
"""

from .list_jobs import list_jobs
from .run import run

__all__ = ["list_jobs", "run"]
