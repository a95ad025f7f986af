#!/usr/bin/env python3
"""Job scoped logging."""

import logging


class JobLogger(logging.LoggerAdapter):
    """Prefixes every record with ``[<workflow>/<job>]``."""

    def __init__(self, logger: logging.Logger, job: str, raw_output: bool = False):
        super().__init__(logger, {"job": job, "raw_output": raw_output})

    def process(self, msg, kwargs):
        kwargs.setdefault("extra", {}).update(self.extra)
        if self.extra.get("raw_output"):
            return f"[{self.extra['job']}]   | {msg}", kwargs
        return f"[{self.extra['job']}] {msg}", kwargs

    def raw(self) -> "JobLogger":
        """Logger for step process output lines."""
        return JobLogger(self.logger, self.extra["job"], raw_output=True)


def job_logger(job: str) -> JobLogger:
    return JobLogger(logging.getLogger("localci.job"), job)
