"""
Per-run step log.

Every run appends to one log file per run period (``<log_path>/<run name>.log``).
Progress lines are numbered against a fixed total of declared steps:

    >> [3/10] 2026-10-18 02:00:01 Preparing snapshot structure

Error lines carry a distinct prefix and no step number:

    >>! 2026-10-18 02:00:05 Dir copy warnings: /data/projects
"""

import os
import logging
from datetime import datetime
from typing import List, Optional


logger = logging.getLogger(__name__)

TOTAL_STEPS = 10

PROGRESS_PREFIX = '>>'
ERROR_PREFIX = '>>!'


class RunLog:
    """
    Append-only log for a single orchestrator run.

    ``step()`` advances the step counter, ``info()`` writes a progress line
    under the current step and ``error()`` writes an error line.
    """

    def __init__(self, log_file: str, total_steps: int = TOTAL_STEPS):
        self.log_file = log_file
        self.total_steps = total_steps
        self.step_number = 0
        self.lines: List[str] = []
        self.errors: List[str] = []

        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)

    def step(self, message: str):
        """Advance to the next declared step and log it."""
        self.step_number += 1
        self.info(message)

    def info(self, message: str):
        line = f"{PROGRESS_PREFIX} [{self.step_number}/{self.total_steps}] {self._timestamp()} {message}"
        self._write(line)
        logger.info(message)

    def error(self, message: str):
        line = f"{ERROR_PREFIX} {self._timestamp()} {message}"
        self.errors.append(message)
        self._write(line)
        logger.error(message)

    def append_output(self, output: Optional[str]):
        """Append raw command output (git) to the log file without a prefix."""
        if not output:
            return
        with open(self.log_file, 'a', encoding='utf-8') as f:
            f.write(output if output.endswith('\n') else output + '\n')

    def _write(self, line: str):
        self.lines.append(line)
        with open(self.log_file, 'a', encoding='utf-8') as f:
            f.write(line + '\n')

    @staticmethod
    def _timestamp() -> str:
        return datetime.now().strftime('%Y-%m-%d %H:%M:%S')
