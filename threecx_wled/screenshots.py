"""Screenshot throttling for scraper diagnostics."""

import logging
import re
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def safe_filename(value: str) -> str:
    return re.sub(r"[^\w\-]", "_", value)


class ScreenshotPolicy:
    """
    Decides whether a screenshot may be taken.

    Three independent caps apply: the global enable flag, a minimum spacing
    between shots and a maximum count per session. ``force`` bypasses the
    spacing and count caps but never the enable flag.
    """

    def __init__(
        self,
        enabled: bool = False,
        min_interval: float = 60.0,
        max_per_session: int = 20,
        output_dir: str = "screenshots",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.enabled = enabled
        self.min_interval = min_interval
        self.max_per_session = max_per_session
        self.output_dir = Path(output_dir)
        self.clock = clock
        self.count = 0
        self.last_taken: Optional[float] = None

    def allow(self, prefix: str, force: bool = False) -> bool:
        if not self.enabled:
            logger.debug(f"Screenshot requested ({prefix}) but screenshots are disabled")
            return False

        if force:
            return True

        if self.count >= self.max_per_session:
            logger.warning(f"Screenshot limit reached ({self.max_per_session}), skipping {prefix}")
            return False

        if self.last_taken is not None:
            elapsed = self.clock() - self.last_taken
            if elapsed < self.min_interval:
                logger.debug(f"Screenshot {prefix} requested too soon ({elapsed:.1f}s < {self.min_interval}s)")
                return False

        return True

    def record(self) -> None:
        self.count += 1
        self.last_taken = self.clock()

    def next_path(self, prefix: str) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S-%f")
        return self.output_dir / f"{safe_filename(prefix)}-screenshot-{timestamp}.png"

    def reset(self) -> None:
        self.count = 0
        self.last_taken = None
