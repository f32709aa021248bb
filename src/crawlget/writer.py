from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from .errors import ErrorKind, FetchError
from .resume import FetchPlan, PlanMode

log = logging.getLogger(__name__)


class FileWriter:
    """Persist a body stream straight to its destination.

    No staging file: an interrupted write leaves a shorter file behind, which
    a later resume picks up from its current length.
    """

    def write(
        self,
        destination: Path,
        plan: FetchPlan,
        chunks: Iterable[bytes],
        *,
        url: str = "",
    ) -> int:
        url = url or str(destination)
        if plan.mode == PlanMode.RESUME:
            mode = "ab"
        elif plan.mode == PlanMode.FRESH:
            mode = "wb"
        else:
            raise ValueError(f"cannot write with plan {plan.mode.value}")

        written = 0
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            if plan.mode == PlanMode.RESUME:
                size = destination.stat().st_size
                if size != plan.offset:
                    raise FetchError(
                        ErrorKind.IO_FAILURE,
                        url,
                        f"{destination} changed size during resume "
                        f"({size} != {plan.offset})",
                    )
            with destination.open(mode) as f:
                for chunk in chunks:
                    f.write(chunk)
                    written += len(chunk)
        except OSError as e:
            raise FetchError(
                ErrorKind.IO_FAILURE, url, f"{destination}: {e}"
            ) from e

        log.debug("wrote %d bytes to %s (%s)", written, destination, plan.mode.value)
        return written
