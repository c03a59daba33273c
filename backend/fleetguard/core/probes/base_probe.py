from abc import ABC, abstractmethod
from typing import Optional, Type
import asyncio
import logging
import time

from fleetguard.core.probes.results import BaseProbeResult, ProbeKind
from fleetguard.core.target import ScanTarget

logger = logging.getLogger(__name__)


class BaseProbe(ABC):
    """
    One independent sub-scan.

    Subclasses implement ``probe()``; callers use ``run()``, which enforces the
    budget and converts every failure into an unavailable result. Nothing
    raised inside a probe escapes ``run()`` except cancellation.
    """

    kind: ProbeKind
    result_type: Type[BaseProbeResult]

    def __init__(self, budget: float):
        self.budget = budget

    @abstractmethod
    async def probe(self, target: ScanTarget) -> BaseProbeResult:
        pass

    async def run(self, target: ScanTarget, budget: Optional[float] = None) -> BaseProbeResult:
        budget = budget if budget is not None else self.budget
        start_time = time.monotonic()

        try:
            result = await asyncio.wait_for(self.probe(target), timeout=budget)
        except asyncio.TimeoutError:
            logger.warning(f"[PROBE:{self.kind.value}] Timed out after {budget:.1f}s")
            return self.result_type.unavailable(f"timed out after {budget:.1f}s")
        except Exception as e:
            logger.warning(f"[PROBE:{self.kind.value}] Failed: {type(e).__name__}: {e}")
            return self.result_type.unavailable(f"{type(e).__name__}: {e}")

        logger.info(
            f"[PROBE:{self.kind.value}] Finished with status {result.status.value} "
            f"in {time.monotonic() - start_time:.2f}s"
        )
        return result

    def unavailable(self, reason: str) -> BaseProbeResult:
        return self.result_type.unavailable(reason)
