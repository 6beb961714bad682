"""Notifier: deliver a pipeline report to every configured sink.

Each sink is attempted independently and in order. A sink that fails (API
unreachable, gh not authenticated, file not writable) is recorded as a failed
SinkResult and the remaining sinks are still tried. notify() never raises;
retrying is left to the caller.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from stagebus.core.models import SinkResult

if TYPE_CHECKING:
    from collections.abc import Sequence

    from stagebus.core.protocols import NotificationSink
    from stagebus.domain.aggregator import Report

logger = logging.getLogger(__name__)


class Notifier:
    """Sends one report to many sinks."""

    def notify(
        self, report: Report, sinks: Sequence[NotificationSink]
    ) -> list[SinkResult]:
        """Deliver the report to each sink.

        Args:
            report: The rendered pipeline report.
            sinks: Destinations, attempted in order.

        Returns:
            One SinkResult per sink, in the same order.
        """
        results: list[SinkResult] = []
        for sink in sinks:
            name = getattr(sink, "name", type(sink).__name__)
            try:
                locator = sink.deliver(report)
            except Exception as e:  # noqa: BLE001 - one sink must not stop the others
                logger.warning("Delivery to %s failed: %s", name, e)
                results.append(SinkResult(sink=name, ok=False, error=str(e) or type(e).__name__))
                continue
            logger.info("Delivered report to %s%s", name, f" ({locator})" if locator else "")
            results.append(SinkResult(sink=name, ok=True, locator=locator))
        return results
