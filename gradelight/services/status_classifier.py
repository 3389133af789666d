"""
Maps weighted scores to traffic-light statuses.
"""

from typing import Optional

from ..core.entities import StatusThresholds
from ..core.enums import StatusColor


class StatusClassifier:
    """Three contiguous bands over the score range.

    ``score < pass_threshold`` is RED, ``score >= safe_threshold`` is GREEN and
    everything in between is YELLOW. A prior failure only narrows the margin:
    GREEN becomes YELLOW, RED and YELLOW are left alone.
    """

    def __init__(self, default_thresholds: Optional[StatusThresholds] = None):
        self._default_thresholds = default_thresholds or StatusThresholds()

    def classify(self, score: float, failed_prior: bool,
                 thresholds: Optional[StatusThresholds] = None) -> StatusColor:
        bands = thresholds or self._default_thresholds
        if score < bands.pass_threshold:
            return StatusColor.RED
        if score < bands.safe_threshold:
            return StatusColor.YELLOW
        return StatusColor.YELLOW if failed_prior else StatusColor.GREEN
