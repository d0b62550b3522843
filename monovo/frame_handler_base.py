"""State machine and map shared by the visual odometry pipelines."""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Optional

from .map import Map

_log = logging.getLogger(__name__)


class Stage(Enum):
    PAUSED = 0
    FIRST_FRAME = 1
    SECOND_FRAME = 2
    DEFAULT_FRAME = 3
    RELOCALIZING = 4


class TrackingQuality(Enum):
    INSUFFICIENT = 0
    BAD = 1
    GOOD = 2


class UpdateResult(Enum):
    NO_KEYFRAME = 0
    IS_KEYFRAME = 1
    FAILURE = 2


class FrameHandlerBase:
    """Holds the map, the processing stage and the tracking quality."""

    def __init__(self, quality_min_fts, quality_max_fts_drop, max_fts) -> None:
        self.quality_min_fts = int(quality_min_fts)
        self.quality_max_fts_drop = int(quality_max_fts_drop)
        self.max_fts = int(max_fts)
        self.stage = Stage.PAUSED
        self.set_reset = False
        self.set_start = False
        self.map = Map()
        self.num_obs_last = 0
        self.tracking_quality = TrackingQuality.INSUFFICIENT
        self._timer_start: Optional[float] = None
        self._last_duration = 0.0

    def reset(self) -> None:
        """Reset the map once the current frame has been processed."""
        self.set_reset = True

    def start(self) -> None:
        """Start processing with the next image."""
        self.set_start = True

    def last_processing_time(self) -> float:
        """Seconds spent on the last processed frame."""
        return self._last_duration

    def start_frame_processing_common(self, timestamp) -> bool:
        """Prepare for a new frame; False when the handler is paused."""
        if self.set_start:
            self.reset_all()
            self.stage = Stage.FIRST_FRAME
        if self.stage is Stage.PAUSED:
            return False
        self._timer_start = time.perf_counter()
        self.map.empty_trash()
        return True

    def finish_frame_processing_common(self, update_id, dropout, num_observations) -> None:
        """Update the state after a frame according to its result."""
        _log.info("Frame: %s", update_id)
        if self._timer_start is not None:
            self._last_duration = time.perf_counter() - self._timer_start
            self._timer_start = None
        self.num_obs_last = int(num_observations)

        if dropout is UpdateResult.FAILURE and self.stage in (
                Stage.DEFAULT_FRAME, Stage.RELOCALIZING):
            self.stage = Stage.RELOCALIZING
            self.tracking_quality = TrackingQuality.INSUFFICIENT
        elif dropout is UpdateResult.FAILURE:
            self.reset_all()
        if self.set_reset:
            self.reset_all()

    def reset_common(self) -> None:
        """Clear the map and return to the paused state."""
        self.map.reset()
        self.stage = Stage.PAUSED
        self.set_reset = False
        self.set_start = False
        self.tracking_quality = TrackingQuality.INSUFFICIENT
        self.num_obs_last = 0

    def reset_all(self) -> None:
        """Reset the handler; subclasses extend this with their own state."""
        self.reset_common()

    def set_tracking_quality(self, num_observations) -> None:
        """Judge tracking from the number of observations and the drop since last frame."""
        num_observations = int(num_observations)
        self.tracking_quality = TrackingQuality.GOOD
        if num_observations < self.quality_min_fts:
            _log.warning("Tracking less than %d features!", self.quality_min_fts)
            self.tracking_quality = TrackingQuality.INSUFFICIENT
        feature_drop = min(self.num_obs_last, self.max_fts) - num_observations
        if feature_drop > self.quality_max_fts_drop:
            _log.warning("Lost %d features!", feature_drop)
            self.tracking_quality = TrackingQuality.INSUFFICIENT