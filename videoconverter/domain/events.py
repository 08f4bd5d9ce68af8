"""Domain events for the conversion pipeline.

Workers publish these count events through the EventBus; the
ProgressAggregator is the only subscriber that turns them into RunCounters.

See `infrastructure/event_bus.py` for the pub/sub mechanism and
`pipeline/aggregator.py` for the consumer.
"""

from pydantic import BaseModel
from .models import Quality


class Event(BaseModel):
    """Base class for all domain events.

    Events are validated Pydantic models. They are not frozen by default.
    """

    pass


class VideosDiscovered(Event):
    """Emitted once per run with the length of the candidate list."""

    count: int


class DerivativeEvent(Event):
    """Base class for events about one derivative of one video."""

    video_id: int
    quality: Quality


class DerivativeConverted(DerivativeEvent):
    """Emitted when ffmpeg produced the derivative file."""

    pass


class DerivativeConvertFailed(DerivativeEvent):
    """Emitted when ffmpeg failed for the derivative."""

    error_message: str


class DerivativeUploaded(DerivativeEvent):
    """Emitted when the derivative is stored remotely."""

    url: str


class DerivativeUploadFailed(DerivativeEvent):
    """Emitted when the upload of the derivative failed."""

    error_message: str


class RunFinished(Event):
    """Emitted by the scheduler after every started video worker finished."""

    pass


COUNT_EVENTS = (
    VideosDiscovered,
    DerivativeConverted,
    DerivativeConvertFailed,
    DerivativeUploaded,
    DerivativeUploadFailed,
    RunFinished,
)
