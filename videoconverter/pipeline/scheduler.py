"""Run scheduling for the conversion pipeline.

The scheduler walks the catalog's candidate list in order, drops videos that
need no work or cannot be worked on, downloads the original of every other
video and hands it to its own VideoWorker thread. The run deadline only stops
the start of new videos; videos already started always run to the end.

Per-video problems (malformed link, failed download) skip that video only.
After the loop the discovered count is published, every started VideoWorker
is joined and RunFinished is published, even when the loop itself failed.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Tuple
from urllib.parse import unquote, urlsplit

from requests.utils import requote_uri

from videoconverter.domain.errors import RemoteStoreError
from videoconverter.domain.events import RunFinished, VideosDiscovered
from videoconverter.domain.models import VideoRecord, format_file_name
from videoconverter.infrastructure.event_bus import EventBus
from videoconverter.infrastructure.remote_store import RemoteStore
from videoconverter.pipeline.task_group import TaskGroup
from videoconverter.pipeline.video_worker import VideoWorker


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def split_original_url(url: str, storage_root: str = "/synergy/") -> Tuple[str, str, str]:
    """Returns (normalized URL, remote directory, object name) of an original link.

    Raises ValueError when the link is not an absolute URL pointing to a file
    or when its path cannot be percent-decoded.
    """
    parts = urlsplit(url.strip())
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"not an absolute URL: {url!r}")

    path = unquote(parts.path, errors="strict")
    directory, _, object_name = path.rpartition("/")
    if not object_name:
        raise ValueError(f"URL does not point to a file: {url!r}")

    remote_dir = f"{directory}/"
    if storage_root and remote_dir.startswith(storage_root):
        remote_dir = remote_dir[len(storage_root):]
    remote_dir = remote_dir.lstrip("/")
    return requote_uri(url.strip()), remote_dir, object_name


class RunScheduler:
    """Schedules one VideoWorker per eligible catalog video.

    Args:
        video_worker: Worker that processes a downloaded video.
        remote_store: Store the originals are downloaded from.
        event_bus: Bus receiving the discovered count and the run-complete signal.
        temp_dir: Directory for per-video working directories.
        storage_root: Path prefix removed from original links to get the remote directory.
        clock: Returns the current aware UTC time (injectable for tests).
    """

    def __init__(
        self,
        video_worker: VideoWorker,
        remote_store: RemoteStore,
        event_bus: EventBus,
        temp_dir: Path,
        storage_root: str = "/synergy/",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.video_worker = video_worker
        self.remote_store = remote_store
        self.event_bus = event_bus
        self.temp_dir = Path(temp_dir)
        self.storage_root = storage_root
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def run(self, candidates: List[VideoRecord], deadline: datetime, skip_partial: bool = False) -> int:
        """Processes candidates and returns the number of started video workers."""
        group = TaskGroup("videos", size=len(candidates))
        try:
            for video in candidates:
                if self.clock() > deadline:
                    self.logger.info("Time is over, no new videos will be started")
                    break

                try:
                    prepared = self._prepare(video, skip_partial)
                except Exception:
                    self.logger.exception(f"Cannot prepare video {video.id}, skipping")
                    continue
                if prepared is None:
                    continue
                group.spawn(self.video_worker.process, prepared, name=f"video-{prepared.id}")
        finally:
            self.event_bus.publish(VideosDiscovered(count=len(candidates)))
            self.logger.info(f"Started {len(group)} of {len(candidates)} videos, waiting for them to finish")
            group.join()
            if group.failed:
                self.logger.error(f"{group.failed} video worker(s) crashed")
            self.event_bus.publish(RunFinished())
        return len(group)

    def _prepare(self, video: VideoRecord, skip_partial: bool) -> Optional[VideoRecord]:
        if video.is_complete():
            self.logger.debug(f"Video {video.id} has every format, skipping")
            return None

        if skip_partial and video.is_partially_populated():
            self.logger.debug(f"Video {video.id} has some formats already, check it manually; skipping")
            return None

        if not video.original.present:
            self.logger.debug(f"Video {video.id} has an empty original link, skipping")
            return None

        try:
            url, remote_dir, object_name = split_original_url(video.original.url, self.storage_root)
        except ValueError as e:
            self.logger.error(f"Original link of video {video.id} is not valid: {e}")
            return None

        work = video.model_copy(deep=True)
        work.original.url = url
        work.remote_dir = remote_dir
        work.original_object = object_name
        work.original_filename = format_file_name(object_name)
        work.work_dir = self.temp_dir / str(video.id)

        if not self._download(work):
            return None
        return work

    def _download(self, video: VideoRecord) -> bool:
        local_path = video.work_dir / video.original_filename
        self.logger.info(f"Downloading original of video {video.id} from {video.original.url}")
        try:
            video.work_dir.mkdir(parents=True, exist_ok=True)
            with open(local_path, "wb") as fh:
                self.remote_store.download(video.original.url, fh)
        except (OSError, RemoteStoreError) as e:
            self.logger.error(f"Download of original for video {video.id} from {video.original.url} failed: {e}")
            self._discard(video)
            return False

        video.local_original_path = local_path
        return True

    def _discard(self, video: VideoRecord):
        try:
            if video.work_dir is not None and video.work_dir.exists():
                for entry in video.work_dir.iterdir():
                    entry.unlink()
                video.work_dir.rmdir()
        except OSError as e:
            self.logger.warning(f"Cannot clean up {video.work_dir}: {e}")
