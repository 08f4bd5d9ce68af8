import logging
import shutil
from pathlib import Path

from videoconverter.domain.errors import CatalogError, RemoteStoreError
from videoconverter.domain.models import VideoRecord
from videoconverter.infrastructure.catalog import CatalogSource
from videoconverter.infrastructure.remote_store import RemoteStore
from videoconverter.pipeline.derivative_worker import DerivativeWorker
from videoconverter.pipeline.task_group import TaskGroup


class VideoWorker:
    """Owns the lifecycle of one downloaded video.

    Starts a DerivativeWorker per missing quality, waits for all of them,
    removes the local original and, once every derivative exists, optionally
    removes the remote original and clears its catalog link.

    Args:
        derivative_worker: Worker used for each missing quality.
        catalog: Catalog used to clear the original link.
        remote_store: Store used to delete the remote original.
        remove_original: Delete the original after the video became complete.
    """

    def __init__(
        self,
        derivative_worker: DerivativeWorker,
        catalog: CatalogSource,
        remote_store: RemoteStore,
        remove_original: bool = False,
    ):
        self.derivative_worker = derivative_worker
        self.catalog = catalog
        self.remote_store = remote_store
        self.remove_original = remove_original
        self.logger = logging.getLogger(__name__)

    def process(self, video: VideoRecord) -> VideoRecord:
        missing = video.missing_qualities()
        self.logger.info(
            f"Processing video {video.id}: missing {', '.join(q.tag for q in missing) or 'nothing'}"
        )

        try:
            with TaskGroup(f"video-{video.id}", size=len(missing)) as group:
                for quality in missing:
                    group.spawn(self.derivative_worker.produce, video, quality, name=f"video-{video.id}-{quality.tag}")
        finally:
            self._remove_local_original(video)

        if group.failed:
            self.logger.error(f"Video {video.id}: {group.failed} derivative task(s) crashed")

        if video.is_complete() and self.remove_original:
            self._remove_remote_original(video)
        return video

    def _remove_local_original(self, video: VideoRecord):
        if video.local_original_path is not None:
            try:
                Path(video.local_original_path).unlink(missing_ok=True)
            except OSError as e:
                self.logger.error(f"Remove file {video.local_original_path}: {e}")
        if video.work_dir is not None and Path(video.work_dir).exists():
            shutil.rmtree(video.work_dir, ignore_errors=True)

    def _remove_remote_original(self, video: VideoRecord):
        remote_path = f"{video.remote_dir}{video.original_object}"
        self.logger.info(f"Video {video.id} has every format, removing original {remote_path}")

        try:
            self.remote_store.delete(remote_path)
        except RemoteStoreError as e:
            self.logger.error(f"Cannot delete original {remote_path} of video {video.id}: {e}")
            return

        if video.original.property_id is None:
            self.logger.warning(f"Video {video.id} has no original property to clear")
            return
        try:
            self.catalog.update_property(video.original.property_id, "")
        except CatalogError as e:
            self.logger.error(f"Cannot clear original link of video {video.id}: {e}")
            return
        video.original.url = None
