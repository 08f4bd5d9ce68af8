import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

from requests.utils import requote_uri

from videoconverter.domain.errors import CatalogError, RemoteStoreError, TranscodeError
from videoconverter.domain.events import (
    DerivativeConverted,
    DerivativeConvertFailed,
    DerivativeUploaded,
    DerivativeUploadFailed,
)
from videoconverter.domain.models import Quality, VideoRecord
from videoconverter.infrastructure.catalog import CatalogSource
from videoconverter.infrastructure.event_bus import EventBus
from videoconverter.infrastructure.ffmpeg import FFmpegAdapter
from videoconverter.infrastructure.remote_store import RemoteStore


class DerivativeWorker:
    """Produces one quality derivative of one video.

    Converts the downloaded original, uploads the result next to the original
    on the remote store and writes the resulting link to the catalog.
    Outcomes are published as count events; errors never leave produce().
    """

    def __init__(
        self,
        catalog: CatalogSource,
        remote_store: RemoteStore,
        transcoder: FFmpegAdapter,
        event_bus: EventBus,
    ):
        self.catalog = catalog
        self.remote_store = remote_store
        self.transcoder = transcoder
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)

    def produce(self, video: VideoRecord, quality: Quality) -> Optional[str]:
        """Returns the stored URL, or None when any step failed."""
        label = f"video {video.id} [{quality.tag}]"
        work_dir = video.work_dir or Path(video.local_original_path).parent

        try:
            if quality.is_preview:
                output_path = self.transcoder.make_preview(work_dir, video.local_original_path)
            else:
                output_path = self.transcoder.convert(work_dir, video.local_original_path, quality)
        except TranscodeError as e:
            self.logger.error(f"Conversion failed for {label}: {e}")
            self.event_bus.publish(DerivativeConvertFailed(video_id=video.id, quality=quality, error_message=str(e)))
            return None

        self.event_bus.publish(DerivativeConverted(video_id=video.id, quality=quality))

        try:
            raw_url = self._upload(video, quality, Path(output_path), label)
        finally:
            self._remove_local(Path(output_path))

        if raw_url is None:
            return None

        # The object is stored at this point; a bad URL only prevents saving the link
        try:
            url = self._normalize_url(raw_url)
        except ValueError as e:
            self.logger.error(f"Cannot resolve link for {label}: {e}")
            return None

        self._persist(video, quality, url, label)
        return url

    def _upload(self, video: VideoRecord, quality: Quality, output_path: Path, label: str) -> Optional[str]:
        remote_path = f"{video.remote_dir}{output_path.name}"
        self.logger.debug(f"Uploading {output_path} as {remote_path} for {label}")
        try:
            with open(output_path, "rb") as fh:
                raw_url = self.remote_store.upload(remote_path, fh)
        except (OSError, RemoteStoreError) as e:
            self.logger.error(f"Upload failed for {label}: {e}")
            self.event_bus.publish(DerivativeUploadFailed(video_id=video.id, quality=quality, error_message=str(e)))
            return None

        self.logger.info(f"Uploaded {label}: {raw_url}")
        self.event_bus.publish(DerivativeUploaded(video_id=video.id, quality=quality, url=raw_url))
        return raw_url

    @staticmethod
    def _normalize_url(raw_url: str) -> str:
        parts = urlsplit(raw_url)
        if not parts.scheme or not parts.netloc:
            raise ValueError(f"Storage returned an invalid URL: {raw_url!r}")
        return requote_uri(raw_url)

    def _remove_local(self, output_path: Path):
        self.logger.debug(f"Remove file: {output_path}")
        try:
            output_path.unlink(missing_ok=True)
        except OSError as e:
            self.logger.error(f"Error removing file {output_path}: {e}")

    def _persist(self, video: VideoRecord, quality: Quality, url: str, label: str):
        slot = video.slot(quality)
        try:
            if slot.property_id is not None:
                self.catalog.update_property(slot.property_id, url)
            else:
                property_id = self.catalog.quality_property_map().property_id_for(quality)
                self.catalog.insert_property(video.id, property_id, url)
        except CatalogError as e:
            self.logger.error(f"Cannot save link for {label}: {e}")
            return
        slot.url = url
