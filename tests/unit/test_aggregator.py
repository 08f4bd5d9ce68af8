import threading
from videoconverter.domain.events import (
    DerivativeConverted,
    DerivativeConvertFailed,
    DerivativeUploaded,
    DerivativeUploadFailed,
    RunFinished,
    VideosDiscovered,
)
from videoconverter.domain.models import Quality
from videoconverter.pipeline.aggregator import ProgressAggregator


def test_counts_each_event_type(event_bus):
    aggregator = ProgressAggregator(event_bus)
    aggregator.start()

    event_bus.publish(DerivativeConverted(video_id=1, quality=Quality.Q720))
    event_bus.publish(DerivativeConverted(video_id=1, quality=Quality.Q480))
    event_bus.publish(DerivativeConvertFailed(video_id=1, quality=Quality.Q360, error_message="x"))
    event_bus.publish(DerivativeUploaded(video_id=1, quality=Quality.Q720, url="https://a/b"))
    event_bus.publish(DerivativeUploadFailed(video_id=1, quality=Quality.Q480, error_message="y"))
    event_bus.publish(VideosDiscovered(count=4))
    event_bus.publish(RunFinished())

    assert aggregator.wait(5)
    counters = aggregator.snapshot()
    assert counters.discovered == 4
    assert counters.converted == 2
    assert counters.convert_failed == 1
    assert counters.uploaded == 1
    assert counters.upload_failed == 1
    assert counters.completed is True
    assert counters.has_failures()


def test_events_before_start_are_kept(event_bus):
    aggregator = ProgressAggregator(event_bus)
    event_bus.publish(DerivativeConverted(video_id=1, quality=Quality.Q720))
    event_bus.publish(RunFinished())

    aggregator.start()

    assert aggregator.wait(5)
    assert aggregator.snapshot().converted == 1


def test_interleaved_producers_give_exact_totals(event_bus):
    aggregator = ProgressAggregator(event_bus)
    aggregator.start()

    def produce(video_id):
        for _ in range(200):
            event_bus.publish(DerivativeConverted(video_id=video_id, quality=Quality.Q720))
            event_bus.publish(DerivativeUploaded(video_id=video_id, quality=Quality.Q720, url="https://a/b"))

    threads = [threading.Thread(target=produce, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    event_bus.publish(RunFinished())

    assert aggregator.wait(10)
    counters = aggregator.snapshot()
    assert counters.converted == 1600
    assert counters.uploaded == 1600


def test_stop_without_run_finished(event_bus):
    aggregator = ProgressAggregator(event_bus)
    aggregator.start()
    event_bus.publish(DerivativeConvertFailed(video_id=1, quality=Quality.PREVIEW, error_message="x"))

    assert not aggregator.wait(0.05)
    aggregator.stop()

    counters = aggregator.snapshot()
    assert aggregator.wait(0)
    assert counters.convert_failed == 1
    assert counters.completed is False


def test_snapshot_is_a_copy(event_bus):
    aggregator = ProgressAggregator(event_bus)
    snapshot = aggregator.snapshot()
    snapshot.converted = 99
    assert aggregator.snapshot().converted == 0


def test_stop_before_start_is_noop(event_bus):
    aggregator = ProgressAggregator(event_bus)
    aggregator.stop()
    assert not aggregator.wait(0)
