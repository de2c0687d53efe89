from dalle_mcp.metrics import (
    HISTOGRAM_WINDOW,
    MetricsStore,
    metrics,
    percentile,
    track_http_request,
    track_image_generation,
    update_process_metrics,
)


class TestMetricsStore:
    def test_counter_labels_are_order_independent(self):
        store = MetricsStore()
        store.increment_counter("hits", labels={"a": "1", "b": "2"})
        store.increment_counter("hits", labels={"b": "2", "a": "1"})
        assert store.counter_value("hits", {"a": "1", "b": "2"}) == 2

    def test_unknown_counter_is_zero(self):
        assert MetricsStore().counter_value("nothing") == 0

    def test_gauge_overwrites(self):
        store = MetricsStore()
        store.set_gauge("temp", 1)
        store.set_gauge("temp", 5)
        [gauge] = store.snapshot()["gauges"]
        assert gauge["value"] == 5

    def test_histogram_summary(self):
        store = MetricsStore()
        for v in (10, 20, 30, 40):
            store.record_histogram("latency", v)
        [hist] = store.snapshot()["histograms"]
        assert hist["count"] == 4
        assert hist["sum"] == 100
        assert hist["min"] == 10
        assert hist["max"] == 40
        assert hist["avg"] == 25
        assert hist["p50"] == 20

    def test_histogram_window_is_bounded(self):
        store = MetricsStore()
        for v in range(HISTOGRAM_WINDOW + 10):
            store.record_histogram("latency", v)
        [hist] = store.snapshot()["histograms"]
        assert hist["count"] == HISTOGRAM_WINDOW + 10
        assert hist["min"] == 0

    def test_prometheus_text(self):
        store = MetricsStore()
        store.increment_counter("requests_total", labels={"method": "GET"})
        store.record_histogram("duration_ms", 12.5)
        text = store.prometheus()
        assert "# TYPE requests_total counter" in text
        assert 'requests_total{method="GET"} 1' in text
        assert "duration_ms_count 1" in text
        assert "duration_ms_sum 12.5" in text
        assert "process_uptime_seconds" in text

    def test_reset(self):
        store = MetricsStore()
        store.increment_counter("x")
        store.reset()
        assert store.snapshot()["counters"] == []


def test_percentile():
    assert percentile([], 0.5) == 0
    assert percentile([5, 1, 3], 0.5) == 3
    assert percentile([1, 2, 3, 4], 0.99) == 4


class TestTracking:
    def test_successful_generation(self):
        track_image_generation("dall-e-3", 1200, True)
        assert metrics.counter_value("image_generations_total", {"model": "dall-e-3", "success": "true"}) == 1
        names = [h["name"] for h in metrics.snapshot()["histograms"]]
        assert "image_generation_duration_ms" in names

    def test_failed_generation(self):
        track_image_generation("dall-e-2", 50, False, error="502")
        assert metrics.counter_value("image_generations_total", {"model": "dall-e-2", "success": "false"}) == 1
        assert metrics.counter_value("image_generation_errors_total", {"model": "dall-e-2", "error": "502"}) == 1

    def test_http_request(self):
        track_http_request("GET", "/health", 200, 3.2)
        assert metrics.counter_value("http_requests_total", {"method": "GET", "path": "/health"}) == 1
        labels = {"method": "GET", "path": "/health", "status": "200"}
        assert metrics.counter_value("http_responses_total", labels) == 1

    def test_process_metrics(self):
        update_process_metrics()
        names = {g["name"] for g in metrics.snapshot()["gauges"]}
        assert {"process_max_rss_bytes", "process_cpu_user_seconds"} <= names
