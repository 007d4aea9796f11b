import threading

from strfrylib.metrics import Counter, LabeledCounter, PrometheusMetrics, get_metrics


def test_counter_inc_and_get():
    c = Counter()
    c.inc()
    c.inc(4)
    assert c.get() == 5


def test_labeled_counter_sorted():
    lc = LabeledCounter()
    lc.inc("REQ")
    lc.inc("EVENT", 2)
    lc.inc("REQ")
    result = lc.get_all()
    assert result == {"EVENT": 2, "REQ": 2}
    assert list(result) == ["EVENT", "REQ"]


def test_labeled_counter_thread_safety():
    lc = LabeledCounter()
    threads_count, per_thread = 8, 1000

    def work():
        for _ in range(per_thread):
            lc.inc("x")

    threads = [threading.Thread(target=work) for _ in range(threads_count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert lc.get_all()["x"] == threads_count * per_thread


def test_render_empty_has_headers():
    text = PrometheusMetrics().render()
    assert "# HELP nostr_client_messages_total Total number of Nostr client messages by verb\n" in text
    assert "# TYPE nostr_relay_messages_total counter\n" in text
    assert "# TYPE nostr_events_total counter\n" in text
    assert "{" not in text


def test_render_counts():
    metrics = PrometheusMetrics()
    metrics.nostr_client_messages.inc("REQ")
    metrics.nostr_client_messages.inc("EVENT", 3)
    metrics.nostr_events_by_kind.inc("1")
    text = metrics.render()
    assert 'nostr_client_messages_total{verb="EVENT"} 3\n' in text
    assert 'nostr_client_messages_total{verb="REQ"} 1\n' in text
    assert 'nostr_events_total{kind="1"} 1\n' in text
    assert text.index('verb="EVENT"') < text.index('verb="REQ"')


def test_get_metrics_singleton():
    assert get_metrics() is get_metrics()
    before = get_metrics().nostr_relay_messages.get_all().get("OK", 0)
    get_metrics().nostr_relay_messages.inc("OK")
    assert get_metrics().nostr_relay_messages.get_all()["OK"] == before + 1