import pytest

from strfrylib.filters import NostrFilterGroup
from strfrylib.monitors import ActiveMonitors
from strfrylib.packed import PackedEventTagBuilder, PackedEventView, build_packed_event
from strfrylib.subscription import ConnIdSubId, SubId, Subscription


def make_event(n, kind=1, author=1, created=1000, tags=()):
    builder = PackedEventTagBuilder()
    for name, value in tags:
        builder.add(name, value)
    return PackedEventView(
        build_packed_event(bytes([n]) * 32, bytes([author]) * 32, created, kind, 0, builder)
    )


def add(monitors, conn_id, sub_id, flt, curr=0, ip_addr=""):
    sub = Subscription(conn_id, sub_id, NostrFilterGroup.unwrapped(flt), ip_addr)
    sub.latest_event_id = curr
    return monitors.add_sub(sub, curr)


class Collector:
    def __init__(self):
        self.calls = []

    def __call__(self, recipients, lev_id):
        self.calls.append((list(recipients), lev_id))


def test_kind_match_delivers_recipient():
    monitors = ActiveMonitors()
    assert add(monitors, 1, "a", {"kinds": [1]})
    got = Collector()
    monitors.process(1, make_event(5, kind=1), got)
    assert got.calls == [([ConnIdSubId(1, SubId("a"))], 1)]


def test_non_matching_event_not_delivered():
    monitors = ActiveMonitors()
    add(monitors, 1, "a", {"kinds": [1]})
    got = Collector()
    monitors.process(1, make_event(5, kind=7), got)
    assert got.calls == []


def test_ids_filter():
    monitors = ActiveMonitors()
    add(monitors, 1, "a", {"ids": [(bytes([9]) * 32).hex()]})
    got = Collector()
    monitors.process(1, make_event(8), got)
    monitors.process(2, make_event(9), got)
    assert got.calls == [([ConnIdSubId(1, SubId("a"))], 2)]


def test_authors_filter():
    monitors = ActiveMonitors()
    add(monitors, 1, "a", {"authors": [(bytes([3]) * 32).hex()]})
    got = Collector()
    monitors.process(1, make_event(1, author=2), got)
    monitors.process(2, make_event(2, author=3), got)
    assert [lev for _, lev in got.calls] == [2]


def test_tag_filter():
    monitors = ActiveMonitors()
    add(monitors, 1, "a", {"#t": ["nostr"]})
    got = Collector()
    monitors.process(1, make_event(1, tags=[("t", b"other")]), got)
    monitors.process(2, make_event(2, tags=[("t", b"nostr")]), got)
    assert [lev for _, lev in got.calls] == [2]


def test_empty_filter_matches_everything():
    monitors = ActiveMonitors()
    add(monitors, 1, "a", {})
    got = Collector()
    monitors.process(1, make_event(1, kind=4), got)
    monitors.process(2, make_event(2, kind=9), got)
    assert [lev for _, lev in got.calls] == [1, 2]


def test_sub_not_up_to_date_raises():
    monitors = ActiveMonitors()
    sub = Subscription(1, "a", NostrFilterGroup.unwrapped({}))
    sub.latest_event_id = 5
    with pytest.raises(ValueError, match="sub not up to date"):
        monitors.add_sub(sub, 6)


def test_remove_sub_stops_delivery():
    monitors = ActiveMonitors()
    add(monitors, 1, "a", {"kinds": [1]})
    monitors.remove_sub(1, SubId("a"))
    got = Collector()
    monitors.process(1, make_event(1), got)
    assert got.calls == []


def test_close_conn_stops_delivery_only_for_that_connection():
    monitors = ActiveMonitors()
    add(monitors, 1, "a", {"kinds": [1]})
    add(monitors, 2, "b", {"kinds": [1]})
    monitors.close_conn(1)
    got = Collector()
    monitors.process(1, make_event(1), got)
    assert got.calls == [([ConnIdSubId(2, SubId("b"))], 1)]


def test_per_connection_limit():
    monitors = ActiveMonitors(max_subs_per_connection=2)
    assert add(monitors, 1, "a", {})
    assert add(monitors, 1, "b", {})
    assert not add(monitors, 1, "c", {})
    assert add(monitors, 2, "c", {})


def test_privileged_ip_limit():
    monitors = ActiveMonitors(1, ["10.0.0.0/8"], 3)
    results = [add(monitors, 1, f"s{i}", {}, ip_addr="10.1.2.3") for i in range(4)]
    assert results == [True, True, True, False]
    assert add(monitors, 2, "x", {}, ip_addr="192.0.2.1")
    assert not add(monitors, 2, "y", {}, ip_addr="192.0.2.1")


def test_privileged_zero_limit_means_unlimited():
    monitors = ActiveMonitors(1, ["10.0.0.1"], 0)
    assert all(add(monitors, 1, f"s{i}", {}, ip_addr="10.0.0.1") for i in range(6))


def test_readding_sub_replaces_filters():
    monitors = ActiveMonitors()
    add(monitors, 1, "a", {"kinds": [1]})
    add(monitors, 1, "a", {"kinds": [2]})
    got = Collector()
    monitors.process(1, make_event(1, kind=1), got)
    monitors.process(2, make_event(2, kind=2), got)
    assert got.calls == [([ConnIdSubId(1, SubId("a"))], 2)]


def test_multiple_matching_filters_deliver_once():
    monitors = ActiveMonitors()
    add(monitors, 1, "a", [{"ids": [(bytes([4]) * 32).hex()]}, {"kinds": [1]}, {}])
    got = Collector()
    monitors.process(1, make_event(4, kind=1), got)
    assert got.calls == [([ConnIdSubId(1, SubId("a"))], 1)]


def test_event_not_delivered_twice_or_before_current():
    monitors = ActiveMonitors()
    add(monitors, 1, "a", {"kinds": [1]}, curr=10)
    got = Collector()
    monitors.process(10, make_event(1), got)
    monitors.process(11, make_event(2), got)
    monitors.process(11, make_event(2), got)
    assert [lev for _, lev in got.calls] == [11]


def test_several_subscribers_receive_event():
    monitors = ActiveMonitors()
    add(monitors, 1, "a", {"kinds": [1]})
    add(monitors, 2, "b", {"#t": ["x"]})
    add(monitors, 3, "c", {"kinds": [2]})
    got = Collector()
    monitors.process(1, make_event(1, kind=1, tags=[("t", b"x")]), got)
    assert len(got.calls) == 1
    recipients, lev_id = got.calls[0]
    assert lev_id == 1
    assert set(recipients) == {ConnIdSubId(1, SubId("a")), ConnIdSubId(2, SubId("b"))}


def test_process_accepts_raw_bytes():
    monitors = ActiveMonitors()
    add(monitors, 1, "a", {"kinds": [1]})
    got = Collector()
    monitors.process(1, make_event(1).buf, got)
    assert [lev for _, lev in got.calls] == [1]