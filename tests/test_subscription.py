import pytest

from strfrylib.filters import MAX_U64, NostrFilterGroup
from strfrylib.subscription import (
    MAX_SUBID_SIZE,
    ConnIdSubId,
    SubId,
    Subscription,
)


def test_subid_str_round_trip():
    assert str(SubId("mysub")) == "mysub"


def test_subid_equality_and_hash():
    a, b = SubId("abc"), SubId("abc")
    assert a == b
    assert hash(a) == hash(b)
    assert SubId("abc") != SubId("abd")
    assert len({a, b}) == 1


def test_subid_max_length_ok():
    value = "x" * MAX_SUBID_SIZE
    assert str(SubId(value)) == value


def test_subid_too_long():
    with pytest.raises(ValueError, match="length"):
        SubId("x" * (MAX_SUBID_SIZE + 1))


def test_subid_empty():
    with pytest.raises(ValueError, match="length"):
        SubId("")


@pytest.mark.parametrize("value", ["a\\b", 'a"b', "a\nb", "a\x7fb", "caf\u00e9"])
def test_subid_bad_chars(value):
    with pytest.raises(ValueError, match="invalid character"):
        SubId(value)


def test_subscription_defaults():
    group = NostrFilterGroup.unwrapped({"kinds": [1]})
    sub = Subscription(7, "s1", group)
    assert sub.conn_id == 7
    assert sub.sub_id == SubId("s1")
    assert sub.ip_addr == ""
    assert sub.latest_event_id == MAX_U64
    assert sub.filter_group is group


def test_subscription_rejects_bad_subid():
    with pytest.raises(ValueError):
        Subscription(1, "", NostrFilterGroup())


def test_conn_id_sub_id_equality():
    assert ConnIdSubId(1, SubId("a")) == ConnIdSubId(1, SubId("a"))
    assert ConnIdSubId(1, SubId("a")) != ConnIdSubId(2, SubId("a"))