import pytest
import zstandard

from strfrylib.decompressor import (
    DecompressionError,
    Decompressor,
    DictionaryBroker,
    DictionaryNotFound,
)

DICT_BYTES = b"".join(
    f'{{"kind":{i},"content":"hello nostr relay","tags":[]}}'.encode() for i in range(60)
)


def _compress(data: bytes) -> bytes:
    cdict = zstandard.ZstdCompressionDict(DICT_BYTES)
    return zstandard.ZstdCompressor(dict_data=cdict).compress(data)


class _Lookup:
    def __init__(self, table):
        self.table = table
        self.calls = []

    def __call__(self, dict_id):
        self.calls.append(dict_id)
        return self.table.get(dict_id)


def test_round_trip_with_dictionary():
    payload = b'{"kind":1,"content":"hello nostr relay","tags":[]}'
    broker = DictionaryBroker(_Lookup({7: DICT_BYTES}))
    decomp = Decompressor(broker)
    assert decomp.decompress(7, _compress(payload)) == payload


def test_broker_loads_each_dictionary_once():
    lookup = _Lookup({7: DICT_BYTES})
    broker = DictionaryBroker(lookup)
    payload = b'{"kind":3,"content":"hello nostr relay"}'
    frame = _compress(payload)

    first = Decompressor(broker)
    second = Decompressor(broker)
    assert first.decompress(7, frame) == payload
    assert second.decompress(7, frame) == payload
    assert first.decompress(7, frame) == payload
    assert lookup.calls == [7]


def test_get_dict_returns_cached_object():
    lookup = _Lookup({2: DICT_BYTES})
    broker = DictionaryBroker(lookup)
    first = broker.get_dict(2)
    second = broker.get_dict(2)
    assert first is second
    assert lookup.calls == [2]


def test_missing_dictionary_raises():
    broker = DictionaryBroker(_Lookup({}))
    with pytest.raises(DictionaryNotFound):
        Decompressor(broker).decompress(5, b"anything")


def test_corrupt_payload_raises():
    broker = DictionaryBroker(_Lookup({1: DICT_BYTES}))
    with pytest.raises(DecompressionError):
        Decompressor(broker).decompress(1, b"definitely not zstd data")