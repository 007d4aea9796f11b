# strfrylib

Building blocks for a Nostr relay, usable as a library.

## Installation

    pip install strfrylib

For running the test suite:

    pip install "strfrylib[test]"
    pytest

## Modules

- `strfrylib.packed`: the compact binary summary of an event.
  `build_packed_event(event_id, pubkey, created_at, kind, expiration, tag_builder)`
  assembles one from a `PackedEventTagBuilder` (`add(tag_key, tag_val)`, values
  up to 255 bytes). `PackedEventView` reads it back: `id()`, `pubkey()`,
  `created_at()`, `kind()`, `expiration()` and `tags()`, which yields
  `(name, value)` pairs. The layout is the 32-byte id, the 32-byte pubkey,
  then `created_at`, `kind` and `expiration` as little-endian 64-bit integers,
  then each tag as one name byte, one length byte and the value.
  `bytes32(value)` checks that a value is exactly 32 bytes.
- `strfrylib.filters`: Nostr filters. `NostrFilter` compiles one filter object
  (`ids`, `authors`, `kinds`, single-letter `#x` tags, `since`, `until`,
  `limit`); `#e` and `#p` values and `ids`/`authors` are hex-decoded 32-byte
  values. An empty array makes a filter never match, more than three tag
  filters is refused, and `limit` is capped by `max_filter_limit`.
  `NostrFilterGroup` takes a whole `["REQ", subid, filter...]` array, or use
  `NostrFilterGroup.unwrapped(filter_json, max_filter_limit)` for a bare filter
  or list of filters. Malformed filters raise `FilterError`.
- `strfrylib.subscription`: `SubId` (1 to 64 bytes, no control characters,
  backslash or double quote), `Subscription` and `ConnIdSubId`.
- `strfrylib.monitors`: `ActiveMonitors` indexes live subscriptions.
  `add_sub(sub, curr_event_id)` returns `False` when a connection is over its
  subscription limit (a separate limit applies to addresses inside
  `privileged_ips`, where 0 means unlimited); `remove_sub`, `close_conn`, and
  `process(lev_id, packed, cb)`, which calls `cb(recipients, lev_id)` with the
  `ConnIdSubId` list of subscriptions the event matches.
- `strfrylib.dbquery`: `EventStore`, an in-memory event store keeping the
  id, pubkey, pubkey+kind, kind, tag and created_at indexes; `DBScan`, a
  resumable newest-first scan of the best index for one filter; `DBQuery`
  (`DBQuery.from_filter(store, filter_json)`), which runs every filter of a
  subscription within an optional time budget in microseconds and sends each
  event once; and `foreach_by_filter(store, filter_json, cb)`.
- `strfrylib.decompressor`: `DictionaryBroker(lookup)` loads zstd
  dictionaries by id through a callable and shares them; `Decompressor`
  decompresses payloads with them (`DictionaryNotFound`, `DecompressionError`).
- `strfrylib.metrics`: thread-safe `Counter` and `LabeledCounter`, and
  `PrometheusMetrics` with client message, relay message and event-kind
  counters rendered in the Prometheus text format. `get_metrics()` returns the
  shared instance.
- `strfrylib.threadpool`: `ThreadPool`, which starts named worker threads and
  routes messages to their inboxes by `key % num_threads`
  (`dispatch`, `dispatch_multi`, `dispatch_to_all`, `join`).
- `strfrylib.wsconnection`: `WSConnection`, a websocket client whose
  `on_connect`, `on_message(msg, opcode)`, `on_trigger`, `on_disconnect` and
  `on_error` callbacks all run in the thread calling `run()`. It reconnects
  after `reconnect_delay_ms` unless `reconnect` is false; `trigger()` and
  `close()` may be called from any thread.
- `strfrylib.fried`: `parse_fried(line)` splits a line of event JSON that
  carries a hex `"fried"` field into the packed bytes and the plain JSON;
  `make_fried(json_text, packed)` builds such a line. Errors raise `FriedError`.

## Example

```python
from strfrylib.packed import PackedEventTagBuilder, build_packed_event, PackedEventView
from strfrylib.filters import NostrFilterGroup

tags = PackedEventTagBuilder()
tags.add("t", b"nostr")
packed = build_packed_event(b"\x01" * 32, b"\x02" * 32, 1700000000, 1, 0, tags)

group = NostrFilterGroup.unwrapped({"kinds": [1], "#t": ["nostr"]}, 500)
print(group.does_match(PackedEventView(packed)))  # True
```

Querying a store:

```python
from strfrylib.dbquery import EventStore, foreach_by_filter

store = EventStore()
lev_id = store.add(packed)
foreach_by_filter(store, {"kinds": [1]}, print)  # prints 1, the stored event's level id
```

Rendering metrics:

```python
from strfrylib.metrics import get_metrics

metrics = get_metrics()
metrics.nostr_client_messages.inc("REQ")
print(metrics.render())
```

## What it does not do

- There is no relay server and no command-line program; the package is a
  library only.
- `EventStore` keeps events in memory. There is no persistent database, no
  event JSON storage, and no import, export, delete or compaction tooling;
  `strfrylib.fried` only converts single lines.
- Events are not verified: there is no id or signature checking.
- There is no set reconciliation (sync) or event routing between relays.
  `WSConnection` provides the client connection only.