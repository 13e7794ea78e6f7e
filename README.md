# sdns

Building blocks for a privacy-focused DNS server, written on top of
`dnspython`.

Requests travel through a chain of middleware handlers. Each handler looks at
the request, answers it or passes it on, and may wrap the response writer so
that it can adjust whatever a later handler writes.

## What is inside

| Module | Purpose |
| --- | --- |
| `sdns.cache` | Sharded in-memory `Cache` with random eviction, `xxhash64`, and `question_hash`, a cache key over a DNS question |
| `sdns.tree` | `Tree`, a radix tree for URL routes with `:param` and `*wildcard` segments |
| `sdns.authcache` | `AuthServer`, `AuthServers`, `sort_servers` and `NSCache`, a TTL-bounded delegation cache |
| `sdns.dnsutil` | Reverse-name parsing, EDNS0 normalisation, DNSSEC/OPT clean-up, server cookies, purge queries, upstream `exchange` and `exchange_internal` |
| `sdns.middleware.chain` | `Handler`, `ResponseWriter`, `WriterWrapper`, `Chain` and the middleware `Registry` |
| `sdns.middleware.*` | Handlers: `loop`, `recovery`, `metrics`, `accesslist`, `ratelimit`, `edns`, `accesslog`, `chaos`, `hostsfile`, `blocklist`, `as112`, `failover`, `forwarder` |
| `sdns.api` | A small WSGI `Router` and the HTTP control `API` |

## The cache

```python
from sdns.cache import Cache, CacheNotFoundError, question_hash

cache = Cache(1024)
key = question_hash("example.com.", 1, 1, False)   # qtype A, class IN, CD off
cache.add(key, "value")
cache.get(key)          # "value"
len(cache)              # 1
cache.remove(key)
cache.get(key)          # raises CacheNotFoundError
```

The cache is split into 256 shards chosen by the low byte of the key; a full
shard drops one entry before a new one goes in. The question name is folded to
lower case before hashing, and the checking-disabled flag is part of the key.
`CacheNotFoundError` and `CacheExpiredError` both derive from `CacheError`.

`NSCache` stores delegations (`NS` entries) with a lifetime clamped between one
and twelve hours; `get` raises `CacheNotFoundError` or `CacheExpiredError`.
`sort_servers(servers, called)` averages each `AuthServer`'s round-trip time,
resets the statistics every thousandth call, and sorts the list in place.

## Middleware

Handlers are registered by name with a factory and built once with `setup`.
The order of registration is the order in which a request visits them.

```python
import tempfile

import dns.message

from sdns.middleware.blocklist import BlockList
from sdns.middleware.chain import Chain, Registry, ResponseWriter
from sdns.middleware.loop import Loop
from sdns.middleware.recovery import Recovery

registry = Registry()
registry.register("recovery", lambda cfg: Recovery())
registry.register("loop", lambda cfg: Loop())
registry.register("blocklist", lambda cfg: BlockList(blocklist_dir=cfg))
registry.setup(tempfile.mkdtemp())

registry.get("blocklist").set("ads.example.com")

request = dns.message.make_query("ads.example.com.", "A")
writer = ResponseWriter("udp", "192.0.2.10:5353")
chain = Chain(registry.handlers())
chain.reset(writer, request)
chain.next({})

print(writer.msg.answer)   # ads.example.com. 3600 IN A 0.0.0.0
```

Whatever `setup` is given is passed to every factory. `register_at` inserts at
a given position and raises `IndexError` when it is out of range;
`register_before` puts a handler in front of a named one and raises `KeyError`
when that name is not registered. `setup` may run only once; a second call
raises `RuntimeError`. `get` returns `None` before `setup` and for unknown
names.

A handler stops the chain with `chain.cancel()`, or answers with a bare
response code and stops with `chain.cancel_with_rcode(rcode, do)`. A
`ResponseWriter` accepts one message only; a second write raises
`AlreadyWrittenError`. Its `written`, `msg`, `rcode`, `proto`, `remote_ip` and
`internal` members describe the exchange; a writer for `127.0.0.255` counts as
internal. `dnsutil.exchange_internal(request, registry)` runs a query through
the registry's handlers that way and raises `LookupError` when nothing answers.

### The handlers

* `Recovery` turns an exception further down the chain into SERVFAIL.
* `Loop` fails a question with SERVFAIL once it has passed through more than
  ten times in one context.
* `Metrics` counts answered queries by type and response code in a
  `QueryCounter`, which renders them in the Prometheus text format.
* `AccessList` drops queries from clients outside its CIDR networks (all
  addresses when none are given).
* `RateLimit` limits each client address to `rate` queries per minute; clients
  presenting a known DNS cookie bypass the limit, and UDP clients with a stale
  cookie get BADCOOKIE. `TokenBucket` is the limiter it uses.
* `EDNS` normalises EDNS0, answers unknown EDNS versions with BADVERS and
  non-query opcodes with NOTIMP, adds server cookies and NSID, strips DNSSEC
  records for clients that did not set DO, and truncates oversize UDP replies.
* `AccessLog` appends one line per answered external query to a file.
* `Chaos` answers `version.bind`, `version.server`, `hostname.bind` and
  `id.server` TXT queries in the CHAOS class when enabled.
* `Hostsfile` serves `A`, `AAAA` and `PTR` answers from a hosts file; `start`
  re-reads the file every five seconds when it has changed, `stop` ends that.
  `init_inline` adds lines kept across reloads.
* `BlockList` answers blocked names with a null route (`A`/`AAAA`) or an SOA,
  keeps a whitelist, persists local edits to a `local` file, and loads
  host-format lists from its directory and from remote sources
  (`update_blocklists`, `read_blocklists`, or `start` in the background).
* `AS112` answers queries for private and reserved reverse zones locally.
* `Failover` retries recursive SERVFAIL answers against fallback servers over
  UDP.
* `Forwarder` sends queries to upstream servers over UDP, or over TLS for
  servers written as `tls://address:port`.

## URL routing

```python
from sdns.tree import Tree

tree = Tree()
tree.add("/files/*file", "files")
tree.add("/user/:id/profile", "profile")

tree.lookup("/files/a.tar.gz")     # ("files", [("file", "a.tar.gz")])
tree.lookup("/user/42/profile")    # ("profile", [("id", "42")])
tree.lookup("/nothing")            # (None, [])
```

## HTTP API

`API` serves blocklist management, cache purging and query metrics:

```
GET /api/v1/block/exists/:key
GET /api/v1/block/get/:key
GET /api/v1/block/remove/:key
GET /api/v1/block/set/:key
GET /api/v1/purge/:qname/:qtype
GET /metrics
```

```python
from sdns.api import API

api = API(addr="127.0.0.1:8053", bearer_token="token", registry=registry)
api.run()    # serves in a background thread
...
api.stop()
```

The blocklist and metrics counter are taken from the registry when not given.
When a bearer token is set, every request must carry
`Authorization: Bearer token` with that value; anything else is answered with
`401`. The block routes exist only when there is a blocklist, and purge
requests are sent through the registry as internal queries. `Router` is a
plain WSGI application, so it can also be mounted in any WSGI server.

## What this package does not do

It has no DNS server that listens on UDP, TCP or other sockets, no recursive
resolver and no caching middleware that stores answers; purge queries only
reach whatever handlers a registry holds. There is no configuration file
loader and no command to start a server: an application assembles the
handlers, feeds requests to a `Chain` and sends the written message back
itself.

## Tests

The test suite uses pytest and is installed with the `test` extra:

```
pip install -e ".[test]"
pytest
```