# pbench

Building blocks for experimenting with state-machine replication protocols.
The package has no dependencies outside the standard library.

- `pbench.quorum`: `NodeID`, `QuorumConfig` and `Quorum`, with majority,
  fast, zone, grid and flexible-grid quorum checks.
- `pbench.node`: `Ballot`, `Command`, `Request`, `Reply` and the `Node` that a
  replica runs on: handler registration, dispatch by message type, sending
  through a pluggable transport, and an in-memory key-value store behind
  `Node.execute`.
- `pbench.paxos`, `pbench.paxos_messages` and `pbench.paxos_replica`:
  Multi-Paxos with commit (P3) messages piggybacked on accepts, slot recovery
  and log cleanup (`Paxos`, `PaxosReplica`).
- `pbench.batched_paxos`, `pbench.batched_messages` and
  `pbench.batched_replica`: a variant that proposes all client commands
  gathered during one tick as a single batch per slot (`BatchedPaxos`,
  `BatchedReplica`, `PendingBatch`).
- `pbench.epaxos` and `pbench.epaxos_messages`: Egalitarian Paxos with fast
  and slow paths (`EPaxosReplica`, `Instance`, `Status`).
- `pbench.rql` and `pbench.retrolog`: an append-only log of variable and set
  changes with periodic snapshots and time-expiring sets (`RetroLog`,
  `HybridTimestamp`, `RqlStruct`, `RqlSet`, `TimerRqlSet`).
- `pbench.util`: `retry` (raises `RetryError` when every attempt fails),
  `schedule`, `vmax` and `generate_rand_val`.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Quorums

```python
from pbench.quorum import NodeID, QuorumConfig, Quorum

ids = [NodeID.parse(s) for s in ("1.1", "1.2", "2.1", "2.2", "3.1")]
q = Quorum(QuorumConfig.from_ids(ids))
q.ack(ids[0])
q.ack(ids[2])
q.ack(ids[4])
assert q.majority()
assert q.all_zones()
```

Node identifiers have the form `zone.node`. `QuorumConfig.from_ids` counts
the nodes, the zones and the nodes in each zone; the zone, grid and
flexible-grid checks (`zone_majority`, `grid_row`, `grid_column`,
`fgrid_q1`, `fgrid_q2`) rely on those counts.

## Replicas

A replica is given its own identifier, the identifiers of its peers and a
transport: a callable `transport(to, msg)` that delivers a message to another
node. Messages arriving for a replica are passed to `replica.node.handle_msg`,
which calls the handler registered for their type. Client requests enter
through `handle_client_request(request, reply)`; `reply` is called with a
`Reply` once the command has been executed. A `Paxos` or `BatchedPaxos`
instance with `reply_when_commit` set, and an `EPaxosReplica` built with
`reply_when_commit=True`, reply on commit instead.

A three-node Paxos group on an in-memory queue:

```python
from collections import deque

from pbench.node import Command, Request
from pbench.paxos_replica import PaxosReplica
from pbench.quorum import NodeID

ids = [NodeID(1, 1), NodeID(1, 2), NodeID(1, 3)]
queue = deque()
replicas = {i: PaxosReplica(i, ids, lambda to, msg: queue.append((to, msg))) for i in ids}

replies = []
replicas[ids[0]].handle_client_request(Request(Command(key=1, value=b"x")), replies.append)
while queue:
    to, msg = queue.popleft()
    replicas[to].node.handle_msg(msg)

assert replies[0].properties["Slot"] == "0"
```

`PaxosReplica` also takes `read_mode`: when it is non-empty, reads are
answered locally from the newest unexecuted write to the key or from the
store. With `ephemeral_leader` set, a replica that is not the leader forwards
requests to the current leader.

Time-driven work (log cleanup, sending pending commits on the Paxos leader,
proposing the gathered batch on the batched leader) is done by
`tick(now_ms)` on `PaxosReplica` and `BatchedReplica`. It may be called
directly, which suits tests and simulations, or from a background thread
started with `start_ticker()` and stopped with `stop_ticker()`.

## Event log

```python
from pbench.retrolog import RetroLog

with RetroLog("demo", 1, "/tmp", 100, True) as log:
    log.start_tx().append_var_str("state", "leader").commit()
    log.start_tx().append_set_int("members", 3).commit()
```

The log is appended to `retro_<pid>.log` in the given directory. Each
committed transaction becomes one line of the form
`<t<physical>,<hlc>,<node>>:name:value,...`; sets appear as
`name:...{a,b}` (added) or `name:--{a,b}` (removed). When snapshots are
enabled, the first transaction in each new time block is preceded by a line
starting with `<snapt`. Sets created with `create_timer_set` report their
values as removed once the expiry time has passed. `commit` without
`start_tx` raises `RuntimeError`.

## What the package does not do

There is no network transport: messages go wherever the transport callable
you supply sends them. There is no command-line program, no client or
benchmark driver, and no persistent storage; the key-value store lives in
memory for as long as the `Node` does.