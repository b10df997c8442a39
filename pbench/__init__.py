"""Paxos, batched Paxos and EPaxos replicas, quorum systems and an event log."""

__version__ = "0.1.0"