"""Placement of master (etcd) nodes across subnets.

etcd needs an odd member count to keep quorum. A single subnet gets three
members; several subnets get one member each, padded to at least five and
then to the next odd count.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from dataclasses import replace
from typing import Final

from kubestack.model import NodeNetworkAssignment

from .network import Subnet

SINGLE_SUBNET_NODES: Final = 3
MULTI_SUBNET_MIN_NODES: Final = 5


def distribute_nodes(subnets: Sequence[Subnet]) -> list[NodeNetworkAssignment]:
    """Assign master node ids to subnets.

    Subnets are sorted by id first, so the result only depends on the set of
    subnets. Short lists are padded by re-reading the list from its second
    entry, including entries appended while padding; an even total then gets
    one more node in the first subnet.

    >>> [a.subnet_id for a in distribute_nodes([Subnet("b", "az-b", "v"), Subnet("a", "az-a", "v")])]
    ['a', 'b', 'b', 'b', 'a']
    """
    if not subnets:
        return []

    ordered = sorted(subnets, key=lambda s: s.subnet_id)
    if len(ordered) == 1:
        only = ordered[0]
        return [NodeNetworkAssignment(only.subnet_id, only.availability_zone, i) for i in range(SINGLE_SUBNET_NODES)]

    dist = [NodeNetworkAssignment(s.subnet_id, s.availability_zone, i) for i, s in enumerate(ordered)]
    i = 1
    while i < MULTI_SUBNET_MIN_NODES + 1 - len(dist):
        dist.append(replace(dist[i], node_id=len(dist)))
        i += 1
    if len(dist) % 2 == 0:
        dist.append(replace(dist[0], node_id=len(dist)))
    return dist


def nodes_per_subnet(subnets: Sequence[Subnet]) -> dict[str, int]:
    """Number of master nodes each subnet hosts."""
    return dict(Counter(a.subnet_id for a in distribute_nodes(subnets)))
