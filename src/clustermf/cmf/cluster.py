"""Clusters of molecular orbitals and validation of orbital partitions."""

from collections.abc import Sequence

from attrs import define, field

from clustermf.shared.helper import ensure
from clustermf.shared.typing import ClusterIdx, OrbitalIdx


@define(frozen=True)
class MOCluster:
    """A cluster is a set of molecular orbitals that is treated exactly.

    Parameters
    ----------
    idx :
        Position of the cluster in the list of clusters.
    orb_list :
        Global indices of the orbitals that belong to the cluster.
    """

    idx: ClusterIdx
    orb_list: tuple[OrbitalIdx, ...] = field(converter=tuple)

    def __len__(self) -> int:
        return len(self.orb_list)

    def __str__(self) -> str:
        return f"MOCluster({self.idx}): {list(self.orb_list)}"


def make_clusters(orb_lists: Sequence[Sequence[int]]) -> list[MOCluster]:
    """Create clusters from a list of orbital lists and validate the partition."""
    clusters = [
        MOCluster(ClusterIdx(i), [OrbitalIdx(p) for p in orbs])
        for i, orbs in enumerate(orb_lists)
    ]
    check_partition(clusters)
    return clusters


def check_partition(clusters: Sequence[MOCluster], n_orb: int | None = None) -> None:
    """Raise :class:`ValueError` unless the clusters are disjoint and cover
    the orbitals :python:`range(n_orb)`.

    If :python:`n_orb` is not given, it is inferred from the clusters.
    """
    all_orbs = [p for ci in clusters for p in ci.orb_list]
    ensure(len(all_orbs) > 0, "At least one non-empty cluster is required.")
    ensure(len(set(all_orbs)) == len(all_orbs), "Clusters have to be disjoint.")
    if n_orb is None:
        n_orb = len(all_orbs)
    ensure(
        sorted(all_orbs) == list(range(n_orb)),
        f"Clusters have to cover all {n_orb} orbitals exactly once.",
    )
    ensure(
        len({ci.idx for ci in clusters}) == len(clusters),
        "Cluster indices have to be unique.",
    )
    ensure(
        sorted(ci.idx for ci in clusters) == list(range(len(clusters))),
        f"Cluster indices have to be 0, ..., {len(clusters) - 1}.",
    )
