"""Redundant orbital rotations of a set of cluster ansatze.

Rotations among orbitals that an ansatz treats equivalently do not change
the CMF energy. They are removed from the Newton and DIIS steps
with the projector of :func:`projection_vector`.
"""

from collections.abc import Sequence

import numpy as np
from numpy import float64

from clustermf.cmf.ansatz import Ansatz, FCIAnsatz, RASCIAnsatz
from clustermf.cmf.cluster import MOCluster, check_partition
from clustermf.shared.typing import Matrix, OrbitalIdx, OrbitalPair


def _to_global(
    orb_list: Sequence[OrbitalIdx], pairs: Sequence[OrbitalPair]
) -> list[OrbitalPair]:
    result = []
    for p, q in pairs:
        P, Q = orb_list[p], orb_list[q]
        result.append((min(P, Q), max(P, Q)))
    return result


def invariant_pairs(
    ansatze: Sequence[Ansatz], clusters: Sequence[MOCluster]
) -> set[OrbitalPair]:
    """Global orbital pairs whose rotation leaves the CMF energy unchanged.

    These are the invariant rotations of each cluster ansatz and,
    between two RAS clusters, rotations that mix RAS1 with RAS1 or
    RAS3 with RAS3 orbitals.
    """
    invar: set[OrbitalPair] = set()
    for ci in clusters:
        ansatz = ansatze[ci.idx]
        invar.update(_to_global(ci.orb_list, ansatz.invariant_orbital_rotations()))

    for i, ci in enumerate(clusters):
        if not isinstance(ansatze[ci.idx], RASCIAnsatz):
            continue
        ras1_i, _, ras3_i = ansatze[ci.idx].ras_orbitals()
        for cj in clusters[i + 1 :]:
            if not isinstance(ansatze[cj.idx], RASCIAnsatz):
                continue
            ras1_j, _, ras3_j = ansatze[cj.idx].ras_orbitals()
            for space_i, space_j in ((ras1_i, ras1_j), (ras3_i, ras3_j)):
                for a in range(len(space_i)):
                    for b in range(a, len(space_j)):
                        P = ci.orb_list[space_i[a]]
                        Q = cj.orb_list[space_j[b]]
                        invar.add((min(P, Q), max(P, Q)))
    return invar


def projection_vector(
    ansatze: Sequence[Ansatz], clusters: Sequence[MOCluster], norb: int
) -> Matrix[float64]:
    """Projector onto the orbital rotations that change the CMF energy.

    The columns of the returned matrix are the unit vectors of the kept
    rotation parameters, in the packing order of
    :func:`clustermf.cmf.orbital_gradient.pack_gradient`.

    Parameters
    ----------
    ansatze :
        Ansatz of each cluster, indexed by :python:`cluster.idx`.
    clusters :
        The clusters.
    norb :
        Number of orbitals of the full system.

    Raises
    ------
    ValueError
        If every rotation is redundant, or the clusters do not partition
        the :python:`norb` orbitals.
    """
    check_partition(clusters, norb)
    invar = invariant_pairs(ansatze, clusters)
    # pairs of all orbitals in packing order
    full_list = FCIAnsatz(norb, 0, 0).invariant_orbital_rotations()
    keep_list = [a for a, pair in enumerate(full_list) if pair not in invar]
    if not keep_list:
        raise ValueError(
            "All orbital rotations are redundant, "
            "the projection can not be used. Set zero_intra_rots=False."
        )
    return np.eye(len(full_list))[:, keep_list]
