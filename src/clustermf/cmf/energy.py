"""Energy and density matrices of a product of cluster states."""

import logging
from collections.abc import Mapping, Sequence
from typing import overload

from attrs import evolve
from numpy import einsum, ix_

from clustermf.cmf.cluster import MOCluster
from clustermf.cmf.integrals import InCoreInts, subset
from clustermf.cmf.rdm import RDM1, RDM2, compute_energy
from clustermf.shared.typing import ClusterIdx

logger = logging.getLogger(__name__)


def compute_cmf_energy(
    ints: InCoreInts,
    rdm1s: Mapping[ClusterIdx, RDM1],
    rdm2s: Mapping[ClusterIdx, RDM2],
    clusters: Sequence[MOCluster],
) -> float:
    """Total energy of a tensor product of cluster states.

    The energy is the sum of the constant, the energy of each cluster
    with its own densities, and the mean-field interaction of each pair of
    clusters (Coulomb for all spin channels, exchange for equal spins).

    Parameters
    ----------
    ints :
        Integrals of the full system.
    rdm1s :
        One-particle density of each cluster, indexed by :python:`cluster.idx`.
    rdm2s :
        Two-particle density of each cluster, indexed by :python:`cluster.idx`.
    clusters :
        The clusters.
    """
    e1 = {}
    for ci in clusters:
        ints_i = evolve(subset(ints, ci.orb_list), h0=0.0)
        e1[ci.idx] = compute_energy(ints_i, rdm1s[ci.idx], rdm2s[ci.idx])

    e2 = {}
    for i, ci in enumerate(clusters):
        for cj in clusters[i + 1 :]:
            v_pqrs = ints.h2[ix_(ci.orb_list, ci.orb_list, cj.orb_list, cj.orb_list)]
            v_psrq = ints.h2[ix_(ci.orb_list, cj.orb_list, cj.orb_list, ci.orb_list)]
            di, dj = rdm1s[ci.idx], rdm1s[cj.idx]

            e = 0.0
            for d_i, d_j in ((di.a, dj.a), (di.b, dj.b)):
                e += einsum("pqrs,pq,rs", v_pqrs, d_i, d_j)
                e -= einsum("psrq,pq,rs", v_psrq, d_i, d_j)
            e += einsum("pqrs,pq,rs", v_pqrs, di.a, dj.b)
            e += einsum("pqrs,pq,rs", v_pqrs, di.b, dj.a)
            e2[(ci.idx, cj.idx)] = e

    for idx, e in e1.items():
        logger.debug("Energy of cluster %d: %12.8f", idx, e)
    for (idx_i, idx_j), e in e2.items():
        logger.debug("Interaction of clusters %d and %d: %12.8f", idx_i, idx_j, e)
    return float(ints.h0 + sum(e1.values()) + sum(e2.values()))


@overload
def assemble_full_rdm(
    clusters: Sequence[MOCluster], rdm1s: Mapping[ClusterIdx, RDM1]
) -> RDM1: ...
@overload
def assemble_full_rdm(
    clusters: Sequence[MOCluster],
    rdm1s: Mapping[ClusterIdx, RDM1],
    rdm2s: Mapping[ClusterIdx, RDM2],
) -> tuple[RDM1, RDM2]: ...


def assemble_full_rdm(
    clusters: Sequence[MOCluster],
    rdm1s: Mapping[ClusterIdx, RDM1],
    rdm2s: Mapping[ClusterIdx, RDM2] | None = None,
) -> RDM1 | tuple[RDM1, RDM2]:
    """Density matrices of the full system from the cluster densities.

    The one-particle density is block diagonal over the clusters.
    If :python:`rdm2s` is given, the two-particle density of the full system
    is returned as well. It is the Wick factorization of the one-particle
    density, except for the diagonal cluster blocks which are replaced by
    the two-particle densities of the clusters.
    """
    n_orb = sum(len(ci) for ci in clusters)
    rdm1 = RDM1.zeros(n_orb)
    for ci in clusters:
        idx = ix_(ci.orb_list, ci.orb_list)
        rdm1.a[idx] = rdm1s[ci.idx].a
        rdm1.b[idx] = rdm1s[ci.idx].b
    if rdm2s is None:
        return rdm1

    rdm2 = RDM2.from_rdm1(rdm1)
    for ci in clusters:
        idx4 = ix_(ci.orb_list, ci.orb_list, ci.orb_list, ci.orb_list)
        rdm2.aa[idx4] = rdm2s[ci.idx].aa
        rdm2.ab[idx4] = rdm2s[ci.idx].ab
        rdm2.bb[idx4] = rdm2s[ci.idx].bb
    return rdm1, rdm2
