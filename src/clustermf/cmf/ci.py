"""Self-consistent optimization of the cluster states for fixed orbitals (CMF-CI)."""

import logging
from collections.abc import Sequence
from multiprocessing.pool import ThreadPool as Pool
from typing import TypeAlias

from numpy import ix_
from numpy.linalg import norm

from clustermf.cmf.ansatz import Ansatz, FCIAnsatz, RASCIAnsatz
from clustermf.cmf.cluster import MOCluster, check_partition
from clustermf.cmf.energy import assemble_full_rdm, compute_cmf_energy
from clustermf.cmf.integrals import InCoreInts
from clustermf.cmf.rdm import RDM1, RDM2
from clustermf.cmf.solver import solve_cluster
from clustermf.shared.helper import ensure
from clustermf.shared.typing import ClusterIdx, FockSector, SolverPackages

logger = logging.getLogger(__name__)

#: Either the particle number sector or the full ansatz of each cluster.
Sectors: TypeAlias = Sequence[FockSector] | Sequence[Ansatz]


def as_ansatze(clusters: Sequence[MOCluster], sectors: Sectors) -> list[Ansatz]:
    """Ansatz of each cluster, indexed by :python:`cluster.idx`.

    Particle number sectors :python:`(na, nb)` are turned into
    :class:`~clustermf.cmf.ansatz.FCIAnsatz`.
    """
    check_partition(clusters)
    ensure(
        len(sectors) == len(clusters),
        f"Got {len(sectors)} sectors for {len(clusters)} clusters.",
    )
    by_idx = {ci.idx: ci for ci in clusters}
    ansatze: list[Ansatz] = []
    for idx, sector in enumerate(sectors):
        ci = by_idx[ClusterIdx(idx)]
        if isinstance(sector, (FCIAnsatz, RASCIAnsatz)):
            ensure(sector.no == len(ci), f"{sector} does not match {ci}.")
            ansatze.append(sector)
        else:
            na, nb = sector
            ansatze.append(FCIAnsatz(len(ci), na, nb))
    return ansatze


def cmf_ci_iteration(
    ints: InCoreInts,
    clusters: Sequence[MOCluster],
    in_rdm1: RDM1,
    sectors: Sectors,
    *,
    use_pyscf: bool = True,
    verbose: int = 0,
    sequential: bool = False,
    spin_avg: bool = True,
    tol_ci: float = 1e-8,
    maxiter_ci: int = 100,
    package: SolverPackages = "davidson",
    nproc: int = 1,
) -> tuple[float, dict[ClusterIdx, RDM1], dict[ClusterIdx, RDM2]]:
    """Solve every cluster once in the mean field of the other clusters.

    Parameters
    ----------
    ints :
        Integrals of the full system.
    clusters :
        The clusters, solved in this order.
    in_rdm1 :
        Density of the full system that defines the embedding.
        It is not modified.
    sectors :
        Particle number sector or ansatz of each cluster.
    sequential :
        Embed each cluster in the densities already updated in this sweep.
        The result then depends on the order of the clusters.
    spin_avg :
        Average alpha and beta densities of each cluster.
    nproc :
        Number of threads to solve the clusters concurrently.
        Only used if :python:`sequential` is false.

    Returns
    -------
    :
        The CMF energy and the one- and two-particle densities of
        each cluster, indexed by :python:`cluster.idx`.
    """
    ansatze = as_ansatze(clusters, sectors)
    rdm1 = in_rdm1.copy()
    kwargs = dict(
        use_pyscf=use_pyscf,
        tol_ci=tol_ci,
        maxiter_ci=maxiter_ci,
        spin_avg=spin_avg,
        package=package,
        verbose=verbose,
    )

    rdm1_dict: dict[ClusterIdx, RDM1] = {}
    rdm2_dict: dict[ClusterIdx, RDM2] = {}
    if nproc > 1 and not sequential:
        with Pool(nproc) as pool_:
            results = [
                pool_.apply_async(
                    solve_cluster, [ints, rdm1, ci, ansatze[ci.idx]], kwargs
                )
                for ci in clusters
            ]
            for ci, result in zip(clusters, results):
                rdm1_dict[ci.idx], rdm2_dict[ci.idx], _ = result.get()
    else:
        for ci in clusters:
            d1, d2, e = solve_cluster(ints, rdm1, ci, ansatze[ci.idx], **kwargs)
            logger.debug("Embedded energy of %s: %12.8f", ci, e)
            rdm1_dict[ci.idx] = d1
            rdm2_dict[ci.idx] = d2
            if sequential:
                idx = ix_(ci.orb_list, ci.orb_list)
                rdm1.a[idx] = d1.a
                rdm1.b[idx] = d1.b

    e_curr = compute_cmf_energy(ints, rdm1_dict, rdm2_dict, clusters)
    logger.info(" CMF-CI Curr: Elec %12.8f Total %12.8f", e_curr - ints.h0, e_curr)
    return e_curr, rdm1_dict, rdm2_dict


def cmf_ci(
    ints: InCoreInts,
    clusters: Sequence[MOCluster],
    sectors: Sectors,
    in_rdm1: RDM1,
    *,
    maxiter_ci: int = 100,
    maxiter_d1: int = 20,
    tol_d1: float = 1e-6,
    tol_ci: float = 1e-8,
    verbose: int = 0,
    use_pyscf: bool = True,
    sequential: bool = False,
    spin_avg: bool = True,
    package: SolverPackages = "davidson",
    nproc: int = 1,
) -> tuple[float, dict[ClusterIdx, RDM1], dict[ClusterIdx, RDM2]]:
    """Optimize the cluster states for fixed orbitals.

    Sweeps of :func:`cmf_ci_iteration` are repeated until the
    spin-summed one-particle density changes by less than :python:`tol_d1`
    (Frobenius norm). After :python:`maxiter_d1` sweeps the last result is
    returned, whether converged or not.

    Parameters
    ----------
    ints :
        Integrals of the full system.
    clusters :
        The clusters.
    sectors :
        Particle number sector :python:`(na, nb)` or ansatz of each cluster,
        indexed by :python:`cluster.idx`.
    in_rdm1 :
        Initial guess for the density of the full system.
    maxiter_ci :
        Maximum number of iterations of the cluster eigensolver.
    maxiter_d1 :
        Maximum number of sweeps.
    tol_d1 :
        Convergence threshold for the change of the density.
    tol_ci :
        Convergence threshold of the cluster eigensolver.
    verbose :
        Verbosity passed to the eigensolver.
    use_pyscf :
        Use :mod:`pyscf.fci` for clusters with an FCI ansatz.
    sequential :
        Embed each cluster in the densities already updated in the sweep.
        Converges faster, but depends on the order of the clusters.
    spin_avg :
        Average alpha and beta densities of each cluster.
    package :
        Eigensolver for clusters that are not solved by :mod:`pyscf.fci`.
    nproc :
        Number of threads to solve the clusters of a sweep concurrently.

    Returns
    -------
    :
        Energy, and the one- and two-particle densities of each cluster.
    """
    ensure(maxiter_d1 >= 1, "At least one CMF-CI iteration is required.")
    rdm1 = in_rdm1.copy()
    energies = []
    converged = False
    for iter_ in range(maxiter_d1):
        logger.debug(" CMF CI Iter: %d", iter_)
        e_curr, rdm1_dict, rdm2_dict = cmf_ci_iteration(
            ints,
            clusters,
            rdm1,
            sectors,
            use_pyscf=use_pyscf,
            verbose=verbose,
            sequential=sequential,
            spin_avg=spin_avg,
            tol_ci=tol_ci,
            maxiter_ci=maxiter_ci,
            package=package,
            nproc=nproc,
        )
        rdm1_curr = assemble_full_rdm(clusters, rdm1_dict)
        d_err = norm(rdm1_curr.spin_summed() - rdm1.spin_summed())
        e_err = e_curr - energies[-1] if energies else e_curr
        energies.append(e_curr)
        logger.debug(
            " CMF-CI Energy: %12.8f | Change: RDM: %6.1e Energy %6.1e",
            e_curr,
            d_err,
            e_err,
        )
        rdm1 = rdm1_curr
        if d_err < tol_d1:
            converged = True
            logger.info("*CMF-CI: Elec %12.8f Total %12.8f", e_curr - ints.h0, e_curr)
            break

    if not converged:
        logger.warning(
            "CMF-CI not converged in %d iterations, last energy %12.8f",
            maxiter_d1,
            energies[-1],
        )
    for e in energies:
        logger.debug(" Elec: %12.8f Total: %12.8f", e - ints.h0, e)
    return energies[-1], rdm1_dict, rdm2_dict
