"""Solve a single cluster in the mean field of the others."""

import logging

import numpy as np
from pyscf.fci import direct_spin1

from clustermf.cmf.active_space import SolverSettings, compute_1rdm_2rdm, solve
from clustermf.cmf.ansatz import Ansatz, FCIAnsatz
from clustermf.cmf.cluster import MOCluster
from clustermf.cmf.integrals import InCoreInts, subset
from clustermf.cmf.rdm import RDM1, RDM2, compute_energy, spin_average
from clustermf.shared.helper import ensure
from clustermf.shared.typing import SolverPackages

logger = logging.getLogger(__name__)


def solve_cluster(
    ints: InCoreInts,
    rdm1: RDM1,
    cluster: MOCluster,
    ansatz: Ansatz,
    *,
    use_pyscf: bool = True,
    tol_ci: float = 1e-8,
    maxiter_ci: int = 100,
    spin_avg: bool = True,
    package: SolverPackages = "davidson",
    verbose: int = 0,
) -> tuple[RDM1, RDM2, float]:
    """Ground state of :python:`cluster` embedded in the density of the others.

    Parameters
    ----------
    ints :
        Integrals of the full system.
    rdm1 :
        Density of the full system. Only the blocks outside of the cluster
        enter the embedding potential.
    cluster :
        The cluster to solve.
    ansatz :
        Particle number sector and determinant space of the cluster.
    use_pyscf :
        Use :class:`pyscf.fci.direct_spin1.FCI` for :class:`FCIAnsatz`,
        otherwise :func:`clustermf.cmf.active_space.solve`.
    tol_ci :
        Convergence threshold of the eigensolver.
    maxiter_ci :
        Maximum number of iterations of the eigensolver.
    spin_avg :
        Average alpha and beta densities.
    package :
        Iterative eigensolver of :func:`clustermf.cmf.active_space.solve`.
    verbose :
        Verbosity passed to the eigensolver.

    Returns
    -------
    :
        One- and two-particle densities of the cluster in its local
        orbital indices, and the energy of the embedded cluster.
    """
    no = len(cluster)
    ensure(ansatz.no == no, f"{ansatz} does not match {cluster}.")
    ints_i = subset(ints, cluster.orb_list, rdm1)

    # fully occupied or empty in both spin channels
    if ansatz.dima * ansatz.dimb == 1:
        da = np.eye(no) if ansatz.na == no else np.zeros((no, no))
        db = np.eye(no) if ansatz.nb == no else np.zeros((no, no))
        d1 = RDM1(da, db)
        d2 = RDM2.from_rdm1(d1)
        e = compute_energy(ints_i, d1, d2)
        logger.debug("Slater determinant energy of %s: %12.8f", cluster, e)
    elif use_pyscf and isinstance(ansatz, FCIAnsatz):
        nelec = (ansatz.na, ansatz.nb)
        cisolver = direct_spin1.FCI()
        cisolver.max_cycle = maxiter_ci
        cisolver.conv_tol = tol_ci
        cisolver.conv_tol_residual = tol_ci
        cisolver.verbose = verbose
        e, vfci = cisolver.kernel(ints_i.h1, ints_i.h2, no, nelec, ecore=ints_i.h0)
        if not cisolver.converged:
            logger.debug("FCI solver not converged for %s", cluster)
        (d1a, d1b), (d2aa, d2ab, d2bb) = cisolver.make_rdm12s(vfci, no, nelec)
        d1 = RDM1(d1a, d1b)
        d2 = RDM2(d2aa, d2ab, d2bb)
    else:
        settings = SolverSettings(
            verbose=verbose, tol=tol_ci, maxiter=maxiter_ci, package=package
        )
        solution = solve(ints_i, ansatz, settings)
        e = solution.energies[0]
        d1a, d1b, d2aa, d2bb, d2ab = compute_1rdm_2rdm(solution)
        d1 = RDM1(d1a, d1b)
        d2 = RDM2(d2aa, d2ab, d2bb)

    if spin_avg:
        d1, d2 = spin_average(d1, d2)
    return d1, d2, float(e)
