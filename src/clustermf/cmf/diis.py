"""Orbital optimization accelerated by direct inversion
in the iterative subspace (DIIS)."""

import logging
from collections.abc import Sequence

import numpy as np
from attrs import Factory, define
from numpy import float64
from numpy.linalg import norm
from scipy.linalg import pinv

from clustermf.cmf.ansatz import FCIAnsatz, RASCIAnsatz
from clustermf.cmf.ci import Sectors, as_ansatze, cmf_ci
from clustermf.cmf.cluster import MOCluster
from clustermf.cmf.energy import assemble_full_rdm
from clustermf.cmf.integrals import InCoreInts, orbital_rotation
from clustermf.cmf.orbital_gradient import (
    build_orbital_gradient,
    build_orbital_hessian,
    rotation_from_kappa,
    zero_intra_cluster_rotations,
)
from clustermf.cmf.projection import projection_vector
from clustermf.cmf.rdm import RDM1, RDM2
from clustermf.cmf.rdm import orbital_rotation as rdm_rotation
from clustermf.shared.config import settings
from clustermf.shared.helper import Timer, ensure
from clustermf.shared.typing import Matrix, SolverPackages, Vector

logger = logging.getLogger(__name__)


@define
class DIISSubspace:
    """Bounded history of parameter and error vectors.

    When the history is full, the oldest pair is dropped.

    Parameters
    ----------
    max_size :
        Maximum number of stored pairs.
    """

    max_size: int = 8
    params: list[Vector[float64]] = Factory(list)
    errors: list[Vector[float64]] = Factory(list)

    def __len__(self) -> int:
        return len(self.params)

    def push(self, param: Vector[float64], error: Vector[float64]) -> None:
        self.params.append(np.array(param, dtype=float64))
        self.errors.append(np.array(error, dtype=float64))
        if len(self.params) > self.max_size:
            self.params.pop(0)
            self.errors.pop(0)

    def extrapolate(self) -> tuple[Vector[float64], Vector[float64]]:
        r"""Solve the Pulay equations.

        The coefficients :math:`c` minimize :math:`|\sum_i c_i e_i|`
        under the constraint :math:`\sum_i c_i = 1`.
        The error overlap matrix is normalized by its largest element.

        Returns
        -------
        :
            The extrapolated parameter vector and the predicted error vector.
        """
        ensure(len(self) > 0, "The DIIS subspace is empty.")
        K_ss = np.column_stack(self.params)
        E_ss = np.column_stack(self.errors)
        nss = len(self)

        B = np.zeros((nss + 1, nss + 1))
        B[:nss, :nss] = E_ss.T @ E_ss
        B_max = np.abs(B[:nss, :nss]).max()
        if B_max > 0.0:
            B[:nss, :nss] /= B_max
        B[nss, :] = -1.0
        B[:, nss] = -1.0
        B[nss, nss] = 0.0

        b = np.zeros(nss + 1)
        b[nss] = -1.0

        x = pinv(B, rtol=settings.PINV_RTOL) @ b
        logger.debug("DIIS coefficients: %s", x[:nss])
        return K_ss @ x[:nss], E_ss @ x[:nss]


def _newton_like_step(
    g: Vector[float64],
    h: Matrix[float64] | None,
    proj_vec: Matrix[float64] | None,
    alpha: float,
) -> tuple[Vector[float64], Vector[float64]]:
    """Step and (possibly projected) gradient for the next DIIS iteration."""
    if h is not None and proj_vec is not None:
        P = proj_vec
        step = P @ (pinv(P.T @ h @ P, rtol=settings.PINV_RTOL) @ (P.T @ g))
    elif h is not None:
        step = pinv(h, rtol=settings.PINV_RTOL) @ g
    elif proj_vec is not None:
        g = proj_vec @ (proj_vec.T @ g)
        step = alpha * g
    else:
        step = alpha * g
    return step, g


def cmf_oo_diis(
    ints_in: InCoreInts,
    clusters: Sequence[MOCluster],
    sectors: Sectors,
    dguess: RDM1,
    *,
    maxiter_oo: int = 100,
    maxiter_ci: int = 100,
    maxiter_d1: int = 100,
    tol_oo: float = 1e-6,
    tol_d1: float = 1e-7,
    tol_ci: float = 1e-8,
    verbose: int = 0,
    max_ss_size: int = 8,
    diis_start: int = 1,
    alpha: float = 0.1,
    step_trust_region: float = 0.95,
    use_pyscf: bool = True,
    zero_intra_rots: bool = True,
    orb_hessian: bool = True,
    sequential: bool = False,
    trust_region: bool = False,
    spin_avg: bool = True,
    package: SolverPackages = "davidson",
    nproc: int = 1,
) -> tuple[float, Matrix[float64], RDM1]:
    r"""Optimize orbitals and cluster states with DIIS extrapolation.

    Every iterate :math:`\kappa` is evaluated from the initial orbitals,
    i.e. the integrals are rotated by :math:`\exp(K)` and the gradient
    is taken with respect to the initial orbitals.

    There are two flavours, chosen by the type of :python:`sectors`.

    * Particle number sectors :python:`(na, nb)`: the gradient is the error
      vector, a steepest descent step :math:`-\alpha g` is extrapolated.
      With :python:`zero_intra_rots` the rotations within a cluster are removed
      from gradient and step.
    * Ansatze: the step is the error vector. With :python:`orb_hessian` the
      step is a Newton step with the orbital Hessian, otherwise
      :math:`\alpha g`. With :python:`zero_intra_rots` gradient and Hessian
      are projected onto the non-redundant rotations
      (:func:`~clustermf.cmf.projection.projection_vector`).
      With :python:`trust_region` steps longer than
      :python:`step_trust_region` are scaled down.

    Parameters
    ----------
    ints_in :
        Integrals of the full system. They are not modified.
    clusters :
        The clusters.
    sectors :
        Particle number sector or ansatz of each cluster.
    dguess :
        Initial guess for the density.
    max_ss_size :
        Maximum size of the DIIS subspace.
    diis_start :
        First iteration that extrapolates.
    alpha :
        Step size of the gradient steps.

    Returns
    -------
    :
        Energy, the orbital rotation, and the density in the rotated orbitals.
    """
    logger.info(" Solve OO-CMF with DIIS")
    ints = ints_in
    norb = ints.n_orb
    norb2 = norb * (norb - 1) // 2
    ansatze_given = any(isinstance(s, (FCIAnsatz, RASCIAnsatz)) for s in sectors)
    ansatze = as_ansatze(clusters, sectors)

    def step(
        k: Vector[float64], d1_guess: RDM1
    ) -> tuple[float, Vector[float64], RDM1, RDM2]:
        Ui = rotation_from_kappa(k, norb)
        ints_i = orbital_rotation(ints, Ui)
        e_i, rdm1_dict, rdm2_dict = cmf_ci(
            ints_i,
            clusters,
            ansatze,
            rdm_rotation(d1_guess, Ui),
            maxiter_d1=maxiter_d1,
            maxiter_ci=maxiter_ci,
            tol_d1=tol_d1,
            tol_ci=tol_ci,
            verbose=verbose,
            use_pyscf=use_pyscf,
            sequential=sequential,
            spin_avg=spin_avg,
            package=package,
            nproc=nproc,
        )
        d1_i, d2_i = assemble_full_rdm(clusters, rdm1_dict, rdm2_dict)
        d1_i = rdm_rotation(d1_i, Ui.T)
        d2_i = rdm_rotation(d2_i, Ui.T)
        g_i = build_orbital_gradient(ints, d1_i, d2_i)
        if zero_intra_rots and not ansatze_given:
            g_i = zero_intra_cluster_rotations(g_i, clusters)
        return e_i, g_i, d1_i, d2_i

    proj_vec = (
        projection_vector(ansatze, clusters, norb)
        if (ansatze_given and zero_intra_rots)
        else None
    )

    k_i = np.zeros(norb2)
    e_i, g_i, d1_i, d2_i = step(k_i, dguess)
    subspace = DIISSubspace(max_ss_size)

    converged = False
    for i in range(1, maxiter_oo + 1):
        timer = Timer("ooCMF DIIS iteration")
        if ansatze_given:
            h_i = build_orbital_hessian(ints, d1_i, d2_i) if orb_hessian else None
            step_i, g_i = _newton_like_step(g_i, h_i, proj_vec, alpha)
            if trust_region and norm(step_i) > step_trust_region:
                step_i = step_i * step_trust_region / norm(step_i)
            k_i = k_i - step_i
            subspace.push(k_i, step_i)
        else:
            k_i = k_i - alpha * g_i
            subspace.push(k_i, g_i)

        if i >= diis_start:
            k_i, g_pred = subspace.extrapolate()
            logger.debug("DIIS predicted gradient norm: %12.3e", norm(g_pred))

        if zero_intra_rots and not ansatze_given:
            k_i = zero_intra_cluster_rotations(k_i, clusters)

        e_i, g_i, d1_i, d2_i = step(k_i, d1_i)

        if norm(g_i) < tol_oo:
            converged = True
            logger.info(
                "*ooCMF Iter: %4i Total= %16.12f G= %12.3e step_size= %12.3e #SS: %4s",
                i,
                e_i,
                norm(g_i),
                norm(k_i),
                len(subspace),
            )
            break
        logger.info(
            " ooCMF Iter: %4i Total= %16.12f G= %12.3e step_size= %12.3e #SS: %4s",
            i,
            e_i,
            norm(g_i),
            norm(k_i),
            len(subspace),
        )
        logger.debug(timer.str_elapsed())

    if not converged:
        logger.warning("ooCMF DIIS not converged in %d iterations", maxiter_oo)
    U = rotation_from_kappa(k_i, norb)
    return e_i, U, rdm_rotation(d1_i, U)
