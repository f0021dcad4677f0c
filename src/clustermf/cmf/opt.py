"""Orbital optimization of cluster mean-field (CMF-OO)."""

import logging
from collections.abc import Sequence

import numpy as np
from attrs import define, field
from numpy import float64
from numpy.linalg import norm
from scipy.linalg import expm, pinv
from scipy.linalg import solve as linear_solve
from scipy.optimize import OptimizeResult, minimize

from clustermf.cmf.ci import Sectors, as_ansatze, cmf_ci
from clustermf.cmf.cluster import MOCluster
from clustermf.cmf.energy import assemble_full_rdm
from clustermf.cmf.integrals import InCoreInts, orbital_rotation
from clustermf.cmf.orbital_gradient import (
    build_orbital_gradient,
    build_orbital_hessian,
    rotation_from_kappa,
    unpack_gradient,
)
from clustermf.cmf.projection import projection_vector
from clustermf.cmf.rdm import RDM1
from clustermf.cmf.rdm import orbital_rotation as rdm_rotation
from clustermf.shared.config import settings
from clustermf.shared.helper import Timer, unused
from clustermf.shared.typing import KwargDict, Matrix, OOMethods, Vector

logger = logging.getLogger(__name__)


@define
class OOState:
    """Data shared between objective, gradient and callback of :func:`cmf_oo`.

    Densities are stored in the initial orbitals.
    The ``*_tmp`` attributes belong to the last evaluated point,
    the ``*_curr`` attributes to the last accepted iterate.
    """

    ints: InCoreInts
    clusters: Sequence[MOCluster]
    sectors: Sectors
    gconv: float
    ci_kwargs: KwargDict
    d1_curr: RDM1
    d1_tmp: RDM1 = field(init=False)
    e_curr: float = 0.0
    e_tmp: float = 0.0
    g_curr: float = 0.0
    g_tmp: float = 0.0
    iter: int = 0

    def __attrs_post_init__(self) -> None:
        self.d1_tmp = self.d1_curr.copy()

    def objective(self, k: Vector[float64]) -> float:
        U = rotation_from_kappa(k, self.ints.n_orb)
        ints_tmp = orbital_rotation(self.ints, U)
        e, rdm1_dict, _ = cmf_ci(
            ints_tmp,
            self.clusters,
            self.sectors,
            rdm_rotation(self.d1_curr, U),
            **self.ci_kwargs,
        )
        self.d1_tmp = rdm_rotation(assemble_full_rdm(self.clusters, rdm1_dict), U.T)
        self.e_tmp = e
        return e

    def gradient(self, k: Vector[float64]) -> Vector[float64]:
        U = rotation_from_kappa(k, self.ints.n_orb)
        ints_tmp = orbital_rotation(self.ints, U)
        _, rdm1_dict, rdm2_dict = cmf_ci(
            ints_tmp,
            self.clusters,
            self.sectors,
            rdm_rotation(self.d1_curr, U),
            **self.ci_kwargs,
        )
        gd1, gd2 = assemble_full_rdm(self.clusters, rdm1_dict, rdm2_dict)
        gout = build_orbital_gradient(ints_tmp, gd1, gd2)
        self.g_tmp = float(norm(gout))
        return gout

    def callback(self, intermediate_result: OptimizeResult) -> None:
        """Accept the current iterate and stop once the gradient is converged."""
        unused(intermediate_result)
        self.d1_curr = self.d1_tmp.copy()
        self.e_curr = self.e_tmp
        self.g_curr = self.g_tmp
        self.iter += 1
        converged = self.g_curr < self.gconv
        logger.info(
            "%sooCMF Iter: %4i Total= %16.12f Active= %16.12f G= %12.2e",
            "*" if converged else " ",
            self.iter,
            self.e_curr,
            self.e_curr - self.ints.h0,
            self.g_curr,
        )
        if converged:
            raise StopIteration


def cmf_oo(
    ints: InCoreInts,
    clusters: Sequence[MOCluster],
    sectors: Sectors,
    dguess: RDM1,
    *,
    max_iter_oo: int = 100,
    max_iter_ci: int = 100,
    maxiter_d1: int = 20,
    gconv: float = 1e-6,
    tol_d1: float = 1e-7,
    tol_ci: float = 1e-8,
    verbose: int = 0,
    method: OOMethods = "bfgs",
    use_pyscf: bool = True,
    sequential: bool = False,
    spin_avg: bool = True,
    nproc: int = 1,
) -> tuple[float, Matrix[float64], RDM1]:
    """Optimize orbitals and cluster states with a quasi-Newton method.

    Every evaluation of energy or gradient solves CMF-CI in the rotated
    orbitals, starting from the density of the last accepted iterate.

    Parameters
    ----------
    ints :
        Integrals of the full system.
    clusters :
        The clusters.
    sectors :
        Particle number sector or ansatz of each cluster.
    dguess :
        Initial guess for the density.
    max_iter_oo :
        Maximum number of orbital optimization steps.
    gconv :
        Convergence threshold for the norm of the orbital gradient.
    method :
        :python:`"bfgs"` (L-BFGS-B) or :python:`"cg"` (conjugate gradient)
        of :func:`scipy.optimize.minimize`.
        For :python:`"gd"`, :python:`"diis"`, and :python:`"newton"` use
        :func:`cmf_oo_gd`, :func:`~clustermf.cmf.diis.cmf_oo_diis`, and
        :func:`cmf_oo_newton`.

    Returns
    -------
    :
        Energy, the orbital rotation :math:`U`, and the density in the
        rotated orbitals.
    """
    norb = ints.n_orb
    if method == "bfgs":
        optmethod = "L-BFGS-B"
    elif method == "cg":
        optmethod = "CG"
    elif method in ("gd", "diis", "newton"):
        raise NotImplementedError(
            f"Method {method} is not available in cmf_oo, use cmf_oo_{method}."
        )
    else:
        raise ValueError(f"Unknown orbital optimization method: {method}")

    state = OOState(
        ints,
        clusters,
        sectors,
        gconv,
        dict(
            maxiter_ci=max_iter_ci,
            maxiter_d1=maxiter_d1,
            tol_d1=tol_d1,
            tol_ci=tol_ci,
            verbose=verbose,
            use_pyscf=use_pyscf,
            sequential=sequential,
            spin_avg=spin_avg,
            nproc=nproc,
        ),
        dguess.copy(),
    )
    res = minimize(
        state.objective,
        np.zeros(norb * (norb - 1) // 2),
        jac=state.gradient,
        method=optmethod,
        callback=state.callback,
        options={"gtol": gconv, "maxiter": max_iter_oo},
    )
    logger.debug("scipy.optimize.minimize: %s", res.message)
    e = float(res.fun)
    logger.info("*ooCMF %12.8f", e)

    U = rotation_from_kappa(res.x, norb)
    return e, U, rdm_rotation(state.d1_curr, U)


def cmf_oo_gd(
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
    alpha: float = 0.1,
    use_pyscf: bool = True,
    zero_intra_rots: bool = True,
    sequential: bool = False,
    spin_avg: bool = True,
    nproc: int = 1,
) -> tuple[float, Matrix[float64], RDM1]:
    r"""Optimize orbitals and cluster states by steepest descent.

    Each step rotates the current orbitals by :math:`\exp(-\alpha G)`,
    the rotations are accumulated in :math:`U`.

    Parameters
    ----------
    alpha :
        Step size.
    zero_intra_rots :
        Remove rotations among the orbitals of one cluster from the step.

    Returns
    -------
    :
        Energy, the accumulated orbital rotation, and the density in the
        rotated orbitals.
    """
    ints = ints_in
    norb = ints.n_orb
    d1 = dguess.copy()
    U = np.eye(norb)
    e = 0.0

    step_i = np.zeros(norb * (norb - 1) // 2)
    converged = False
    for i in range(1, maxiter_oo + 1):
        timer = Timer("ooCMF gradient descent step")
        K = unpack_gradient(step_i, norb)
        if zero_intra_rots:
            for ci in clusters:
                K[np.ix_(ci.orb_list, ci.orb_list)] = 0.0
        Ui = expm(K)
        ints = orbital_rotation(ints, Ui)
        d1 = rdm_rotation(d1, Ui)

        e, rdm1_dict, rdm2_dict = cmf_ci(
            ints,
            clusters,
            sectors,
            d1,
            maxiter_d1=maxiter_d1,
            maxiter_ci=maxiter_ci,
            tol_d1=tol_d1,
            tol_ci=tol_ci,
            verbose=verbose,
            use_pyscf=use_pyscf,
            sequential=sequential,
            spin_avg=spin_avg,
            nproc=nproc,
        )
        d1, d2 = assemble_full_rdm(clusters, rdm1_dict, rdm2_dict)
        g_i = build_orbital_gradient(ints, d1, d2)
        step_i = -alpha * g_i
        U = U @ Ui

        converged = norm(g_i) < tol_oo
        logger.info(
            "%sStep: %4i E: %16.12f G: %4.1e",
            "*" if converged else " ",
            i,
            e,
            norm(g_i),
        )
        logger.debug(timer.str_elapsed())
        if converged:
            break

    if not converged:
        logger.warning("ooCMF gradient descent not converged in %d steps", maxiter_oo)
    return e, U, d1


def cmf_oo_newton(
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
    step_trust_region: float = 0.95,
    use_pyscf: bool = True,
    zero_intra_rots: bool = True,
    sequential: bool = False,
    trust_region: bool = False,
    use_linearsolve: bool = True,
    spin_avg: bool = True,
    nproc: int = 1,
) -> tuple[float, Matrix[float64], RDM1]:
    """Optimize orbitals and cluster states with Newton steps.

    Each iteration builds gradient :math:`g` and orbital Hessian :math:`H`
    in the current orbitals and steps by :math:`-H^{-1} g`.

    Parameters
    ----------
    step_trust_region :
        Maximum norm of a step if :python:`trust_region` is set.
    zero_intra_rots :
        Solve the Newton equations only in the space of non-redundant
        rotations (:func:`~clustermf.cmf.projection.projection_vector`).
    trust_region :
        Scale down steps longer than :python:`step_trust_region`.
    use_linearsolve :
        Solve the Newton equations with :func:`scipy.linalg.solve`,
        otherwise with the pseudoinverse of the Hessian.

    Returns
    -------
    :
        Energy, the accumulated orbital rotation, and the density in the
        rotated orbitals.
    """
    logger.info(" Solve OO-CMF with newton")
    ints = ints_in
    norb = ints.n_orb
    d1 = dguess.copy()
    U = np.eye(norb)
    e = 0.0
    ansatze = as_ansatze(clusters, sectors)
    proj_vec = projection_vector(ansatze, clusters, norb) if zero_intra_rots else None

    step_i = np.zeros(norb * (norb - 1) // 2)
    converged = False
    for i in range(1, maxiter_oo + 1):
        timer = Timer("ooCMF Newton step")
        Ui = rotation_from_kappa(step_i, norb)
        ints = orbital_rotation(ints, Ui)
        d1 = rdm_rotation(d1, Ui)

        e, rdm1_dict, rdm2_dict = cmf_ci(
            ints,
            clusters,
            ansatze,
            d1,
            maxiter_d1=maxiter_d1,
            maxiter_ci=maxiter_ci,
            tol_d1=tol_d1,
            tol_ci=tol_ci,
            verbose=verbose,
            use_pyscf=use_pyscf,
            sequential=sequential,
            spin_avg=spin_avg,
            nproc=nproc,
        )
        d1, d2 = assemble_full_rdm(clusters, rdm1_dict, rdm2_dict)
        g_i = build_orbital_gradient(ints, d1, d2)
        h_i = build_orbital_hessian(ints, d1, d2)

        if proj_vec is not None:
            P = proj_vec
            if use_linearsolve:
                tmp_step = linear_solve(P.T @ h_i @ P, P.T @ g_i)
            else:
                tmp_step = pinv(P.T @ h_i @ P, rtol=settings.PINV_RTOL) @ (P.T @ g_i)
            step_i = -P @ tmp_step
        elif use_linearsolve:
            step_i = -linear_solve(h_i, g_i)
        else:
            step_i = -pinv(h_i, rtol=settings.PINV_RTOL) @ g_i

        if trust_region and norm(step_i) > step_trust_region:
            step_i = step_i * step_trust_region / norm(step_i)
        U = U @ Ui

        converged = norm(g_i) < tol_oo
        if converged:
            logger.info("*Step: %4i E: %16.12f G: %12.2e", i, e, norm(g_i))
            break
        logger.info(
            " Step: %4i E: %16.12f G: %12.2e step_size: %12.2e",
            i,
            e,
            norm(g_i),
            norm(step_i),
        )
        logger.debug(timer.str_elapsed())

    if not converged:
        logger.warning("ooCMF Newton not converged in %d steps", maxiter_oo)
    return e, U, d1


def orbital_gradient_numerical(
    ints: InCoreInts,
    clusters: Sequence[MOCluster],
    kappa: Vector[float64],
    sectors: Sectors,
    d1: RDM1,
    *,
    stepsize: float = 1e-5,
    **ci_kwargs,
) -> Vector[float64]:
    """Central finite-difference gradient of the CMF-CI energy
    with respect to the packed rotation parameters :python:`kappa`.

    Each displaced point solves CMF-CI from scratch, starting from
    :python:`d1` (given in the unrotated orbitals).
    """
    norb = ints.n_orb

    def energy(k: Vector[float64]) -> float:
        U = rotation_from_kappa(k, norb)
        e, _, _ = cmf_ci(
            orbital_rotation(ints, U),
            clusters,
            sectors,
            rdm_rotation(d1, U),
            **ci_kwargs,
        )
        return e

    grad = np.zeros(len(kappa))
    for i in range(len(kappa)):
        k_plus = np.array(kappa, dtype=float64)
        k_minus = np.array(kappa, dtype=float64)
        k_plus[i] += stepsize
        k_minus[i] -= stepsize
        grad[i] = (energy(k_plus) - energy(k_minus)) / (2 * stepsize)
    return grad
