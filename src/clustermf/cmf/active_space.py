"""Iterative ground-state solver for a single cluster.

The determinants of an :data:`~clustermf.cmf.ansatz.Ansatz` are a subset of
the alpha times beta string grid of :mod:`pyscf.fci`. Sigma vectors are
computed with :func:`pyscf.fci.direct_spin1.contract_2e` on the full grid
and projected back onto the subset.
"""

import logging
from collections.abc import Callable
from typing import get_args

import numpy as np
from attrs import define, field
from numpy import float64
from pyscf import lib
from pyscf.fci import direct_spin1
from scipy.sparse.linalg import LinearOperator, eigsh
from typing_extensions import assert_never

from clustermf.cmf.ansatz import Ansatz
from clustermf.cmf.integrals import InCoreInts
from clustermf.shared.helper import ensure
from clustermf.shared.typing import Matrix, SolverPackages, Tensor4D, Vector

logger = logging.getLogger(__name__)


@define(frozen=True)
class SolverSettings:
    """Options of :func:`solve`.

    Parameters
    ----------
    verbose :
        Verbosity of the iterative eigensolver.
    tol :
        Convergence threshold of the eigenvalue.
    maxiter :
        Maximum number of iterations of the eigensolver.
    package :
        Which iterative eigensolver to use,
        :func:`pyscf.lib.davidson` or :func:`scipy.sparse.linalg.eigsh`.
    nroots :
        Number of states.
    """

    verbose: int = 0
    tol: float = 1e-8
    maxiter: int = 100
    package: SolverPackages = field(default="davidson")
    nroots: int = field(default=1)

    @package.validator
    def _check_package(self, _attribute, value: str) -> None:
        ensure(
            value in get_args(SolverPackages), f"Unknown eigensolver package: {value}"
        )

    @nroots.validator
    def _check_nroots(self, _attribute, value: int) -> None:
        ensure(value >= 1, "At least one root is required.")


@define(frozen=True, eq=False)
class Solution:
    """Eigenpairs of a cluster Hamiltonian.

    :python:`vectors[:, i]` holds the coefficients of root :python:`i`
    over the determinants selected by :python:`ansatz.determinant_mask()`.
    """

    ansatz: Ansatz
    energies: Vector[float64]
    vectors: Matrix[float64]


def _sigma_operator(
    ints: InCoreInts, ansatz: Ansatz, mask: Matrix[np.bool_]
) -> Callable[[Vector[float64]], Vector[float64]]:
    nelec = (ansatz.na, ansatz.nb)
    h2e = direct_spin1.absorb_h1e(ints.h1, ints.h2, ansatz.no, nelec, 0.5)

    def hop(x: Vector[float64]) -> Vector[float64]:
        c = np.zeros(mask.shape)
        c[mask] = np.ravel(x)
        sigma = direct_spin1.contract_2e(h2e, c, ansatz.no, nelec)
        return sigma.reshape(mask.shape)[mask]

    return hop


def _dense_eigh(
    hop: Callable[[Vector[float64]], Vector[float64]], dim: int, nroots: int
) -> tuple[Vector[float64], Matrix[float64]]:
    H = np.column_stack([hop(col) for col in np.eye(dim)])
    e, v = np.linalg.eigh(H)
    return e[:nroots], v[:, :nroots]


def solve(ints: InCoreInts, ansatz: Ansatz, settings: SolverSettings) -> Solution:
    """Lowest eigenpairs of the cluster Hamiltonian :python:`ints`
    within the determinant space of :python:`ansatz`.
    """
    ensure(
        ints.n_orb == ansatz.no,
        f"Integrals for {ints.n_orb} orbitals do not match the ansatz {ansatz}.",
    )
    mask = ansatz.determinant_mask()
    dim = int(mask.sum())
    nroots = min(settings.nroots, dim)
    hop = _sigma_operator(ints, ansatz, mask)
    hdiag = direct_spin1.make_hdiag(
        ints.h1, ints.h2, ansatz.no, (ansatz.na, ansatz.nb)
    ).reshape(mask.shape)[mask]

    guess = []
    for i in np.argsort(hdiag)[:nroots]:
        x0 = np.zeros(dim)
        x0[i] = 1.0
        guess.append(x0)

    if nroots >= dim:
        energies, vectors = _dense_eigh(hop, dim, nroots)
    elif settings.package == "davidson":
        e, x = lib.davidson(
            hop,
            guess,
            lambda r, e0, _x0: r / (hdiag - e0 + 1e-4),
            tol=settings.tol,
            max_cycle=settings.maxiter,
            nroots=nroots,
            verbose=settings.verbose,
        )
        energies = np.atleast_1d(e)
        vectors = np.column_stack([x] if nroots == 1 else x)
    elif settings.package == "arpack":
        H = LinearOperator((dim, dim), matvec=hop, dtype=float64)
        energies, vectors = eigsh(
            H,
            k=nroots,
            which="SA",
            v0=guess[0],
            tol=settings.tol,
            maxiter=settings.maxiter * dim,
        )
        order = np.argsort(energies)
        energies, vectors = energies[order], vectors[:, order]
    else:
        assert_never(settings.package)

    logger.debug("Cluster solve in %d determinants: %s", dim, energies)
    return Solution(ansatz, energies + ints.h0, vectors)


def compute_1rdm_2rdm(
    solution: Solution, root: int = 0
) -> tuple[
    Matrix[float64],
    Matrix[float64],
    Tensor4D[float64],
    Tensor4D[float64],
    Tensor4D[float64],
]:
    """Spin-resolved density matrices of one root.

    Returns
    -------
    :
        :python:`(d1a, d1b, d2aa, d2bb, d2ab)` in the conventions of
        :func:`pyscf.fci.direct_spin1.make_rdm12s`.
    """
    ansatz = solution.ansatz
    mask = ansatz.determinant_mask()
    c = np.zeros(mask.shape)
    c[mask] = solution.vectors[:, root]
    (d1a, d1b), (d2aa, d2ab, d2bb) = direct_spin1.make_rdm12s(
        c, ansatz.no, (ansatz.na, ansatz.nb)
    )
    return d1a, d1b, d2aa, d2bb, d2ab
