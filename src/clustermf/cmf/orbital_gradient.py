r"""Derivatives of the energy with respect to orbital rotations.

The orbitals are rotated by :math:`U = \exp(K)` with an antisymmetric
generator :math:`K`. The independent parameters are the entries
:math:`\kappa_{(p, q)} = K_{qp}` for all pairs :math:`p < q`,
enumerated row-major, i.e. in the order of :func:`numpy.triu_indices`.

Gradient and Hessian are taken at :math:`K = 0` with fixed density matrices.
"""

from collections.abc import Sequence

import numpy as np
from numpy import einsum, eye, float64, zeros
from scipy.linalg import expm

from clustermf.cmf.cluster import MOCluster
from clustermf.cmf.integrals import InCoreInts
from clustermf.cmf.rdm import RDM1, RDM2
from clustermf.shared.typing import Matrix, OrbitalPair, Tensor4D, Vector


def orbital_pairs(n_orb: int) -> list[OrbitalPair]:
    """All rotation pairs :math:`(p, q)` with :math:`p < q` in packing order."""
    rows, cols = np.triu_indices(n_orb, k=1)
    return list(zip(rows.tolist(), cols.tolist()))  # type: ignore[arg-type]


def pack_gradient(K: Matrix[float64]) -> Vector[float64]:
    """Pack the lower triangle of an antisymmetric matrix into a vector."""
    rows, cols = np.triu_indices(K.shape[0], k=1)
    return K[cols, rows].copy()


def unpack_gradient(k: Vector[float64], n_orb: int) -> Matrix[float64]:
    """Inverse of :func:`pack_gradient`."""
    rows, cols = np.triu_indices(n_orb, k=1)
    K = zeros((n_orb, n_orb))
    K[cols, rows] = k
    K[rows, cols] = -np.asarray(k)
    return K


def rotation_from_kappa(k: Vector[float64], n_orb: int) -> Matrix[float64]:
    """The unitary :math:`\\exp(K)` for packed rotation parameters."""
    return expm(unpack_gradient(k, n_orb))


def zero_intra_cluster_rotations(
    k: Vector[float64], clusters: Sequence[MOCluster]
) -> Vector[float64]:
    """Return a copy of :python:`k` where rotations among the orbitals
    of the same cluster are set to zero."""
    n_pairs = len(k)
    n_orb = int(round((1 + np.sqrt(1 + 8 * n_pairs)) / 2))
    K = unpack_gradient(k, n_orb)
    for ci in clusters:
        K[np.ix_(ci.orb_list, ci.orb_list)] = 0.0
    return pack_gradient(K)


def _two_body_intermediate(
    g: Tensor4D[float64], gamma: Tensor4D[float64]
) -> Matrix[float64]:
    return (
        einsum("pjkl,ijkl->pi", g, gamma, optimize=True)
        + einsum("iqkl,ijkl->qj", g, gamma, optimize=True)
        + einsum("ijrl,ijkl->rk", g, gamma, optimize=True)
        + einsum("ijks,ijkl->sl", g, gamma, optimize=True)
    )


def build_orbital_gradient(ints: InCoreInts, d1: RDM1, d2: RDM2) -> Vector[float64]:
    """Gradient of the energy with respect to the packed rotation parameters.

    Parameters
    ----------
    ints :
        Integrals in the current orbital basis.
    d1 :
        One-particle density in the current orbital basis.
    d2 :
        Two-particle density in the current orbital basis.
    """
    D = d1.spin_summed()
    W = _two_body_intermediate(ints.h2, d2.spin_summed())
    G = 2.0 * ints.h1 @ D + 0.5 * W
    return pack_gradient(G - G.T)


def build_orbital_hessian(ints: InCoreInts, d1: RDM1, d2: RDM2) -> Matrix[float64]:
    """Hessian of the energy with respect to the packed rotation parameters.

    Only the orbital part is included, i.e. the density matrices are
    kept fixed under the rotation.
    """
    h, g = ints.h1, ints.h2
    D = d1.spin_summed()
    gamma = d2.spin_summed()
    n = ints.n_orb
    one = eye(n)

    # Second order energy written as sum_{ijkl} K_ij X_ijkl K_kl.
    X = -einsum("jk,li->ijkl", h, D)
    X += 0.5 * einsum("jm,ki->ijmk", one, h @ D)
    X += 0.5 * einsum("km,lj->jkml", one, D @ h)
    X += 0.25 * einsum("mn,pi->pmni", one, _two_body_intermediate(g, gamma))
    X += 0.5 * (
        einsum("pqkl,ijkl->piqj", g, gamma, optimize=True)
        + einsum("pjrl,ijkl->pirk", g, gamma, optimize=True)
        + einsum("pjks,ijkl->pisl", g, gamma, optimize=True)
        + einsum("iqrl,ijkl->qjrk", g, gamma, optimize=True)
        + einsum("iqks,ijkl->qjsl", g, gamma, optimize=True)
        + einsum("ijrs,ijkl->rksl", g, gamma, optimize=True)
    )
    M = X + X.transpose(2, 3, 0, 1)
    M = M - M.transpose(1, 0, 2, 3)
    M = M - M.transpose(0, 1, 3, 2)

    rows, cols = np.triu_indices(n, k=1)
    return M[cols[:, None], rows[:, None], cols[None, :], rows[None, :]]
