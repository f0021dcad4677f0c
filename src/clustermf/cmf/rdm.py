"""Spin-resolved one- and two-particle reduced density matrices.

The two-particle density matrices follow the convention of :mod:`pyscf.fci`,
:python:`dm2[p, q, r, s]` is :math:`\\langle p^\\dagger r^\\dagger s q \\rangle`,
so that the energy is

.. math::

    E = h_0 + \\sum_{pq} h_{pq} D_{pq}
        + \\frac{1}{2} \\sum_{pqrs} (pq|rs) \\Gamma_{pqrs}
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import overload

import numpy as np
from attrs import define, field
from numpy import einsum, float64, ix_, zeros

from clustermf.cmf.integrals import InCoreInts
from clustermf.shared.typing import Matrix, OrbitalIdx, Tensor4D


@define(frozen=True, eq=False)
class RDM1:
    a: Matrix[float64] = field(converter=np.asarray)
    b: Matrix[float64] = field(converter=np.asarray)

    @classmethod
    def zeros(cls, n_orb: int) -> RDM1:
        return cls(zeros((n_orb, n_orb)), zeros((n_orb, n_orb)))

    @classmethod
    def from_spin_summed(cls, d: Matrix[float64]) -> RDM1:
        """Split a spin-summed density equally into alpha and beta."""
        return cls(0.5 * d, 0.5 * d)

    @property
    def n_orb(self) -> int:
        return self.a.shape[0]

    def spin_summed(self) -> Matrix[float64]:
        return self.a + self.b

    def subset(self, orb_list: Sequence[OrbitalIdx]) -> RDM1:
        idx = ix_(orb_list, orb_list)
        return RDM1(self.a[idx], self.b[idx])

    def copy(self) -> RDM1:
        return RDM1(self.a.copy(), self.b.copy())


@define(frozen=True, eq=False)
class RDM2:
    aa: Tensor4D[float64] = field(converter=np.asarray)
    ab: Tensor4D[float64] = field(converter=np.asarray)
    bb: Tensor4D[float64] = field(converter=np.asarray)

    @classmethod
    def zeros(cls, n_orb: int) -> RDM2:
        shape = (n_orb, n_orb, n_orb, n_orb)
        return cls(zeros(shape), zeros(shape), zeros(shape))

    @classmethod
    def from_rdm1(cls, d1: RDM1) -> RDM2:
        """Factorize the two-particle density of a single determinant
        (Wick's theorem) with one-particle density :python:`d1`."""
        return cls(
            einsum("pq,rs->pqrs", d1.a, d1.a) - einsum("ps,rq->pqrs", d1.a, d1.a),
            einsum("pq,rs->pqrs", d1.a, d1.b),
            einsum("pq,rs->pqrs", d1.b, d1.b) - einsum("ps,rq->pqrs", d1.b, d1.b),
        )

    @property
    def n_orb(self) -> int:
        return self.aa.shape[0]

    def spin_summed(self) -> Tensor4D[float64]:
        return self.aa + self.bb + self.ab + self.ab.transpose(2, 3, 0, 1)


def compute_energy(ints: InCoreInts, d1: RDM1, d2: RDM2 | None = None) -> float:
    """Energy expectation value of the density matrices.

    If :python:`d2` is not given, the Wick factorization of :python:`d1`
    is used.
    """
    if d2 is None:
        d2 = RDM2.from_rdm1(d1)
    e = ints.h0
    e += einsum("pq,pq", ints.h1, d1.spin_summed())
    e += 0.5 * einsum("pqrs,pqrs", ints.h2, d2.spin_summed())
    return float(e)


def spin_average(d1: RDM1, d2: RDM2) -> tuple[RDM1, RDM2]:
    """Average the alpha and beta channels.

    The opposite-spin block is symmetrized under exchange of the two
    particles. Applying the function twice gives the same result as once.
    """
    n = d1.n_orb
    d1_avg = 0.5 * (d1.a + d1.b)
    d2_same = 0.5 * (d2.aa + d2.bb)
    ab = d2.ab.reshape(n * n, n * n)
    ab = (0.5 * (ab + ab.T)).reshape(n, n, n, n)
    return RDM1(d1_avg, d1_avg.copy()), RDM2(d2_same, ab, d2_same.copy())


@overload
def orbital_rotation(d: RDM1, U: Matrix[float64]) -> RDM1: ...
@overload
def orbital_rotation(d: RDM2, U: Matrix[float64]) -> RDM2: ...


def orbital_rotation(d: RDM1 | RDM2, U: Matrix[float64]) -> RDM1 | RDM2:
    r"""Express the density in the rotated orbitals
    :math:`\phi'_i = \sum_p \phi_p U_{pi}`, i.e. :math:`D' = U^T D U`.

    Use :python:`U.T` to rotate back.
    """
    if isinstance(d, RDM1):
        return RDM1(U.T @ d.a @ U, U.T @ d.b @ U)

    def rot(x: Tensor4D[float64]) -> Tensor4D[float64]:
        return einsum("pqrs,pi,qj,rk,sl->ijkl", x, U, U, U, U, optimize=True)

    return RDM2(rot(d.aa), rot(d.ab), rot(d.bb))
