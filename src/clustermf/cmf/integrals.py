"""In-core molecular integrals in an orthonormal orbital basis."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

import numpy as np
from attrs import define, field
from numpy import einsum, float64, ix_
from pyscf import ao2mo
from pyscf.tools import fcidump

from clustermf.shared.helper import ensure
from clustermf.shared.typing import Matrix, OrbitalIdx, PathLike, Tensor4D

if TYPE_CHECKING:
    from pyscf.scf.hf import SCF

    from clustermf.cmf.rdm import RDM1


@define(frozen=True, eq=False)
class InCoreInts:
    """Core energy, one- and two-electron integrals.

    The two-electron integrals are stored as a full four-index tensor
    in chemists' notation, i.e. :python:`h2[p, q, r, s]` is :math:`(pq|rs)`.

    Parameters
    ----------
    h0 :
        Constant energy, e.g. nuclear repulsion plus frozen core.
    h1 :
        One-electron integrals, shape :python:`(n, n)`.
    h2 :
        Two-electron integrals, shape :python:`(n, n, n, n)`.
    """

    h0: float = field(converter=float)
    h1: Matrix[float64] = field(converter=np.asarray)
    h2: Tensor4D[float64] = field(converter=np.asarray)

    def __attrs_post_init__(self) -> None:
        n = self.h1.shape[0]
        ensure(self.h1.shape == (n, n), "h1 has to be a square matrix.")
        ensure(self.h2.shape == (n, n, n, n), "h2 has to match the shape of h1.")

    @property
    def n_orb(self) -> int:
        return self.h1.shape[0]

    @classmethod
    def from_fcidump(cls, path: PathLike) -> InCoreInts:
        """Read integrals from an FCIDUMP file."""
        data = fcidump.read(str(path))
        n_orb = data["NORB"]
        return cls(
            data["ECORE"],
            data["H1"],
            ao2mo.restore(1, data["H2"], n_orb),
        )

    def to_fcidump(self, path: PathLike, nelec: int, ms: int = 0) -> None:
        """Write the integrals to an FCIDUMP file.

        Parameters
        ----------
        path :
            Output file.
        nelec :
            Total number of electrons.
        ms :
            Spin, the difference between alpha and beta electrons.
        """
        fcidump.from_integrals(
            str(path),
            self.h1,
            ao2mo.restore(8, self.h2, self.n_orb),
            self.n_orb,
            nelec,
            nuc=self.h0,
            ms=ms,
        )

    @classmethod
    def from_mf(cls, mf: SCF, mo_coeff: Matrix[float64] | None = None) -> InCoreInts:
        """Transform the Hamiltonian of a pyscf mean-field object
        to the (molecular) orbitals :python:`mo_coeff`.

        If :python:`mo_coeff` is not given, :python:`mf.mo_coeff` is used.
        """
        C = mf.mo_coeff if mo_coeff is None else mo_coeff
        n_orb = C.shape[1]
        h1 = C.T @ mf.get_hcore() @ C
        eri = mf._eri if getattr(mf, "_eri", None) is not None else mf.mol
        h2 = ao2mo.full(eri, C, compact=False)
        return cls(mf.energy_nuc(), h1, h2.reshape(n_orb, n_orb, n_orb, n_orb))


def subset(
    ints: InCoreInts, orb_list: Sequence[OrbitalIdx], rdm1: RDM1 | None = None
) -> InCoreInts:
    """Restrict the integrals to the orbitals in :python:`orb_list`.

    If a density :python:`rdm1` is passed, the orbitals outside
    of :python:`orb_list` are treated as a frozen mean-field environment:
    the spin-averaged Coulomb and exchange potential of the environment
    density is added to the one-electron integrals, and the energy
    of the environment is added to the constant.

    Parameters
    ----------
    ints :
        Integrals of the full system.
    orb_list :
        The orbitals to keep.
    rdm1 :
        Density of the full system. Its block on :python:`orb_list` is ignored.
    """
    ci = list(orb_list)
    h1 = ints.h1[ix_(ci, ci)]
    h2 = ints.h2[ix_(ci, ci, ci, ci)]
    if rdm1 is None:
        return InCoreInts(ints.h0, h1, h2)

    da = rdm1.a.copy()
    db = rdm1.b.copy()
    da[ci, :] = 0.0
    da[:, ci] = 0.0
    db[ci, :] = 0.0
    db[:, ci] = 0.0

    n = ints.n_orb
    full = list(range(n))
    g_cc = ints.h2[ix_(ci, ci, full, full)]
    g_exch = ints.h2[ix_(ci, full, full, ci)]
    coulomb = einsum("pqrs,rs->pq", g_cc, da + db)
    fa = coulomb - einsum("psrq,sr->pq", g_exch, da)
    fb = coulomb - einsum("psrq,sr->pq", g_exch, db)

    e_env = einsum("pq,pq", ints.h1, da + db)
    e_env += 0.5 * einsum("pqrs,pq,rs", ints.h2, da + db, da + db)
    e_env -= 0.5 * einsum("pqrs,ps,rq", ints.h2, da, da)
    e_env -= 0.5 * einsum("pqrs,ps,rq", ints.h2, db, db)

    return InCoreInts(ints.h0 + e_env, h1 + 0.5 * (fa + fb), h2)


def orbital_rotation(ints: InCoreInts, U: Matrix[float64]) -> InCoreInts:
    r"""Transform the integrals to the orbitals :math:`\phi'_i = \sum_p \phi_p U_{pi}`.

    The constant is left unchanged.
    """
    h1 = U.T @ ints.h1 @ U
    h2 = einsum("pqrs,pi,qj,rk,sl->ijkl", ints.h2, U, U, U, U, optimize=True)
    return InCoreInts(ints.h0, h1, h2)
