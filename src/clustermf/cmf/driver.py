"""The :class:`CMF` object, which keeps orbitals and densities
between CMF-CI and orbital optimization runs."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import get_args

import numpy as np
from attrs import Factory, define
from numpy import float64
from pyscf.scf.hf import SCF
from typing_extensions import assert_never

from clustermf.cmf.ci import Sectors, cmf_ci
from clustermf.cmf.cluster import MOCluster, check_partition, make_clusters
from clustermf.cmf.diis import cmf_oo_diis
from clustermf.cmf.energy import assemble_full_rdm
from clustermf.cmf.integrals import InCoreInts, orbital_rotation
from clustermf.cmf.opt import cmf_oo, cmf_oo_gd, cmf_oo_newton
from clustermf.cmf.rdm import RDM1, RDM2
from clustermf.cmf.rdm import orbital_rotation as rdm_rotation
from clustermf.shared.helper import Timer, ensure
from clustermf.shared.typing import ClusterIdx, Matrix, OOMethods

logger = logging.getLogger(__name__)


@define
class CMF:
    """Cluster mean-field calculation.

    Keeps integrals, clusters and the current density together
    and dispatches to CMF-CI and the orbital optimizers.

    Parameters
    ----------
    ints :
        Integrals of the full system in the initial orbitals.
    clusters :
        The clusters, they have to partition the orbitals.
    sectors :
        Particle number sector :python:`(na, nb)` or ansatz of each cluster.
    rdm1 :
        Density in the initial orbitals. Used as starting guess and
        updated by :meth:`ci` and :meth:`optimize`.
    """

    ints: InCoreInts
    clusters: Sequence[MOCluster]
    sectors: Sectors
    rdm1: RDM1 = Factory(lambda self: RDM1.zeros(self.ints.n_orb), takes_self=True)

    e: float | None = None
    #: Orbital rotation found by :meth:`optimize`.
    U: Matrix[float64] = Factory(lambda self: np.eye(self.ints.n_orb), takes_self=True)
    rdm1s: dict[ClusterIdx, RDM1] = Factory(dict)
    rdm2s: dict[ClusterIdx, RDM2] = Factory(dict)

    def __attrs_post_init__(self) -> None:
        check_partition(self.clusters, self.ints.n_orb)

    @classmethod
    def from_mf(
        cls,
        mf: SCF,
        orb_lists: Sequence[Sequence[int]],
        sectors: Sectors,
        mo_coeff: Matrix[float64] | None = None,
    ) -> CMF:
        """Set up CMF from a restricted mean-field calculation.

        The orbitals are :python:`mo_coeff`, by default the orbitals of
        :python:`mf`. The starting density is the mean-field density
        expressed in these orbitals.
        """
        C = mf.mo_coeff if mo_coeff is None else mo_coeff
        SC = mf.get_ovlp() @ C
        d = SC.T @ mf.make_rdm1() @ SC
        return cls(
            InCoreInts.from_mf(mf, C),
            make_clusters(orb_lists),
            sectors,
            RDM1.from_spin_summed(d),
        )

    def ci(self, **kwargs) -> float:
        """Run :func:`~clustermf.cmf.ci.cmf_ci` in the current orbitals.

        Keyword arguments are passed on.
        """
        ints = orbital_rotation(self.ints, self.U)
        e, self.rdm1s, self.rdm2s = cmf_ci(
            ints,
            self.clusters,
            self.sectors,
            rdm_rotation(self.rdm1, self.U),
            **kwargs,
        )
        self.rdm1 = rdm_rotation(assemble_full_rdm(self.clusters, self.rdm1s), self.U.T)
        self.e = e
        return e

    def optimize(self, method: OOMethods = "bfgs", **kwargs) -> float:
        """Optimize orbitals and cluster states, starting from the
        initial orbitals and the current density.

        Parameters
        ----------
        method :
            :python:`"bfgs"` and :python:`"cg"` use
            :func:`~clustermf.cmf.opt.cmf_oo`,
            :python:`"gd"` :func:`~clustermf.cmf.opt.cmf_oo_gd`,
            :python:`"diis"` :func:`~clustermf.cmf.diis.cmf_oo_diis`,
            and :python:`"newton"` :func:`~clustermf.cmf.opt.cmf_oo_newton`.
        kwargs :
            Passed on to the optimizer.
        """
        ensure(
            method in get_args(OOMethods),
            f"Unknown orbital optimization method: {method}",
        )
        timer = Timer(f"ooCMF with {method}")
        args = (self.ints, self.clusters, self.sectors, self.rdm1)
        if method == "bfgs" or method == "cg":
            e, U, d1 = cmf_oo(*args, method=method, **kwargs)
        elif method == "gd":
            e, U, d1 = cmf_oo_gd(*args, **kwargs)
        elif method == "diis":
            e, U, d1 = cmf_oo_diis(*args, **kwargs)
        elif method == "newton":
            e, U, d1 = cmf_oo_newton(*args, **kwargs)
        else:
            assert_never(method)
        logger.info(timer.str_elapsed())

        self.e = e
        self.U = U
        self.rdm1 = rdm_rotation(d1, U.T)
        return e

    def rotated_ints(self) -> InCoreInts:
        """Integrals in the optimized orbitals."""
        return orbital_rotation(self.ints, self.U)

    def rotate_mo_coeff(self, mo_coeff: Matrix[float64]) -> Matrix[float64]:
        """Coefficients of the optimized orbitals, given the coefficients
        of the initial orbitals."""
        return mo_coeff @ self.U
