"""
Tests for the orbital optimization of cluster mean-field.
The starting orbitals are Lowdin orthogonalized atomic orbitals
of two weakly interacting H2 molecules.
"""

import numpy as np
import pytest
from pyscf import fci, gto, lo, scf

from clustermf.cmf import (
    CMF,
    RDM1,
    FCIAnsatz,
    InCoreInts,
    RASCIAnsatz,
    assemble_full_rdm,
    cmf_ci,
    cmf_oo,
    cmf_oo_diis,
    cmf_oo_gd,
    cmf_oo_newton,
    make_clusters,
    projection_vector,
)
from clustermf.cmf.diis import DIISSubspace
from clustermf.cmf.integrals import orbital_rotation
from clustermf.cmf.opt import orbital_gradient_numerical
from clustermf.cmf.orbital_gradient import build_orbital_gradient, rotation_from_kappa

CI_KWARGS = dict(tol_d1=1e-10, tol_ci=1e-12, maxiter_d1=100)


def prepare_system():
    mol = gto.M(
        atom="H 0 0 0; H 0 0 0.75; H 0 0 2.75; H 0 0 3.5",
        basis="sto-3g",
        verbose=0,
    )
    mf = scf.RHF(mol)
    mf.conv_tol = 1e-12
    mf.kernel()
    e_fci = fci.FCI(mf).kernel()[0]
    C = lo.orth_ao(mol, "lowdin")
    return mf, C, InCoreInts.from_mf(mf, C), e_fci


def gradient_norm(ints, clusters, sectors, proj_vec=None) -> float:
    _, rdm1s, rdm2s = cmf_ci(ints, clusters, sectors, RDM1.zeros(4), **CI_KWARGS)
    d1, d2 = assemble_full_rdm(clusters, rdm1s, rdm2s)
    g = build_orbital_gradient(ints, d1, d2)
    if proj_vec is not None:
        g = proj_vec.T @ g
    return float(np.linalg.norm(g))


def test_gradient_finite_differences() -> None:
    _, _, ints, _ = prepare_system()
    clusters = make_clusters([[0, 1], [2, 3]])
    sectors = [(1, 1), (1, 1)]
    _, rdm1s, rdm2s = cmf_ci(ints, clusters, sectors, RDM1.zeros(4), **CI_KWARGS)
    d1, d2 = assemble_full_rdm(clusters, rdm1s, rdm2s)
    g = build_orbital_gradient(ints, d1, d2)

    g_fd = orbital_gradient_numerical(
        ints, clusters, np.zeros(6), sectors, d1, stepsize=1e-4, **CI_KWARGS
    )
    assert np.allclose(g, g_fd, atol=1e-6)
    assert np.linalg.norm(g) > 1e-4


@pytest.mark.parametrize("method", ["bfgs", "cg"])
def test_scipy_optimizers(method) -> None:
    _, _, ints, e_fci = prepare_system()
    clusters = make_clusters([[0, 1], [2, 3]])
    sectors = [(1, 1), (1, 1)]
    e_ci, _, _ = cmf_ci(ints, clusters, sectors, RDM1.zeros(4), **CI_KWARGS)

    e, U, d1 = cmf_oo(
        ints, clusters, sectors, RDM1.zeros(4), gconv=1e-6, method=method, tol_d1=1e-10
    )
    assert e_fci - 1e-10 < e < e_ci
    assert np.allclose(U.T @ U, np.eye(4))
    assert np.isclose(np.trace(d1.spin_summed()), 4.0)
    assert gradient_norm(orbital_rotation(ints, U), clusters, sectors) < 1e-4


def test_gradient_descent() -> None:
    _, _, ints, e_fci = prepare_system()
    clusters = make_clusters([[0, 1], [2, 3]])
    sectors = [(1, 1), (1, 1)]
    e_ci, _, _ = cmf_ci(ints, clusters, sectors, RDM1.zeros(4), **CI_KWARGS)
    g0 = gradient_norm(ints, clusters, sectors)

    e, U, _ = cmf_oo_gd(ints, clusters, sectors, RDM1.zeros(4), maxiter_oo=30)
    assert e_fci - 1e-10 < e < e_ci
    assert gradient_norm(orbital_rotation(ints, U), clusters, sectors) < g0


@pytest.mark.parametrize(
    "sectors",
    [
        [(1, 1), (1, 1)],
        [FCIAnsatz(2, 1, 1), FCIAnsatz(2, 1, 1)],
    ],
)
def test_diis(sectors) -> None:
    _, _, ints, e_fci = prepare_system()
    clusters = make_clusters([[0, 1], [2, 3]])
    e_ci, _, _ = cmf_ci(ints, clusters, sectors, RDM1.zeros(4), **CI_KWARGS)
    g0 = gradient_norm(ints, clusters, sectors)

    e, U, _ = cmf_oo_diis(
        ints,
        clusters,
        sectors,
        RDM1.zeros(4),
        maxiter_oo=50,
        tol_oo=1e-6,
        trust_region=True,
    )
    assert e_fci - 1e-10 < e < e_ci
    assert gradient_norm(orbital_rotation(ints, U), clusters, sectors) < g0


def test_newton() -> None:
    _, _, ints, e_fci = prepare_system()
    clusters = make_clusters([[0, 1], [2, 3]])
    sectors = [(1, 1), (1, 1)]
    e_ci, _, _ = cmf_ci(ints, clusters, sectors, RDM1.zeros(4), **CI_KWARGS)

    e, U, _ = cmf_oo_newton(
        ints,
        clusters,
        sectors,
        RDM1.zeros(4),
        maxiter_oo=20,
        tol_oo=1e-6,
        trust_region=True,
    )
    assert e_fci - 1e-10 < e < e_ci
    assert gradient_norm(orbital_rotation(ints, U), clusters, sectors) < 1e-4

    e_bfgs, _, _ = cmf_oo(ints, clusters, sectors, RDM1.zeros(4), gconv=1e-7)
    assert np.isclose(e, e_bfgs, atol=1e-6)


def test_diis_projected_gradient_steps() -> None:
    _, _, ints, e_fci = prepare_system()
    clusters = make_clusters([[0, 1], [2, 3]])
    sectors = [FCIAnsatz(2, 1, 1), FCIAnsatz(2, 1, 1)]
    e_ci, _, _ = cmf_ci(ints, clusters, sectors, RDM1.zeros(4), **CI_KWARGS)
    P = projection_vector(sectors, clusters, 4)
    g0 = gradient_norm(ints, clusters, sectors, P)

    e, U, _ = cmf_oo_diis(
        ints,
        clusters,
        sectors,
        RDM1.zeros(4),
        maxiter_oo=30,
        tol_oo=1e-6,
        orb_hessian=False,
    )
    assert e_fci - 1e-10 < e < e_ci
    assert gradient_norm(orbital_rotation(ints, U), clusters, sectors, P) < g0


@pytest.mark.parametrize("zero_intra_rots", [True, False])
def test_newton_pseudoinverse(zero_intra_rots) -> None:
    _, _, ints, e_fci = prepare_system()
    clusters = make_clusters([[0, 1], [2, 3]])
    sectors = [(1, 1), (1, 1)]
    e_ci, _, _ = cmf_ci(ints, clusters, sectors, RDM1.zeros(4), **CI_KWARGS)
    g0 = gradient_norm(ints, clusters, sectors)

    e, U, _ = cmf_oo_newton(
        ints,
        clusters,
        sectors,
        RDM1.zeros(4),
        maxiter_oo=20,
        tol_oo=1e-6,
        trust_region=True,
        use_linearsolve=False,
        zero_intra_rots=zero_intra_rots,
    )
    assert e_fci - 1e-10 < e < e_ci
    assert gradient_norm(orbital_rotation(ints, U), clusters, sectors) < g0


RAS = RASCIAnsatz(2, 1, 1, (1, 0, 1), max_h=1, max_p=1)


def prepare_ras_system():
    """Rotate the Lowdin orbitals of each H2 unit towards bonding and
    antibonding orbitals, the RAS1 orbital being the bonding one."""
    _, _, ints, _ = prepare_system()
    k0 = np.zeros(6)
    # the pairs (0, 1) and (2, 3) are at positions 0 and 5
    k0[[0, 5]] = 0.6
    return orbital_rotation(ints, rotation_from_kappa(k0, 4))


def test_ras_projector() -> None:
    clusters = make_clusters([[0, 1], [2, 3]])
    P = projection_vector([RAS, RAS], clusters, 4)
    # RAS1-RAS1 (0, 2) and RAS3-RAS3 (1, 3) are dropped,
    # the RAS1-RAS3 rotations within each cluster are kept
    assert P.shape == (6, 4)
    assert np.allclose(P.sum(axis=1), [1, 0, 1, 1, 0, 1])


def test_diis_ras() -> None:
    ints = prepare_ras_system()
    clusters = make_clusters([[0, 1], [2, 3]])
    sectors = [RAS, RAS]
    e_ci, _, _ = cmf_ci(ints, clusters, sectors, RDM1.zeros(4), **CI_KWARGS)
    P = projection_vector(sectors, clusters, 4)
    g0 = gradient_norm(ints, clusters, sectors, P)

    e, U, _ = cmf_oo_diis(
        ints,
        clusters,
        sectors,
        RDM1.zeros(4),
        maxiter_oo=50,
        tol_oo=1e-6,
        trust_region=True,
    )
    assert e < e_ci
    assert gradient_norm(orbital_rotation(ints, U), clusters, sectors, P) < g0


@pytest.mark.parametrize("use_linearsolve", [True, False])
def test_newton_ras(use_linearsolve) -> None:
    ints = prepare_ras_system()
    clusters = make_clusters([[0, 1], [2, 3]])
    sectors = [RAS, RAS]
    e_ci, _, _ = cmf_ci(ints, clusters, sectors, RDM1.zeros(4), **CI_KWARGS)
    P = projection_vector(sectors, clusters, 4)
    g0 = gradient_norm(ints, clusters, sectors, P)

    e, U, _ = cmf_oo_newton(
        ints,
        clusters,
        sectors,
        RDM1.zeros(4),
        maxiter_oo=20,
        tol_oo=1e-6,
        trust_region=True,
        use_linearsolve=use_linearsolve,
    )
    assert e < e_ci
    assert gradient_norm(orbital_rotation(ints, U), clusters, sectors, P) < g0


def test_unsupported_methods() -> None:
    _, _, ints, _ = prepare_system()
    clusters = make_clusters([[0, 1], [2, 3]])
    with pytest.raises(NotImplementedError):
        cmf_oo(ints, clusters, [(1, 1), (1, 1)], RDM1.zeros(4), method="gd")
    with pytest.raises(ValueError):
        cmf_oo(
            ints,
            clusters,
            [(1, 1), (1, 1)],
            RDM1.zeros(4),
            method="sd",  # type: ignore[arg-type]
        )


def test_projection_vector() -> None:
    clusters = make_clusters([[0, 1, 2, 3]])
    with pytest.raises(ValueError):
        projection_vector([FCIAnsatz(4, 2, 2)], clusters, 4)

    clusters = make_clusters([[0, 2], [1, 3]])
    P = projection_vector([FCIAnsatz(2, 1, 1), FCIAnsatz(2, 1, 1)], clusters, 4)
    assert P.shape == (6, 4)
    # the pairs (0, 2) and (1, 3) are at positions 1 and 4
    assert np.allclose(P.sum(axis=1), [1, 0, 1, 1, 0, 1])

    clusters = make_clusters([[0, 1, 2], [3, 4, 5]])
    ras = RASCIAnsatz(3, 1, 1, (1, 1, 1), max_h=1, max_p=1)
    P = projection_vector([ras, ras], clusters, 6)
    # RAS1-RAS1 (0, 3) and RAS3-RAS3 (2, 5) rotations are redundant
    assert P.shape == (15, 13)

    P = projection_vector([ras, FCIAnsatz(3, 1, 1)], clusters, 6)
    assert P.shape == (15, 12)


def test_diis_subspace() -> None:
    subspace = DIISSubspace(max_size=2)
    subspace.push(np.array([1.0, 0.0]), np.array([1.0, 0.0]))
    k, err = subspace.extrapolate()
    assert np.allclose(k, [1.0, 0.0])
    assert np.allclose(err, [1.0, 0.0])

    subspace.push(np.array([0.0, 1.0]), np.array([-1.0, 0.0]))
    k, err = subspace.extrapolate()
    assert np.allclose(k, [0.5, 0.5])
    assert np.allclose(err, 0.0)

    subspace.push(np.array([2.0, 2.0]), np.array([0.0, 1.0]))
    assert len(subspace) == 2
    assert np.allclose(subspace.params[0], [0.0, 1.0])


def test_driver() -> None:
    mf, C, _, e_fci = prepare_system()
    cmf = CMF.from_mf(mf, [[0, 1], [2, 3]], [(1, 1), (1, 1)], mo_coeff=C)
    assert np.isclose(np.trace(cmf.rdm1.spin_summed()), 4.0)
    e_ci = cmf.ci(**CI_KWARGS)

    e_oo = cmf.optimize("bfgs", gconv=1e-6)
    assert e_fci - 1e-10 < e_oo < e_ci

    C_opt = cmf.rotate_mo_coeff(C)
    assert np.allclose(C_opt.T @ mf.get_ovlp() @ C_opt, np.eye(4))
    ints_opt = InCoreInts.from_mf(mf, C_opt)
    assert np.allclose(ints_opt.h1, cmf.rotated_ints().h1)

    assert np.isclose(cmf.ci(**CI_KWARGS), e_oo, atol=1e-7)


if __name__ == "__main__":
    test_gradient_finite_differences()
    test_scipy_optimizers("bfgs")
    test_gradient_descent()
    test_diis([(1, 1), (1, 1)])
    test_newton()
    test_diis_projected_gradient_steps()
    test_newton_pseudoinverse(False)
    test_ras_projector()
    test_diis_ras()
    test_newton_ras(False)
    test_projection_vector()
    test_diis_subspace()
    test_driver()
