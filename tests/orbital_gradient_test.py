"""
Compare the analytic orbital gradient and Hessian with finite differences
of the energy at fixed density matrices.
"""

import numpy as np
from pyscf import gto, scf
from pyscf.fci import direct_spin1

from clustermf.cmf.cluster import make_clusters
from clustermf.cmf.integrals import InCoreInts, orbital_rotation
from clustermf.cmf.orbital_gradient import (
    build_orbital_gradient,
    build_orbital_hessian,
    orbital_pairs,
    pack_gradient,
    rotation_from_kappa,
    unpack_gradient,
    zero_intra_cluster_rotations,
)
from clustermf.cmf.rdm import RDM1, RDM2, compute_energy
from clustermf.cmf.rdm import orbital_rotation as rdm_rotation


def prepare_system():
    mol = gto.M(
        atom="H 0 0 0; H 0 0 0.75; H 0 0 2.75; H 0 0 3.5",
        basis="sto-3g",
        verbose=0,
    )
    mf = scf.RHF(mol)
    mf.conv_tol = 1e-12
    mf.kernel()
    ints = InCoreInts.from_mf(mf)

    cisolver = direct_spin1.FCI()
    cisolver.conv_tol = 1e-12
    _, c = cisolver.kernel(ints.h1, ints.h2, 4, (2, 2))
    (d1a, d1b), (d2aa, d2ab, d2bb) = cisolver.make_rdm12s(c, 4, (2, 2))
    # the FCI densities are stationary, rotate them away from the optimum
    U = rotation_from_kappa(np.array([0.1, -0.2, 0.3, 0.05, -0.15, 0.25]), 4)
    d1 = rdm_rotation(RDM1(d1a, d1b), U)
    d2 = rdm_rotation(RDM2(d2aa, d2ab, d2bb), U)
    return mf, ints, d1, d2


def energy_at(ints, d1, d2, k) -> float:
    return compute_energy(orbital_rotation(ints, rotation_from_kappa(k, 4)), d1, d2)


def test_pack_unpack() -> None:
    rng = np.random.default_rng(3)
    k = rng.standard_normal(10)
    K = unpack_gradient(k, 5)
    assert np.allclose(K, -K.T)
    assert np.allclose(pack_gradient(K), k)
    assert orbital_pairs(3) == [(0, 1), (0, 2), (1, 2)]
    # k[0] belongs to the pair (0, 1) and is stored in K[1, 0]
    assert np.isclose(K[1, 0], k[0])


def test_zero_intra_cluster_rotations() -> None:
    clusters = make_clusters([[0, 2], [1, 3]])
    k = np.arange(1.0, 7.0)
    k_zeroed = zero_intra_cluster_rotations(k, clusters)
    expected = k.copy()
    for a, (p, q) in enumerate(orbital_pairs(4)):
        if (p, q) in ((0, 2), (1, 3)):
            expected[a] = 0.0
    assert np.allclose(k_zeroed, expected)


def test_gradient_vanishes_for_hf() -> None:
    mf, ints, _, _ = prepare_system()
    occ = 0.5 * mf.mo_occ
    d1 = RDM1(np.diag(occ), np.diag(occ))
    g = build_orbital_gradient(ints, d1, RDM2.from_rdm1(d1))
    assert np.allclose(g, 0.0, atol=1e-5)


def test_gradient_finite_differences() -> None:
    _, ints, d1, d2 = prepare_system()
    g = build_orbital_gradient(ints, d1, d2)

    h = 1e-5
    g_fd = np.zeros(6)
    for a in range(6):
        step = np.zeros(6)
        step[a] = h
        g_fd[a] = (energy_at(ints, d1, d2, step) - energy_at(ints, d1, d2, -step)) / (
            2 * h
        )
    assert np.allclose(g, g_fd, atol=1e-7)
    assert np.linalg.norm(g) > 1e-3


def test_hessian_finite_differences() -> None:
    _, ints, d1, d2 = prepare_system()
    H = build_orbital_hessian(ints, d1, d2)
    assert np.allclose(H, H.T)

    h = 1e-3
    H_fd = np.zeros((6, 6))
    for a in range(6):
        for b in range(6):
            ka = np.zeros(6)
            kb = np.zeros(6)
            ka[a] = h
            kb[b] = h
            H_fd[a, b] = (
                energy_at(ints, d1, d2, ka + kb)
                - energy_at(ints, d1, d2, ka - kb)
                - energy_at(ints, d1, d2, -ka + kb)
                + energy_at(ints, d1, d2, -ka - kb)
            ) / (4 * h**2)
    assert np.allclose(H, H_fd, atol=1e-5)


if __name__ == "__main__":
    test_pack_unpack()
    test_zero_intra_cluster_rotations()
    test_gradient_vanishes_for_hf()
    test_gradient_finite_differences()
    test_hessian_finite_differences()
