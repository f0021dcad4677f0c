import numpy as np
from pyscf import fci, gto, scf
from pyscf.fci import direct_spin1

from clustermf.cmf.integrals import InCoreInts, orbital_rotation
from clustermf.cmf.orbital_gradient import rotation_from_kappa
from clustermf.cmf.rdm import RDM1, RDM2, compute_energy, spin_average
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
    return mol, mf


def fci_rdms(ints: InCoreInts, nelec: tuple[int, int]) -> tuple[float, RDM1, RDM2]:
    cisolver = direct_spin1.FCI()
    cisolver.conv_tol = 1e-12
    e, c = cisolver.kernel(ints.h1, ints.h2, ints.n_orb, nelec, ecore=ints.h0)
    (d1a, d1b), (d2aa, d2ab, d2bb) = cisolver.make_rdm12s(c, ints.n_orb, nelec)
    return e, RDM1(d1a, d1b), RDM2(d2aa, d2ab, d2bb)


def test_wick_matches_determinant() -> None:
    norb, nelec = 4, (2, 1)
    c = np.zeros((6, 4))
    c[0, 0] = 1.0
    (d1a, d1b), (d2aa, d2ab, d2bb) = direct_spin1.make_rdm12s(c, norb, nelec)

    d2 = RDM2.from_rdm1(RDM1(d1a, d1b))
    assert np.allclose(d2.aa, d2aa)
    assert np.allclose(d2.ab, d2ab)
    assert np.allclose(d2.bb, d2bb)


def test_fci_energy_from_rdms() -> None:
    _, mf = prepare_system()
    ints = InCoreInts.from_mf(mf)
    e, d1, d2 = fci_rdms(ints, (2, 2))
    assert np.isclose(compute_energy(ints, d1, d2), e)
    assert np.isclose(e, fci.FCI(mf).kernel()[0])


def test_spin_average() -> None:
    _, mf = prepare_system()
    ints = InCoreInts.from_mf(mf)
    e, d1, d2 = fci_rdms(ints, (2, 1))

    avg1, avg2 = spin_average(d1, d2)
    assert np.allclose(avg1.a, avg1.b)
    assert np.allclose(avg2.aa, avg2.bb)
    assert np.isclose(np.trace(avg1.spin_summed()), 3.0)

    twice1, twice2 = spin_average(avg1, avg2)
    assert np.allclose(twice1.a, avg1.a)
    assert np.allclose(twice2.aa, avg2.aa)
    assert np.allclose(twice2.ab, avg2.ab)
    assert np.allclose(twice2.bb, avg2.bb)


def test_closed_shell_spin_average_is_exact() -> None:
    _, mf = prepare_system()
    ints = InCoreInts.from_mf(mf)
    e, d1, d2 = fci_rdms(ints, (2, 2))
    avg1, avg2 = spin_average(d1, d2)
    assert np.allclose(avg1.a, d1.a)
    assert np.isclose(compute_energy(ints, avg1, avg2), e)


def test_rotation_of_rdms() -> None:
    _, mf = prepare_system()
    ints = InCoreInts.from_mf(mf)
    e, d1, d2 = fci_rdms(ints, (2, 2))

    rng = np.random.default_rng(7)
    U = rotation_from_kappa(0.5 * rng.standard_normal(6), 4)
    e_rot = compute_energy(
        orbital_rotation(ints, U), rdm_rotation(d1, U), rdm_rotation(d2, U)
    )
    assert np.isclose(e_rot, e)

    back = rdm_rotation(rdm_rotation(d1, U), U.T)
    assert np.allclose(back.a, d1.a)


if __name__ == "__main__":
    test_wick_matches_determinant()
    test_fci_energy_from_rdms()
    test_spin_average()
    test_closed_shell_spin_average_is_exact()
    test_rotation_of_rdms()
