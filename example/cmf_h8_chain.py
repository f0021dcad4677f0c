# Illustrates orbital-optimized cluster mean-field on a chain of H2 molecules

from pyscf import gto, lo, scf

from clustermf.cmf import CMF, RASCIAnsatz
from clustermf.shared.config import settings

# Print timings of the orbital optimization
settings.PRINT_LEVEL = 10

# Initialize molecule and run reference HF calculation
mol = gto.M(
    atom="""
        H 0 0 0
        H 0.8 0 0
        H 2 0 0
        H 2.8 0 0
        H 4 0 0
        H 4.8 0 0
        H 6 0 0
        H 6.8 0 0
    """,
    basis="sto-3g",
    charge=0,
)

mf = scf.RHF(mol)
mf.conv_tol = 1e-12
mf.kernel()

# Each H2 molecule is one cluster, built from Lowdin orbitals of its two atoms
C = lo.orth_ao(mol, "lowdin")
orb_lists = [[0, 1], [2, 3], [4, 5], [6, 7]]

mycmf = CMF.from_mf(mf, orb_lists, [(1, 1)] * 4, mo_coeff=C)
e_ci = mycmf.ci()
e_oo = mycmf.optimize("bfgs", gconv=1e-6)
print(f"CMF-CI energy:  {e_ci:.10f}")
print(f"ooCMF energy:   {e_oo:.10f}")

# The same clusters with a RAS ansatz, optimized with Newton steps
ras = RASCIAnsatz(2, 1, 1, (1, 0, 1), max_h=2, max_p=2)
mycmf = CMF.from_mf(mf, orb_lists, [ras] * 4, mo_coeff=C)
e_newton = mycmf.optimize("newton", trust_region=True)
print(f"ooCMF (Newton): {e_newton:.10f}")

# Optimized orbitals in the AO basis
C_opt = mycmf.rotate_mo_coeff(C)
