import numpy as np
import pytest

from pyscf import gto, scf, mp
from pyscf.mp import dfmp2
from dlpno import dlpno
from dlpno.pair import PairType


def _water_dimer(basis='631g'):
    mol = gto.Mole()
    mol.atom = '''
        O         -1.48516       -0.11472        0.00000
        H         -1.86842        0.76230        0.00000
        H         -0.53383        0.04051        0.00000
        O          1.41647        0.11126        0.00000
        H          1.74624       -0.37395       -0.75856
        H          1.74624       -0.37395        0.75856
    '''
    mol.basis = basis
    mol.verbose = 0
    mol.build()
    return mol


def test_lmp2_full_pno_space():
    mol = _water_dimer()
    mf = scf.RHF(mol)
    mf.conv_tol = 1e-11
    mf.kernel()

    mymp = mp.MP2(mf)
    mymp.kernel()

    mylno = dlpno.DLPNOMP2(mf)
    mylno.lmo_method = 'boys'
    mylno.pno_thr = 0
    mylno.distant_pair_thr = 0
    mylno.very_distant_pair_thr = 0
    mylno.fock_thr = 0
    mylno.max_residual = 1e-9

    e_corr = mylno.kernel()
    assert mylno.converged
    assert abs(mylno.e_corr_dipole) < 1e-14
    assert abs(mylno.e_corr_pno) < 1e-10
    assert abs(e_corr - mymp.e_corr) < 1e-7
    assert abs(mylno.e_tot - mymp.e_tot) < 1e-7


def test_lmp2_energy():
    mol = gto.Mole()
    mol.atom = '''
        O         -1.48516       -0.11472        0.00000
        H         -1.86842        0.76230        0.00000
        H         -0.53383        0.04051        0.00000
        O          1.41647        0.11126        0.00000
        H          1.74624       -0.37395       -0.75856
        H          1.74624       -0.37395        0.75856
        H        -17.01061        0.77828        0.00081
        O        -17.45593        0.85616       -0.83572
        H        -18.39143        0.81791       -0.66982
    '''
    mol.basis = 'ccpvdz'
    mol.verbose = 0
    mol.max_memory = 8000
    mol.build()

    mf = scf.RHF(mol).density_fit()
    mf.kernel()

    mymp = dfmp2.DFMP2(mf)
    mymp.kernel()

    mylno = dlpno.DLPNOMP2(mf)
    mylno.lmo_method = 'pm'
    mylno.pno_thr = 1e-8
    mylno.distant_pair_thr = 1e-5
    mylno.very_distant_pair_thr = 1e-6

    e_corr = mylno.kernel()
    very_distant = mylno.controller.get_orbital_pairs(PairType.VERY_DISTANT)
    assert len(very_distant) > 0
    assert abs(mylno.e_corr_dipole) < 1e-4
    assert mylno.e_corr_pno < 0
    assert abs(e_corr - mymp.e_corr) < 1e-3

    close = mylno.controller.get_orbital_pairs(PairType.CLOSE, PairType.DISTANT)
    assert abs(sum(p.pair_energy for p in close) - mylno.e_corr_local) < 1e-12
    for p in close:
        assert p.npno <= mf.mo_coeff.shape[1] - mol.nelectron // 2


def test_unknown_localization():
    mol = _water_dimer('sto3g')
    mf = scf.RHF(mol).run()
    mylno = dlpno.DLPNOMP2(mf)
    with pytest.raises(NotImplementedError):
        mylno.build_lmo(lmo_method='foo')
