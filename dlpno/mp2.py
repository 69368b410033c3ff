import numpy as np
from pyscf.lib import logger
from dlpno.util import einsum


def dipole_op(mol):
    nao = mol.nao
    return mol.intor_symmetric('int1e_r', comp=3).reshape(3,nao,nao)


def dipole_pair_energies(mol, e_occ, mo_occ, e_vir, mo_vir):
    """Dipole-dipole approximation to the MP2 pair correlation energy.

    Parameters
    ----------
    e_occ : array
        Diagonal Fock matrix elements of the occupied (local) orbitals.
    mo_occ : array
        Occupied orbital coefficients, ``(nao, nocc)``.
    e_vir : array
        Virtual orbital energies.
    mo_vir : array
        Virtual orbital coefficients, ``(nao, nvir)``.
        Must be orthogonal to ``mo_occ``.

    Returns
    -------
    e_mp2_pair : array
        Symmetric ``(nocc, nocc)`` array of pair energies
        ``-4 sum_ab (ai|bj)^2 / (e_ai + e_bj)`` with the dipole-dipole
        approximation of ``(ai|bj)``. The diagonal is zero. Pairs with
        coinciding orbital centroids get ``-inf``.
    """
    e_occ = np.asarray(e_occ)
    e_vir = np.asarray(e_vir)
    nocc = mo_occ.shape[1]
    r = dipole_op(mol)

    Rs = einsum('ui,xuv,vi->ix', mo_occ.conj(), r, mo_occ)
    mu_vo = einsum('ua,xuv,vi->ixa', mo_vir.conj(), r, mo_occ)
    e_vo = e_vir[None,:] - e_occ[:,None]

    e_mp2_pair = np.zeros((nocc, nocc))
    for i in range(nocc):
        mu_ai = mu_vo[i]
        for j in range(i):
            R = np.linalg.norm(Rs[j] - Rs[i])
            if R < 1e-6:
                e_mp2_pair[i,j] = -np.inf
                continue
            R_bar = (Rs[j] - Rs[i]) / R

            mu_bj = mu_vo[j]
            aibj = mu_ai.T @ mu_bj
            aibj -= np.outer(R_bar @ mu_ai, (R_bar @ mu_bj) * 3)
            aibj /= R**3

            denom = e_vo[i][:,None] + e_vo[j][None,:]
            e_mp2_pair[i,j] = -4 * np.sum(aibj * aibj / denom)

    e_mp2_pair += e_mp2_pair.T
    logger.debug1(mol, f"dipole pair energies:\n{e_mp2_pair}")
    return e_mp2_pair
