import numpy as np
from dlpno import util
from dlpno.pair import OrbitalPair, PairType


def semicanonical_amplitudes(k, e_vir, f_ii, f_jj):
    """``-K_ab / (e_a + e_b - F_ii - F_jj)`` in a semicanonical virtual basis."""
    d = e_vir[:,None] + e_vir[None,:] - f_ii - f_jj
    return -k / d


def pair_density(t, diagonal=False):
    """Virtual pair density ``(T~^T T + T~ T^T) / (1 + delta_ij)``, ``T~ = 4T - 2T^T``."""
    tt = 4 * t - 2 * t.T
    d = tt.T @ t + tt @ t.T
    if diagonal:
        d *= .5
    return d


def semicanonical_pair_energy(i, j, k, e_vir, fock_mo, ss_scaling=1., os_scaling=1.):
    t = semicanonical_amplitudes(k, e_vir, fock_mo[i,i], fock_mo[j,j])
    w = 1. if i == j else 2.
    return util.pair_energy(t, k, w, ss_scaling, os_scaling)


def make_pno_pair(i, j, k, e_vir, fock_mo, f_vv=None, pno_thr=1e-8,
                  pair_type=PairType.CLOSE, ss_scaling=1., os_scaling=1.):
    """Build an :class:`OrbitalPair` in its semicanonical PNO basis.

    Parameters
    ----------
    k : array
        Exchange integrals ``(ia|jb)`` in the canonical virtual basis.
    e_vir : array
        Canonical virtual orbital energies.
    fock_mo : array
        Occupied Fock matrix in the local orbital basis.
    f_vv : array, optional
        Virtual Fock matrix in the canonical basis. Defaults to ``diag(e_vir)``.
    pno_thr : float, default=1e-8
        PNOs with occupation numbers not above ``pno_thr`` are dropped.
        All PNOs are kept if ``pno_thr <= 0``.

    Returns
    -------
    pair : OrbitalPair
        With ``pno_coeff`` (PNOs in the canonical virtual basis), ``k``,
        ``uncoupled``, ``sc_energy`` (full-space semicanonical pair energy)
        and ``delta_pno`` (full minus truncated semicanonical pair energy).
    """
    e_vir = np.asarray(e_vir)
    if f_vv is None:
        f_vv = np.diag(e_vir)
    f_ii = fock_mo[i,i]
    f_jj = fock_mo[j,j]
    w = 1. if i == j else 2.

    t = semicanonical_amplitudes(k, e_vir, f_ii, f_jj)
    e_full = util.pair_energy(t, k, w, ss_scaling, os_scaling)

    occ, v = np.linalg.eigh(pair_density(t, diagonal=(i == j)))
    if pno_thr > 0:
        v = v[:,occ > pno_thr]

    e_pno, u = np.linalg.eigh(v.T @ f_vv @ v)
    q = v @ u
    k_pno = q.T @ k @ q
    uncoupled = e_pno[:,None] + e_pno[None,:] - f_ii - f_jj

    pair = OrbitalPair(i, j, pair_type, k=k_pno, uncoupled=uncoupled,
                       pno_coeff=q)
    e_trunc = util.pair_energy(-k_pno / uncoupled, k_pno, w, ss_scaling, os_scaling)
    pair.sc_energy = e_full
    pair.delta_pno = e_full - e_trunc
    return pair
