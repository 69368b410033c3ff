import numpy as np
from pyscf import lib


def pairs_to_vector(pairs, attr='t'):
    """Concatenate the matrices ``attr`` of ``pairs`` in list order."""
    if not pairs:
        return np.zeros(0)
    return np.hstack([getattr(p, attr).ravel() for p in pairs])


def vector_to_pairs(vector, pairs, attr='t'):
    """Inverse of :func:`pairs_to_vector`, overwriting the pair matrices in place."""
    p1 = 0
    for pair in pairs:
        mat = getattr(pair, attr)
        p0, p1 = p1, p1 + mat.size
        mat[:] = vector[p0:p1].reshape(mat.shape)
    assert p1 == vector.size
    return pairs


class OrbitalPairDIIS(lib.diis.DIIS):
    """DIIS over the amplitudes of a fixed list of pairs.

    The error vector is the pair residual. History is a ring buffer of
    ``space`` entries.
    """
    def __init__(self, dev=None, space=None):
        lib.diis.DIIS.__init__(self, dev, incore=True)
        if space is not None:
            self.space = space

    def optimize(self, pairs):
        """Push the current ``t``/``residual`` of ``pairs`` and overwrite ``t``
        with the extrapolated amplitudes."""
        t = pairs_to_vector(pairs, 't')
        r = pairs_to_vector(pairs, 'residual')
        tnew = self.update(t, xerr=r)
        vector_to_pairs(tnew, pairs, 't')
        return pairs
