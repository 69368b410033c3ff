from functools import partial
import numpy as np
try:
    from opt_einsum import contract
except ImportError:
    contract = partial(np.einsum, optimize=True)


def einsum(expr, *args):
    return contract(expr, *args)

def pair_weight(pair):
    """1 for diagonal pairs, 2 for ``i < j`` (the ``(j,i)`` partner is implicit)."""
    return 1. if pair.i == pair.j else 2.

def pair_energy(t, k, weight=1., ss_scaling=1., os_scaling=1.):
    """Closed-shell MP2 pair energy from amplitudes and exchange integrals."""
    ss = np.sum((t - t.T) * k)
    os = np.sum(t * k)
    return weight * (ss_scaling * ss + os_scaling * os)

def split_static(n, nchunks):
    """Static partition of ``range(n)`` into at most ``nchunks`` contiguous chunks."""
    nchunks = max(1, min(n, nchunks))
    return [c for c in np.array_split(np.arange(n), nchunks) if c.size > 0]
