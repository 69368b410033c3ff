
class DomainOverlapMatrixController:
    """Overlap matrices between pair PNO domains.

    Shared by all pairs of a calculation. PNO coefficients of every pair
    are expressed in one common virtual basis with metric ``metric``
    (identity for orthonormal virtuals such as canonical MOs).
    Matrices are cached by pair key.
    """
    def __init__(self, metric=None):
        self.metric = metric
        self._cache = {}

    def get_s(self, pair_a, pair_b):
        """``Q_a^T M Q_b`` for the PNO domains of ``pair_a`` and ``pair_b``."""
        key = (pair_a.key, pair_b.key)
        s = self._cache.get(key)
        if s is None:
            rkey = (pair_b.key, pair_a.key)
            if rkey in self._cache:
                s = self._cache[rkey].T
            else:
                qa = pair_a.pno_coeff
                qb = pair_b.pno_coeff
                if qa is None or qb is None:
                    raise ValueError(f"PNO coefficients missing for pair "
                                     f"{pair_a.key} or {pair_b.key}")
                if self.metric is None:
                    s = qa.conj().T @ qb
                else:
                    s = qa.conj().T @ self.metric @ qb
            self._cache[key] = s
        return s

    def __len__(self):
        return len(self._cache)
