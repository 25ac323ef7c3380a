import logging

import numpy as np
import pandas as pd

from scripts.cart.config import MISSING_CODE

log = logging.getLogger(__name__)


def _recode(grid, classes):
    # map grid codes onto a shared class list
    lookup = np.array([classes.index(c) for c in grid.classes] + [MISSING_CODE], dtype="int16")
    return lookup[grid.codes]


def change_matrix(before, after, pixel_area=1.0):
    """
    From-to cross tabulation of two classified maps of the same extent.

    Rows are classes in ``before``, columns classes in ``after``. Pixels
    missing in either map are left out. Values are pixel counts times
    ``pixel_area``.
    """
    if before.dimensions() != after.dimensions():
        raise ValueError(
            f"Grids differ in shape: {before.dimensions()} vs {after.dimensions()}"
        )

    classes = list(before.classes) + [c for c in after.classes if c not in before.classes]
    a = _recode(before, classes).ravel()
    b = _recode(after, classes).ravel()

    valid = (a != MISSING_CODE) & (b != MISSING_CODE)
    k = len(classes)
    counts = np.bincount(a[valid].astype("int64") * k + b[valid], minlength=k * k).reshape(k, k)

    log.info(
        "Change matrix over %d pixels (%d skipped as missing)",
        int(valid.sum()), int((~valid).sum()),
    )
    return pd.DataFrame(
        counts * pixel_area,
        index=pd.Index(classes, name="from"),
        columns=pd.Index(classes, name="to"),
    )


def net_change(matrix):
    before = matrix.sum(axis=1)
    after = matrix.sum(axis=0)
    stable = pd.Series(np.diag(matrix.to_numpy()), index=matrix.index)
    return pd.DataFrame(
        {
            "before": before,
            "after": after,
            "stable": stable,
            "gain": after - stable,
            "loss": before - stable,
            "net": after - before,
        }
    )
