"""Tail probabilities of the distributions used by the sequence checks."""

from scipy.stats.distributions import chi2


def chi_high(x: float, df: int) -> float:
    """Returns right-hand tail of chi-square distribution (x to infinity).

    df, the degrees of freedom, ranges from 1 to infinity (assume integers).
    Typically, df is (r-1)*(c-1) for a r by c table.

    Result is the regularized upper incomplete gamma function Q(df/2, x/2).
    Degrees of freedom below 1 give a p-value of 1.
    """
    if df < 1:
        return 1.0
    return float(chi2.sf(max(x, 0), df))
