"""Building blocks of the imputation engine: value cache, strategies, missing periods and jitter."""
