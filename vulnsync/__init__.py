"""vulnsync: vulnerability enrichment for component catalogs."""

__version__ = "0.1.0"
