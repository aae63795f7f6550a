"""
FX Quote Aggregator Service
Aggregates BRL and ARS exchange-rate quotes from several independent sources.
"""

__version__ = "1.0.0"
__author__ = "FX Quote Aggregator Team"
__description__ = "Multi-source FX quote aggregation with a freshness-bounded cache"
