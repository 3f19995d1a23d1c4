"""
Marketing Analytics
===================
Churn & CLV, factor analysis and conjoint pipelines.
"""

from .data_prep import ChurnDataPreparation, load_csv, set_reference_levels
from .churn_model import ChurnModel, run_churn_pipeline
from .clv_analysis import clv, optimize_price_multiplier
from .factor_analysis import FactorAnalysis, run_factor_pipeline
from .conjoint import ConjointAnalysis, run_conjoint_pipeline
from .predict import ChurnPredictor

__all__ = [
    'ChurnDataPreparation',
    'load_csv',
    'set_reference_levels',
    'ChurnModel',
    'run_churn_pipeline',
    'clv',
    'optimize_price_multiplier',
    'FactorAnalysis',
    'run_factor_pipeline',
    'ConjointAnalysis',
    'run_conjoint_pipeline',
    'ChurnPredictor',
]
