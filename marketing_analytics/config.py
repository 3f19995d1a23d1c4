"""
Configuration settings for the marketing analytics pipelines
"""

import os

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

DATA_DIR = os.environ.get("MARKETING_DATA_DIR", os.path.join(BASE_DIR, "data"))
OUTPUT_DIR = os.environ.get("MARKETING_OUTPUT_DIR", os.path.join(BASE_DIR, "outputs"))
MODELS_DIR = os.environ.get("MARKETING_MODELS_DIR", os.path.join(BASE_DIR, "models"))

CHURN_DATA_FILE = "telco_churn_data.csv"
FACTOR_DATA_FILE = "testscoresdata.csv"
CONJOINT_DATA_FILE = "conjoint_tablet_data.csv"

# Seed for the synthetic datasets used in tests
RANDOM_STATE = 42

# Churn model: binomial GLM on the telco customer table.
# Categorical features map to their reference level (None = first sorted level).
CHURN_CONFIG = {
    'id_column': 'customerID',
    'target': 'Churn',
    'positive_label': 'Yes',
    'negative_label': 'No',
    'numeric_features': ['tenure', 'MonthlyCharges', 'SeniorCitizen'],
    'categorical_features': {
        'Contract': 'Month-to-month',
        'InternetService': 'DSL',
        'PaymentMethod': 'Mailed check',
        'PaperlessBilling': 'No',
    },
    'threshold': 0.5,
    'maxiter': 100,
}

# CLV settings: per-period margin = price * margin_rate, discount factor per period
CLV_CONFIG = {
    'price_column': 'MonthlyCharges',
    'margin_rate': 1.0,
    'discount': 0.99,
    'multiplier_bounds': (0.5, 2.0),
    'initial_multiplier': 1.0,
}

# Business cost assumptions (used in threshold selection)
COST_FALSE_NEGATIVE = 500   # missed churner (lost revenue)
COST_FALSE_POSITIVE = 50    # unnecessary retention offer

# Risk bands on churn probability
RISK_BANDS = {
    'Low': 0.3,
    'Medium': 0.6,
}

FACTOR_CONFIG = {
    'id_column': 'id',
    'n_factors': None,        # None = Kaiser rule (eigenvalue > 1)
    'rotation': 'varimax',    # 'varimax', 'quartimax' or 'none'
    'loading_threshold': 0.4,
    'map_factors': (0, 1),
    'show_scores': True,
}

CONJOINT_CONFIG = {
    'respondent_column': 'resp_id',
    'task_column': 'ques',
    'alternative_column': 'alt',
    'choice_column': 'choice',
    'price_column': 'price',
    # attribute -> reference level (None = first sorted level)
    'attributes': {
        'brand': None,
        'size': None,
        'storage': None,
        'ram': None,
        'battery': None,
    },
    'maxiter': 200,
}

# Visualization settings
VIZ_CONFIG = {
    'dpi': 100,
    'style': 'whitegrid',
}
