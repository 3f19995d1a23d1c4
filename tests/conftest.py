"""
Shared fixtures: synthetic datasets generated from known parameters.
"""

import matplotlib
matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from marketing_analytics.churn_model import ChurnModel
from marketing_analytics.config import RANDOM_STATE
from marketing_analytics.conjoint import ConjointAnalysis
from marketing_analytics.data_prep import ChurnDataPreparation

CONTRACT_EFFECTS = {'Month-to-month': 0.0, 'One year': -1.0, 'Two year': -2.0}
INTERNET_EFFECTS = {'DSL': 0.0, 'Fiber optic': 0.7, 'No': -0.5}
PAYMENT_EFFECTS = {
    'Mailed check': 0.0,
    'Electronic check': 0.5,
    'Bank transfer (automatic)': -0.2,
    'Credit card (automatic)': -0.2,
}
PAPERLESS_EFFECTS = {'No': 0.0, 'Yes': 0.3}

CHURN_TRUE = {
    'Intercept': -1.0,
    'tenure': -0.04,
    'MonthlyCharges': 0.02,
    'SeniorCitizen': 0.3,
}

BRAND_WORTHS = {'Apple': 0.0, 'Lenovo': -0.8, 'Samsung': -0.3}
STORAGE_WORTHS = {32: 0.0, 64: 0.5, 128: 1.0}
BATTERY_WORTHS = {'8hrs': 0.0, '12hrs': 0.4, '16hrs': 0.7}
PRICE_BETA = -0.01
PRICES = [199, 299, 399, 499]

CONJOINT_TEST_CONFIG = {
    'attributes': {'brand': None, 'storage': None, 'battery': '8hrs'},
}


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close('all')


def make_churn_data(n: int = 3000, seed: int = RANDOM_STATE) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    df = pd.DataFrame({
        'customerID': [f"C{i:05d}" for i in range(n)],
        'tenure': rng.integers(0, 73, size=n),
        'MonthlyCharges': rng.uniform(20, 110, size=n).round(2),
        'SeniorCitizen': rng.binomial(1, 0.16, size=n),
        'Contract': rng.choice(list(CONTRACT_EFFECTS), size=n, p=[0.5, 0.25, 0.25]),
        'InternetService': rng.choice(list(INTERNET_EFFECTS), size=n),
        'PaymentMethod': rng.choice(list(PAYMENT_EFFECTS), size=n),
        'PaperlessBilling': rng.choice(list(PAPERLESS_EFFECTS), size=n),
    })
    eta = (CHURN_TRUE['Intercept']
           + CHURN_TRUE['tenure'] * df['tenure']
           + CHURN_TRUE['MonthlyCharges'] * df['MonthlyCharges']
           + CHURN_TRUE['SeniorCitizen'] * df['SeniorCitizen']
           + df['Contract'].map(CONTRACT_EFFECTS)
           + df['InternetService'].map(INTERNET_EFFECTS)
           + df['PaymentMethod'].map(PAYMENT_EFFECTS)
           + df['PaperlessBilling'].map(PAPERLESS_EFFECTS))
    p = 1 / (1 + np.exp(-eta))
    df['Churn'] = np.where(rng.uniform(size=n) < p, 'Yes', 'No')

    # Text column with blanks for brand-new customers
    total = (df['tenure'] * df['MonthlyCharges']).round(2).astype(str)
    df['TotalCharges'] = total.where(df['tenure'] > 0, ' ')
    return df


@pytest.fixture(scope="session")
def churn_raw() -> pd.DataFrame:
    return make_churn_data()


@pytest.fixture(scope="session")
def churn_csv(churn_raw, tmp_path_factory) -> str:
    path = tmp_path_factory.mktemp("data") / "telco_churn_data.csv"
    churn_raw.to_csv(path, index=False)
    return str(path)


@pytest.fixture(scope="session")
def churn_prepared(churn_csv) -> pd.DataFrame:
    return ChurnDataPreparation(churn_csv).run()


@pytest.fixture(scope="session")
def churn_model(churn_prepared) -> ChurnModel:
    return ChurnModel().fit(churn_prepared)


@pytest.fixture(scope="session")
def factor_data() -> pd.DataFrame:
    """Six test scores driven by two latent abilities"""
    rng = np.random.default_rng(RANDOM_STATE)
    n = 500
    verbal = rng.normal(size=n)
    math = rng.normal(size=n)
    noise = rng.normal(scale=0.5, size=(n, 6))
    return pd.DataFrame({
        'id': np.arange(1, n + 1),
        'reading': 0.8 * verbal + noise[:, 0],
        'vocabulary': 0.8 * verbal + noise[:, 1],
        'writing': 0.8 * verbal + noise[:, 2],
        'algebra': 0.8 * math + noise[:, 3],
        'geometry': 0.8 * math + noise[:, 4],
        'calculus': 0.8 * math + noise[:, 5],
    })


def make_conjoint_data(n_resp: int = 100, n_tasks: int = 10, n_alts: int = 3,
                       seed: int = RANDOM_STATE) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    rows = []
    for resp in range(1, n_resp + 1):
        for task in range(1, n_tasks + 1):
            brands = rng.choice(list(BRAND_WORTHS), size=n_alts)
            storages = rng.choice(list(STORAGE_WORTHS), size=n_alts)
            batteries = rng.choice(list(BATTERY_WORTHS), size=n_alts)
            prices = rng.choice(PRICES, size=n_alts)
            utility = np.array([
                BRAND_WORTHS[b] + STORAGE_WORTHS[int(s)] + BATTERY_WORTHS[t] + PRICE_BETA * p
                for b, s, t, p in zip(brands, storages, batteries, prices)
            ])
            chosen = int(np.argmax(utility + rng.gumbel(size=n_alts)))
            for alt in range(n_alts):
                rows.append({
                    'resp_id': resp,
                    'ques': task,
                    'alt': alt + 1,
                    'brand': brands[alt],
                    'storage': int(storages[alt]),
                    'battery': batteries[alt],
                    'price': int(prices[alt]),
                    'choice': int(alt == chosen),
                })
    return pd.DataFrame(rows)


@pytest.fixture(scope="session")
def conjoint_data() -> pd.DataFrame:
    return make_conjoint_data()


@pytest.fixture(scope="session")
def conjoint_model(conjoint_data):
    return ConjointAnalysis(CONJOINT_TEST_CONFIG).fit(conjoint_data)
