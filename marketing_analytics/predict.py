"""
Prediction Module
=================
Utility functions for scoring new customers with the saved churn model.
"""

import os
from typing import Dict

import joblib
import pandas as pd

from .churn_model import ChurnModel
from .clv_analysis import clv
from .config import CLV_CONFIG, MODELS_DIR, RISK_BANDS


def risk_level(probability: float) -> str:
    """Low / Medium / High band for a churn probability"""
    if probability < RISK_BANDS['Low']:
        return "Low"
    elif probability < RISK_BANDS['Medium']:
        return "Medium"
    return "High"


class ChurnPredictor:
    """
    A wrapper class for making churn predictions on new customers.

    Usage:
        predictor = ChurnPredictor('models/')
        result = predictor.predict(customer_data)
    """

    def __init__(self, models_dir: str):
        self.models_dir = models_dir
        self._load_models()

    def _load_models(self):
        """Load the churn model and CLV settings"""
        self.model = ChurnModel.load(os.path.join(self.models_dir, "churn_model.pkl"))
        settings_path = os.path.join(self.models_dir, "clv_settings.pkl")
        self.clv_settings = (joblib.load(settings_path) if os.path.exists(settings_path)
                             else dict(CLV_CONFIG))

    def predict(self, customer: Dict, threshold: float = None) -> Dict:
        """
        Predict churn probability and CLV for a customer.

        Args:
            customer: Dictionary with the model's feature columns
            threshold: Classification threshold (defaults to the model's)

        Returns:
            Dictionary with probability, risk level, churn flag and CLV
        """
        threshold = self.model.config['threshold'] if threshold is None else threshold
        frame = pd.DataFrame([customer])
        proba = float(self.model.predict_proba(frame).iloc[0])

        price = customer[self.clv_settings['price_column']]
        margin = price * self.clv_settings['margin_rate']
        value = float(clv(margin, proba, self.clv_settings['discount']))

        return {
            'churn_probability': proba,
            'risk_level': risk_level(proba),
            'will_churn': proba >= threshold,
            'margin': margin,
            'clv': value,
        }


# Example customer profiles for the telco model
HIGH_RISK_PROFILE = {
    'tenure': 2,
    'MonthlyCharges': 105.0,
    'SeniorCitizen': 1,
    'Contract': 'Month-to-month',
    'InternetService': 'Fiber optic',
    'PaymentMethod': 'Electronic check',
    'PaperlessBilling': 'Yes',
}

LOW_RISK_PROFILE = {
    'tenure': 48,
    'MonthlyCharges': 85.0,
    'SeniorCitizen': 0,
    'Contract': 'Two year',
    'InternetService': 'DSL',
    'PaymentMethod': 'Bank transfer (automatic)',
    'PaperlessBilling': 'No',
}


if __name__ == "__main__":
    predictor = ChurnPredictor(MODELS_DIR)

    print("=" * 70)
    print("CHURN PREDICTION TEST")
    print("=" * 70)

    for label, profile in [("HIGH-RISK", HIGH_RISK_PROFILE), ("LOW-RISK", LOW_RISK_PROFILE)]:
        result = predictor.predict(profile)
        print(f"\n{label} PROFILE:")
        print(f"  Churn Probability: {result['churn_probability']*100:.1f}%")
        print(f"  Risk Level: {result['risk_level']}")
        print(f"  CLV: ${result['clv']:,.2f}")
