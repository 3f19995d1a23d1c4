"""
Churn Model Module
==================
Binary logistic regression (binomial GLM) for churn prediction.

This module handles:
1. Fitting the GLM with recoded reference levels
2. Coefficient table with odds ratios and Wald 95% CIs
3. Probability thresholding, confusion matrix and classification metrics
4. Cost-based threshold selection
5. The end-to-end churn & CLV pipeline
"""

import os
from typing import Dict, Iterable, Optional

import joblib
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import statsmodels.api as sm
import statsmodels.formula.api as smf
from sklearn.metrics import (
    accuracy_score, confusion_matrix, f1_score, precision_score,
    recall_score, roc_auc_score
)

from . import clv_analysis
from .config import (
    CHURN_CONFIG, CHURN_DATA_FILE, CLV_CONFIG, COST_FALSE_NEGATIVE,
    COST_FALSE_POSITIVE, DATA_DIR, MODELS_DIR, OUTPUT_DIR, VIZ_CONFIG
)
from .data_prep import ChurnDataPreparation, apply_levels, sorted_levels
from .logs import log_error, log_header, log_info, log_step, log_success, log_warning


def _term(name: str) -> str:
    return name if name.isidentifier() else f"Q('{name}')"


def significance_stars(p_value: float) -> str:
    return "***" if p_value < 0.001 else "**" if p_value < 0.01 else "*" if p_value < 0.05 else ""


class ChurnModel:
    """
    Binomial GLM (logit link) predicting churn.

    Categorical features are treated with their first category as the
    reference, so coefficients read as differences from that level.
    """

    def __init__(self, config: Optional[Dict] = None):
        self.config = {**CHURN_CONFIG, **(config or {})}
        self.result = None
        self.levels = {}

    @property
    def target(self) -> str:
        return self.config['target']

    @property
    def feature_columns(self):
        return list(self.config['numeric_features']) + list(self.config['categorical_features'])

    def build_formula(self) -> str:
        terms = [_term(col) for col in self.feature_columns]
        if not terms:
            raise ValueError("At least one feature is required")
        return f"{_term(self.target)} ~ " + " + ".join(terms)

    def fit(self, df: pd.DataFrame) -> "ChurnModel":
        """
        Fit the binomial GLM.

        Args:
            df: Prepared DataFrame (binary target, recoded categoricals)

        Returns:
            self
        """
        log_step("Fitting Binomial GLM (logit link)")
        formula = self.build_formula()
        log_info(f"Formula: {formula}")

        self.levels = {
            col: list(df[col].cat.categories) if isinstance(df[col].dtype, pd.CategoricalDtype)
            else sorted_levels(df[col])
            for col in self.config['categorical_features']
        }
        data = apply_levels(df, self.levels)

        try:
            glm = smf.glm(formula, data=data, family=sm.families.Binomial())
            self.result = glm.fit(maxiter=self.config['maxiter'])
        except Exception as e:
            log_error(
                "GLM fit failed",
                root_cause=str(e),
                location="ChurnModel.fit()"
            )
            raise

        if not self.result.converged:
            log_warning(
                f"GLM did not converge within maxiter={self.config['maxiter']}; "
                "estimates may be unreliable"
            )
        log_success(f"GLM fitted on {int(self.result.nobs)} observations")
        log_info(f"  └─ Log-likelihood: {self.result.llf:.2f}")
        log_info(f"  └─ AIC: {self.result.aic:.2f}")
        log_info(f"  └─ McFadden pseudo R²: {self.pseudo_r2:.4f}")
        return self

    def _check_fitted(self):
        if self.result is None:
            raise ValueError("Model is not trained or loaded.")

    @property
    def params(self) -> pd.Series:
        self._check_fitted()
        return self.result.params

    @property
    def pseudo_r2(self) -> float:
        self._check_fitted()
        return 1 - self.result.llf / self.result.llnull

    def summary(self):
        self._check_fitted()
        return self.result.summary()

    def coefficient_table(self) -> pd.DataFrame:
        """Coefficients with std errors, p-values, 95% CIs and odds ratios"""
        self._check_fitted()
        ci = self.result.conf_int()
        table = pd.DataFrame({
            'coef': self.result.params,
            'std_err': self.result.bse,
            'z': self.result.tvalues,
            'p_value': self.result.pvalues,
            'ci_lower': ci[0],
            'ci_upper': ci[1],
        })
        table['odds_ratio'] = np.exp(table['coef'])
        table['or_ci_lower'] = np.exp(table['ci_lower'])
        table['or_ci_upper'] = np.exp(table['ci_upper'])
        table['sig'] = table['p_value'].apply(significance_stars)
        return table

    def predict_proba(self, df: pd.DataFrame) -> pd.Series:
        """Predicted churn probability for each row"""
        self._check_fitted()
        missing = [col for col in self.feature_columns if col not in df.columns]
        if missing:
            raise ValueError(f"Missing columns: {missing}")
        data = apply_levels(df, self.levels)
        if data[self.feature_columns].isnull().any().any():
            raise ValueError("Feature columns contain missing values")
        proba = self.result.predict(data)
        return pd.Series(np.asarray(proba), index=df.index, name='churn_prob')

    def classify(self, df: pd.DataFrame, threshold: Optional[float] = None) -> pd.Series:
        threshold = self.config['threshold'] if threshold is None else threshold
        if not 0 < threshold < 1:
            raise ValueError(f"threshold must be in (0, 1), got {threshold}")
        return (self.predict_proba(df) >= threshold).astype(int)

    def evaluate(self, df: pd.DataFrame, threshold: Optional[float] = None) -> Dict:
        """
        Evaluate the model at a probability threshold.

        Returns:
            Dictionary with accuracy, precision, recall, f1, auc_roc and
            confusion matrix counts
        """
        threshold = self.config['threshold'] if threshold is None else threshold
        y = df[self.target].astype(int).values
        y_proba = self.predict_proba(df).values
        y_pred = (y_proba >= threshold).astype(int)

        tn, fp, fn, tp = confusion_matrix(y, y_pred, labels=[0, 1]).ravel()
        if len(np.unique(y)) < 2:
            log_warning("Only one class present; AUC-ROC is undefined")
            auc_roc = float('nan')
        else:
            auc_roc = roc_auc_score(y, y_proba)

        return {
            'threshold': threshold,
            'accuracy': accuracy_score(y, y_pred),
            'precision': precision_score(y, y_pred, zero_division=0),
            'recall': recall_score(y, y_pred, zero_division=0),
            'f1': f1_score(y, y_pred, zero_division=0),
            'auc_roc': auc_roc,
            'tn': int(tn), 'fp': int(fp), 'fn': int(fn), 'tp': int(tp),
        }

    def threshold_table(self, df: pd.DataFrame,
                        thresholds: Optional[Iterable[float]] = None) -> pd.DataFrame:
        """Metrics over a grid of thresholds"""
        if thresholds is None:
            thresholds = np.round(np.arange(0.1, 0.91, 0.1), 2)
        rows = [self.evaluate(df, t) for t in thresholds]
        return pd.DataFrame(rows).set_index('threshold')

    def best_threshold(self, df: pd.DataFrame,
                       cost_fn: float = COST_FALSE_NEGATIVE,
                       cost_fp: float = COST_FALSE_POSITIVE) -> Dict:
        """Threshold minimizing expected misclassification cost"""
        y = df[self.target].astype(int).values
        y_proba = self.predict_proba(df).values

        best = None
        for t in np.linspace(0.05, 0.95, 91):
            y_pred = (y_proba >= t).astype(int)
            fn = int(((y == 1) & (y_pred == 0)).sum())
            fp = int(((y == 0) & (y_pred == 1)).sum())
            cost = fn * cost_fn + fp * cost_fp
            if best is None or cost < best['cost']:
                best = {'threshold': round(float(t), 2), 'cost': cost, 'fn': fn, 'fp': fp}

        log_info(f"Cost-optimal threshold: {best['threshold']:.2f} "
                 f"(FN cost ${cost_fn}, FP cost ${cost_fp}, total ${best['cost']:,.0f})")
        return best

    def save(self, path: str) -> None:
        self._check_fitted()
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        joblib.dump(self, path)
        log_success(f"Saved churn model to {path}")

    @staticmethod
    def load(path: str) -> "ChurnModel":
        return joblib.load(path)


def create_confusion_matrix_plot(metrics: Dict, save_path: str = None) -> plt.Figure:
    """Confusion matrix heatmap from evaluate() output"""
    cm = np.array([[metrics['tn'], metrics['fp']], [metrics['fn'], metrics['tp']]])

    fig, ax = plt.subplots(figsize=(6, 5))
    im = ax.imshow(cm, cmap='Blues')
    ax.set_xticks([0, 1])
    ax.set_yticks([0, 1])
    ax.set_xticklabels(['No Churn', 'Churn'])
    ax.set_yticklabels(['No Churn', 'Churn'])
    ax.set_xlabel('Predicted')
    ax.set_ylabel('Actual')
    ax.set_title(f"Confusion Matrix (threshold = {metrics['threshold']:.2f})")

    for i in range(2):
        for j in range(2):
            ax.text(j, i, cm[i, j], ha='center', va='center',
                    color='white' if cm[i, j] > cm.max() / 2 else 'black',
                    fontsize=14, fontweight='bold')

    plt.colorbar(im)
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=VIZ_CONFIG['dpi'], bbox_inches='tight')
        log_success(f"Saved confusion matrix plot to {save_path}")

    return fig


def create_coefficient_plot(table: pd.DataFrame, save_path: str = None) -> plt.Figure:
    """Odds ratios with 95% CIs, intercept excluded"""
    table = table.drop(index='Intercept', errors='ignore')

    fig, ax = plt.subplots(figsize=(10, max(4, 0.5 * len(table))))
    y_pos = range(len(table))
    errors = [table['odds_ratio'] - table['or_ci_lower'], table['or_ci_upper'] - table['odds_ratio']]
    colors = ['#FF6B35' if p < 0.05 else '#CCCCCC' for p in table['p_value']]

    ax.barh(y_pos, table['odds_ratio'], xerr=errors, color=colors, capsize=4,
            edgecolor='white', height=0.6)
    ax.axvline(x=1.0, color='black', linestyle='--', linewidth=0.8, label='No effect (OR=1.0)')
    ax.set_yticks(list(y_pos))
    ax.set_yticklabels(table.index)
    ax.set_xlabel('Odds Ratio (95% CI)')
    ax.set_title('Churn Drivers', fontweight='bold')
    ax.legend(loc='lower right')
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=VIZ_CONFIG['dpi'], bbox_inches='tight')
        log_success(f"Saved coefficient plot to {save_path}")

    return fig


def run_churn_pipeline(data_path: str, output_dir: str, models_dir: str,
                       config: Optional[Dict] = None,
                       clv_config: Optional[Dict] = None) -> Dict:
    """
    Execute the churn & CLV analysis end to end.

    Returns:
        Dictionary with the fitted model, metrics and optimization result
    """
    log_header("CHURN MODEL & CUSTOMER LIFETIME VALUE")
    clv_config = {**CLV_CONFIG, **(clv_config or {})}

    try:
        df = ChurnDataPreparation(data_path, config).run()
        model = ChurnModel(config).fit(df)
        print(model.summary())

        os.makedirs(output_dir, exist_ok=True)
        table = model.coefficient_table()
        table.to_csv(os.path.join(output_dir, 'churn_coefficients.csv'))

        log_step("Classification at Probability Threshold")
        metrics = model.evaluate(df)
        log_info(f"Confusion Matrix (threshold {metrics['threshold']:.2f}):")
        log_info(f"  └─ TN: {metrics['tn']}, FP: {metrics['fp']}")
        log_info(f"  └─ FN: {metrics['fn']}, TP: {metrics['tp']}")
        log_info(f"  └─ Accuracy: {metrics['accuracy']:.4f}, Recall: {metrics['recall']:.4f}, "
                 f"AUC-ROC: {metrics['auc_roc']:.4f}")
        print(model.threshold_table(df).round(4).to_string())
        best = model.best_threshold(df)

        create_confusion_matrix_plot(metrics, os.path.join(output_dir, 'churn_confusion_matrix.png'))
        create_coefficient_plot(table, os.path.join(output_dir, 'churn_odds_ratios.png'))

        log_step("Customer Lifetime Value & Price Optimization")
        scored = clv_analysis.customer_clv(model, df, clv_config['price_column'],
                                           clv_config['margin_rate'], clv_config['discount'])
        scored = clv_analysis.add_clv_quartiles(scored)
        print(clv_analysis.analyze_clv_by_churn(scored, model.target))
        print(clv_analysis.analyze_churn_by_quartile(scored, model.target))

        optimum = clv_analysis.optimize_price_multiplier(
            model, df,
            price_column=clv_config['price_column'],
            margin_rate=clv_config['margin_rate'],
            discount=clv_config['discount'],
            bounds=clv_config['multiplier_bounds'],
            x0=clv_config['initial_multiplier'],
        )
        low, high = clv_config['multiplier_bounds']
        curve = clv_analysis.profit_curve(
            model, df, np.linspace(low, high, 31),
            price_column=clv_config['price_column'],
            margin_rate=clv_config['margin_rate'],
            discount=clv_config['discount'],
        )
        curve.to_csv(os.path.join(output_dir, 'profit_curve.csv'), index=False)
        clv_analysis.create_profit_curve_plot(curve, optimum,
                                              os.path.join(output_dir, 'profit_curve.png'))
        clv_analysis.create_clv_distribution_plot(scored, model.target,
                                                  os.path.join(output_dir, 'clv_distribution.png'))
        clv_analysis.create_churn_by_quartile_plot(scored, model.target,
                                                   os.path.join(output_dir, 'churn_by_clv_quartile.png'))
        plt.close('all')

        log_step("Business Insights")
        for insight in clv_analysis.generate_business_insights(scored, optimum, model.target):
            log_info(f"  └─ {insight}")

        model.save(os.path.join(models_dir, 'churn_model.pkl'))
        joblib.dump({**clv_config, 'optimum': optimum, 'best_threshold': best},
                    os.path.join(models_dir, 'clv_settings.pkl'))
        log_success("Saved clv_settings.pkl")

        log_success("CHURN & CLV ANALYSIS COMPLETE")
        return {'model': model, 'metrics': metrics, 'best_threshold': best,
                'optimum': optimum, 'customers': scored}

    except Exception as e:
        log_error(
            "CHURN PIPELINE FAILED",
            root_cause=str(e),
            location="churn_model.run_churn_pipeline()"
        )
        raise


if __name__ == "__main__":
    run_churn_pipeline(os.path.join(DATA_DIR, CHURN_DATA_FILE), OUTPUT_DIR, MODELS_DIR)
