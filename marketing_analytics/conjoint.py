"""
Conjoint Analysis Module
========================
Discrete-choice (multinomial logit) conjoint on the tablet choice data.

Each row is one alternative inside a choice task; exactly one alternative per
respondent × task is chosen. Utilities are linear in dummy-coded attribute
levels and a numeric price:

    U = Σ β_level · x_level + β_price · price

and choice probabilities are the softmax of U within each task.
"""

import os
from typing import Dict, Iterable, List, Optional

import joblib
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from scipy.special import softmax
from statsmodels.discrete.conditional_models import ConditionalLogit

from .config import (
    CONJOINT_CONFIG, CONJOINT_DATA_FILE, DATA_DIR, MODELS_DIR, OUTPUT_DIR, VIZ_CONFIG
)
from .data_prep import apply_levels, load_csv, set_reference_levels
from .logs import log_error, log_header, log_info, log_step, log_success, log_warning

LEVEL_SEP = '='


class ConjointAnalysis:
    """
    Conditional (McFadden) logit over choice tasks.

    Usage:
        ca = ConjointAnalysis().fit(choices_df)
        ca.willingness_to_pay()
        ca.simulate_market_shares(products_df)
    """

    def __init__(self, config: Optional[Dict] = None):
        self.config = {**CONJOINT_CONFIG, **(config or {})}
        self.levels = {}
        self.result = None
        self.params_ = None
        self.bse_ = None
        self.pvalues_ = None
        self.llf_ = None
        self.converged_ = None
        self.design_columns_ = None
        self.price_range_ = None
        self.n_tasks_ = None
        self._fitted_data = None

    @property
    def attributes(self) -> List[str]:
        return list(self.config['attributes'])

    @property
    def price_column(self) -> str:
        return self.config['price_column']

    def _validate(self, df: pd.DataFrame) -> pd.DataFrame:
        cfg = self.config
        required = [cfg['respondent_column'], cfg['task_column'], cfg['alternative_column'],
                    cfg['choice_column'], self.price_column] + self.attributes
        missing = [col for col in required if col not in df.columns]
        if missing:
            raise ValueError(f"Missing columns: {missing}")

        df = df.copy()
        try:
            df[self.price_column] = pd.to_numeric(df[self.price_column])
        except (TypeError, ValueError) as e:
            raise ValueError(f"{self.price_column} must be numeric: {e}") from e

        choice = df[cfg['choice_column']]
        if not set(choice.dropna().unique()) <= {0, 1}:
            raise ValueError(f"{cfg['choice_column']} must be 0/1")
        if df[required].isnull().any().any():
            raise ValueError("Choice data contains missing values")
        df[cfg['choice_column']] = choice.astype(int)

        df['_task'] = df.groupby([cfg['respondent_column'], cfg['task_column']]).ngroup()
        chosen = df.groupby('_task')[cfg['choice_column']].sum()
        bad = chosen[chosen != 1]
        if len(bad):
            raise ValueError(
                f"{len(bad)} choice tasks do not have exactly one chosen alternative"
            )
        return df

    def _design(self, frame: pd.DataFrame) -> pd.DataFrame:
        data = apply_levels(frame, self.levels)
        design = pd.get_dummies(data[self.attributes], prefix_sep=LEVEL_SEP,
                                drop_first=True, dtype=float)
        design[self.price_column] = data[self.price_column].astype(float)
        if self.design_columns_ is not None:
            design = design[self.design_columns_]
        return design

    def fit(self, df: pd.DataFrame) -> "ConjointAnalysis":
        log_step("Fitting Multinomial (Conditional) Logit")
        df = self._validate(df)
        df, self.levels = set_reference_levels(df, self.config['attributes'])

        self.design_columns_ = None
        design = self._design(df)
        self.design_columns_ = list(design.columns)
        y = df[self.config['choice_column']].values
        groups = df['_task'].values
        self.n_tasks_ = int(df['_task'].nunique())
        log_info(f"Choice tasks: {self.n_tasks_}, alternatives: {len(df)}")
        log_info(f"Parameters: {self.design_columns_}")

        try:
            model = ConditionalLogit(y, design.values, groups=groups)
            self.result = model.fit(disp=False, maxiter=self.config['maxiter'])
        except Exception as e:
            log_error(
                "Conditional logit fit failed",
                root_cause=str(e),
                location="ConjointAnalysis.fit()"
            )
            raise

        # ConditionalLogit results do not pickle, so keep plain copies of the estimates
        self.params_ = pd.Series(np.asarray(self.result.params), index=self.design_columns_)
        self.bse_ = pd.Series(np.asarray(self.result.bse), index=self.design_columns_)
        self.pvalues_ = pd.Series(np.asarray(self.result.pvalues), index=self.design_columns_)
        self.llf_ = float(self.result.llf)
        self.converged_ = bool(self.result.mle_retvals.get('converged', True))
        self.price_range_ = (float(df[self.price_column].min()), float(df[self.price_column].max()))
        self._fitted_data = df

        if not self.converged_:
            log_warning(
                f"Conditional logit did not converge within maxiter={self.config['maxiter']}; "
                "estimates may be unreliable"
            )
        log_success("Conditional logit fitted")
        log_info(f"  └─ Log-likelihood: {self.log_likelihood:.2f}")
        log_info(f"  └─ Null log-likelihood: {self.null_log_likelihood:.2f}")
        log_info(f"  └─ McFadden pseudo R²: {self.pseudo_r2:.4f}")
        return self

    def _check_fitted(self):
        if self.params_ is None:
            raise ValueError("ConjointAnalysis is not fitted.")

    def __getstate__(self):
        state = self.__dict__.copy()
        state['result'] = None
        return state

    @property
    def log_likelihood(self) -> float:
        self._check_fitted()
        return self.llf_

    @property
    def null_log_likelihood(self) -> float:
        """Log-likelihood of equal choice probabilities within each task"""
        self._check_fitted()
        sizes = self._fitted_data.groupby('_task').size()
        return float(-np.log(sizes).sum())

    @property
    def pseudo_r2(self) -> float:
        return 1 - self.log_likelihood / self.null_log_likelihood

    def coefficient_table(self) -> pd.DataFrame:
        self._check_fitted()
        table = pd.DataFrame({
            'coef': self.params_,
            'std_err': self.bse_,
            'z': self.params_ / self.bse_,
            'p_value': self.pvalues_,
        }, index=self.design_columns_)
        table['ci_lower'] = table['coef'] - 1.96 * table['std_err']
        table['ci_upper'] = table['coef'] + 1.96 * table['std_err']
        return table

    def partworths(self) -> pd.DataFrame:
        """Partworth of every attribute level, zero for references"""
        table = self.coefficient_table()
        rows = []
        for attr in self.attributes:
            for i, level in enumerate(self.levels[attr]):
                if i == 0:
                    rows.append({'attribute': attr, 'level': level, 'partworth': 0.0,
                                 'std_err': np.nan, 'p_value': np.nan, 'reference': True})
                    continue
                term = f"{attr}{LEVEL_SEP}{level}"
                rows.append({'attribute': attr, 'level': level,
                             'partworth': table.loc[term, 'coef'],
                             'std_err': table.loc[term, 'std_err'],
                             'p_value': table.loc[term, 'p_value'],
                             'reference': False})
        return pd.DataFrame(rows)

    def willingness_to_pay(self) -> pd.DataFrame:
        """
        Price change equivalent in utility to moving off the reference level.

        WTP = −β_level / β_price, in price units.
        """
        self._check_fitted()
        beta_price = self.params_[self.price_column]
        if beta_price == 0:
            raise ValueError("Price coefficient is zero; willingness to pay is undefined")
        if beta_price > 0:
            log_warning(f"Price coefficient is positive ({beta_price:.4f}); WTP signs are reversed")

        worths = self.partworths()
        worths = worths[~worths['reference']].copy()
        worths['wtp'] = -worths['partworth'] / beta_price
        return worths[['attribute', 'level', 'partworth', 'wtp']].reset_index(drop=True)

    def attribute_importance(self) -> pd.DataFrame:
        """Utility range of each attribute as a share of the total"""
        worths = self.partworths()
        ranges = worths.groupby('attribute', sort=False)['partworth'].agg(lambda s: s.max() - s.min())
        low, high = self.price_range_
        ranges[self.price_column] = abs(self.params_[self.price_column]) * (high - low)
        importance = pd.DataFrame({'utility_range': ranges})
        importance['importance_pct'] = importance['utility_range'] / importance['utility_range'].sum() * 100
        return importance.sort_values('importance_pct', ascending=False)

    def utilities(self, profiles: pd.DataFrame) -> pd.Series:
        self._check_fitted()
        missing = [col for col in self.attributes + [self.price_column] if col not in profiles.columns]
        if missing:
            raise ValueError(f"Missing columns: {missing}")
        design = self._design(profiles)
        return pd.Series(design.values @ self.params_.values, index=profiles.index, name='utility')

    def simulate_market_shares(self, profiles: pd.DataFrame) -> pd.DataFrame:
        """
        Logit share of preference for a set of competing products

        Args:
            profiles: One row per product with attribute levels and price

        Returns:
            Copy of profiles with utility and share columns
        """
        if len(profiles) == 0:
            raise ValueError("At least one product profile is required")
        out = profiles.copy()
        out['utility'] = self.utilities(profiles)
        out['share'] = softmax(out['utility'].values)
        return out

    def simulate_price_curve(self, profiles: pd.DataFrame, product_index,
                             prices: Iterable[float]) -> pd.DataFrame:
        """Share of one product as its price varies, competitors held fixed"""
        rows = []
        for price in prices:
            scenario = profiles.copy()
            scenario[self.price_column] = scenario[self.price_column].astype(float)
            scenario.loc[product_index, self.price_column] = price
            shares = self.simulate_market_shares(scenario)
            rows.append({'price': float(price), 'share': float(shares.loc[product_index, 'share'])})
        return pd.DataFrame(rows)

    def choice_probabilities(self, df: Optional[pd.DataFrame] = None) -> pd.Series:
        """Predicted probability of each alternative within its task"""
        self._check_fitted()
        data = self._fitted_data if df is None else self._validate(df)
        u = pd.Series(self._design(data).values @ self.params_.values, index=data.index)
        u = u - u.groupby(data['_task']).transform('max')
        expu = np.exp(u)
        return expu / expu.groupby(data['_task']).transform('sum')

    def hit_rate(self, df: Optional[pd.DataFrame] = None) -> float:
        """Share of tasks where the most likely alternative was chosen"""
        data = self._fitted_data if df is None else self._validate(df)
        probs = self.choice_probabilities(df)
        predicted = probs.groupby(data['_task']).idxmax()
        chosen = data.loc[predicted.values, self.config['choice_column']]
        return float(chosen.mean())

    def save(self, path: str) -> None:
        self._check_fitted()
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        joblib.dump(self, path)
        log_success(f"Saved conjoint model to {path}")

    @staticmethod
    def load(path: str) -> "ConjointAnalysis":
        return joblib.load(path)


def create_partworth_plot(worths: pd.DataFrame, save_path: str = None) -> plt.Figure:
    """One bar panel of partworths per attribute"""
    attributes = list(dict.fromkeys(worths['attribute']))
    n = len(attributes)
    cols = min(3, n)
    rows = int(np.ceil(n / cols))

    fig, axes = plt.subplots(rows, cols, figsize=(5 * cols, 4 * rows), squeeze=False)
    for ax, attr in zip(axes.flat, attributes):
        subset = worths[worths['attribute'] == attr]
        colors = ['#2E86AB' if v >= 0 else '#dc3545' for v in subset['partworth']]
        sns.barplot(x=subset['level'].astype(str), y=subset['partworth'], palette=colors,
                    hue=subset['level'].astype(str), legend=False, ax=ax)
        ax.axhline(0, color='black', linewidth=0.8)
        ax.set_title(attr)
        ax.set_xlabel('')
        ax.set_ylabel('Partworth')
        ax.tick_params(axis='x', rotation=30)
    for ax in list(axes.flat)[n:]:
        ax.set_visible(False)

    fig.suptitle('Attribute Level Partworths', fontsize=13, fontweight='bold')
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=VIZ_CONFIG['dpi'], bbox_inches='tight')
        log_success(f"Saved partworth plot to {save_path}")

    return fig


def create_price_curve_plot(curve: pd.DataFrame, label: str = 'Product',
                            save_path: str = None) -> plt.Figure:
    fig, ax = plt.subplots(figsize=(10, 6))
    ax.plot(curve['price'], curve['share'] * 100, marker='o', color='steelblue', lw=2)
    ax.set_xlabel('Price')
    ax.set_ylabel('Market Share (%)')
    ax.set_title(f'Simulated Share vs Price: {label}')
    ax.grid(alpha=0.3)
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=VIZ_CONFIG['dpi'], bbox_inches='tight')
        log_success(f"Saved price curve plot to {save_path}")

    return fig


def default_market(ca: ConjointAnalysis) -> pd.DataFrame:
    """Products of the first observed choice task"""
    data = ca._fitted_data
    first = data[data['_task'] == data['_task'].min()]
    return first[ca.attributes + [ca.price_column]].reset_index(drop=True)


def run_conjoint_pipeline(data_path: str, output_dir: str, models_dir: Optional[str] = None,
                          config: Optional[Dict] = None,
                          profiles: Optional[pd.DataFrame] = None) -> Dict:
    """
    Execute the conjoint analysis end to end
    """
    log_header("CONJOINT ANALYSIS & MARKET SIMULATION")

    try:
        df = load_csv(data_path)
        ca = ConjointAnalysis(config).fit(df)
        print(ca.result.summary())

        log_step("Partworths, Willingness to Pay & Importance")
        worths = ca.partworths()
        wtp = ca.willingness_to_pay()
        importance = ca.attribute_importance()
        print(worths.round(4).to_string(index=False))
        print(wtp.round(2).to_string(index=False))
        print(importance.round(2).to_string())
        log_info(f"Hit rate: {ca.hit_rate() * 100:.1f}%")

        log_step("Market Share Simulation")
        market = default_market(ca) if profiles is None else profiles
        shares = ca.simulate_market_shares(market)
        print(shares.round(4).to_string())

        low, high = ca.price_range_
        curve = ca.simulate_price_curve(market, market.index[0], np.linspace(low, high, 15))

        os.makedirs(output_dir, exist_ok=True)
        ca.coefficient_table().to_csv(os.path.join(output_dir, 'conjoint_coefficients.csv'))
        worths.to_csv(os.path.join(output_dir, 'partworths.csv'), index=False)
        wtp.to_csv(os.path.join(output_dir, 'willingness_to_pay.csv'), index=False)
        shares.to_csv(os.path.join(output_dir, 'market_shares.csv'), index=False)
        create_partworth_plot(worths, os.path.join(output_dir, 'partworths.png'))
        create_price_curve_plot(curve, save_path=os.path.join(output_dir, 'price_share_curve.png'))
        plt.close('all')

        if models_dir:
            ca.save(os.path.join(models_dir, 'conjoint_model.pkl'))

        log_success("CONJOINT ANALYSIS COMPLETE")
        return {'model': ca, 'partworths': worths, 'wtp': wtp,
                'importance': importance, 'shares': shares}

    except Exception as e:
        log_error(
            "CONJOINT PIPELINE FAILED",
            root_cause=str(e),
            location="conjoint.run_conjoint_pipeline()"
        )
        raise


if __name__ == "__main__":
    run_conjoint_pipeline(os.path.join(DATA_DIR, CONJOINT_DATA_FILE), OUTPUT_DIR, MODELS_DIR)
