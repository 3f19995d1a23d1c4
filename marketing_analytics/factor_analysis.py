"""
Factor Analysis Module
======================
Dimensionality reduction of test-score items with a perceptual map.

This module handles:
1. Eigen-decomposition of the item correlation matrix and scree plot
2. Factor count selection (Kaiser rule or fixed)
3. Principal-component loadings with varimax rotation
4. Communalities, Bartlett's sphericity test and KMO adequacy
5. Regression-method factor scores and the perceptual map
"""

import os
from typing import Dict, List, Optional, Tuple

import joblib
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from scipy import stats
from sklearn.preprocessing import StandardScaler
from statsmodels.multivariate.factor_rotation import rotate_factors

from .config import (
    DATA_DIR, FACTOR_CONFIG, FACTOR_DATA_FILE, MODELS_DIR, OUTPUT_DIR, VIZ_CONFIG
)
from .data_prep import load_csv
from .logs import log_error, log_header, log_info, log_step, log_success, log_warning

# Orthogonal only: communalities and scores assume uncorrelated factors
ROTATIONS = ('varimax', 'quartimax', 'none')


class FactorAnalysis:
    """
    Principal-component factor analysis with orthogonal rotation.

    Usage:
        fa = FactorAnalysis({'n_factors': 2}).fit(scores_df)
        fa.loadings_
        fa.create_perceptual_map(save_path='map.png')
    """

    def __init__(self, config: Optional[Dict] = None):
        self.config = {**FACTOR_CONFIG, **(config or {})}
        self.items = None
        self.scaler = None
        self.corr_ = None
        self.eigenvalues_ = None
        self.eigenvectors_ = None
        self.n_factors_ = None
        self.loadings_ = None
        self.rotation_matrix_ = None
        self.scores_ = None
        self.n_obs_ = None
        self._labels = None

    def _select_items(self, df: pd.DataFrame) -> pd.DataFrame:
        id_column = self.config.get('id_column')
        data = df.drop(columns=[id_column]) if id_column in df.columns else df
        numeric = data.select_dtypes(include=[np.number])
        dropped = [col for col in data.columns if col not in numeric.columns]
        if dropped:
            log_warning(f"Ignoring non-numeric columns: {dropped}")
        return numeric

    def fit(self, df: pd.DataFrame) -> "FactorAnalysis":
        log_step("Factor Extraction")
        rotation = (self.config.get('rotation') or 'none').lower()
        if rotation not in ROTATIONS:
            raise ValueError(f"Unsupported rotation {rotation!r}; choose one of {ROTATIONS}")

        data = self._select_items(df)
        n_missing = data.isnull().any(axis=1).sum()
        if n_missing:
            log_warning(f"Dropping {n_missing} rows with missing item scores")
            data = data.dropna()

        n, p = data.shape
        if p < 2:
            raise ValueError(f"Factor analysis needs at least 2 numeric items, got {p}")
        if n <= p:
            raise ValueError(f"Need more observations than items ({n} rows, {p} items)")
        zero_var = data.columns[data.std() == 0].tolist()
        if zero_var:
            raise ValueError(f"Items with zero variance: {zero_var}")

        self.items = list(data.columns)
        self.n_obs_ = n
        self._labels = data.index
        log_info(f"Items: {self.items}")
        log_info(f"Observations: {n}")

        self.scaler = StandardScaler()
        z = self.scaler.fit_transform(data.values)
        self.corr_ = np.corrcoef(z, rowvar=False)

        # eigh returns ascending order
        eigenvalues, eigenvectors = np.linalg.eigh(self.corr_)
        order = np.argsort(eigenvalues)[::-1]
        self.eigenvalues_ = eigenvalues[order]
        self.eigenvectors_ = eigenvectors[:, order]

        self.n_factors_ = self._choose_n_factors(p)
        k = self.n_factors_
        loadings = self.eigenvectors_[:, :k] * np.sqrt(self.eigenvalues_[:k])

        if rotation != 'none' and k > 1:
            loadings, self.rotation_matrix_ = rotate_factors(loadings, rotation)
            log_success(f"Applied {rotation} rotation")
        else:
            self.rotation_matrix_ = np.eye(k)
            log_info("No rotation applied")

        # Largest absolute loading of each factor points positive
        signs = np.sign(loadings[np.abs(loadings).argmax(axis=0), np.arange(k)])
        signs[signs == 0] = 1
        loadings = loadings * signs

        columns = [f"Factor{i + 1}" for i in range(k)]
        self.loadings_ = pd.DataFrame(loadings, index=self.items, columns=columns)

        weights = np.linalg.solve(self.corr_, loadings)
        self.scores_ = pd.DataFrame(z @ weights, index=self._labels, columns=columns)

        log_success(f"Extracted {k} factors explaining "
                    f"{self.eigenvalues_[:k].sum() / p * 100:.1f}% of total variance")
        return self

    def _choose_n_factors(self, p: int) -> int:
        requested = self.config.get('n_factors')
        if requested is None:
            k = max(1, int((self.eigenvalues_ > 1).sum()))
            log_info(f"Kaiser rule (eigenvalue > 1) suggests {k} factors")
            return k
        if not 1 <= requested <= p:
            raise ValueError(f"n_factors must be between 1 and {p}, got {requested}")
        return int(requested)

    def _check_fitted(self):
        if self.loadings_ is None:
            raise ValueError("FactorAnalysis is not fitted.")

    def eigenvalue_table(self) -> pd.DataFrame:
        self._check_fitted()
        proportion = self.eigenvalues_ / self.eigenvalues_.sum()
        return pd.DataFrame({
            'eigenvalue': self.eigenvalues_,
            'proportion': proportion,
            'cumulative': np.cumsum(proportion),
        }, index=pd.RangeIndex(1, len(self.eigenvalues_) + 1, name='component'))

    def communalities(self) -> pd.DataFrame:
        self._check_fitted()
        h2 = (self.loadings_ ** 2).sum(axis=1)
        return pd.DataFrame({'communality': h2, 'uniqueness': 1 - h2})

    def variance_explained(self) -> pd.DataFrame:
        """Sum of squared loadings per (rotated) factor"""
        self._check_fitted()
        ss = (self.loadings_ ** 2).sum(axis=0)
        proportion = ss / len(self.items)
        return pd.DataFrame({'ss_loadings': ss, 'proportion': proportion,
                             'cumulative': proportion.cumsum()})

    def bartlett_sphericity(self) -> Tuple[float, int, float]:
        """
        Bartlett's test that the correlation matrix is an identity.

        Returns:
            (chi-square statistic, degrees of freedom, p-value)
        """
        self._check_fitted()
        n, p = self.n_obs_, len(self.items)
        _, logdet = np.linalg.slogdet(self.corr_)
        chi2 = -(n - 1 - (2 * p + 5) / 6) * logdet
        dof = p * (p - 1) // 2
        return float(chi2), dof, float(stats.chi2.sf(chi2, dof))

    def kmo(self) -> Tuple[float, pd.Series]:
        """Kaiser-Meyer-Olkin sampling adequacy, overall and per item"""
        self._check_fitted()
        inv = np.linalg.inv(self.corr_)
        d = np.sqrt(np.outer(np.diag(inv), np.diag(inv)))
        partial = -inv / d
        np.fill_diagonal(partial, 0)
        r = self.corr_.copy()
        np.fill_diagonal(r, 0)

        r2, a2 = r ** 2, partial ** 2
        per_item = r2.sum(axis=0) / (r2.sum(axis=0) + a2.sum(axis=0))
        overall = r2.sum() / (r2.sum() + a2.sum())
        return float(overall), pd.Series(per_item, index=self.items, name='kmo')

    def describe_factors(self, threshold: Optional[float] = None) -> Dict[str, List[str]]:
        """Items loading at or above threshold on each factor, strongest first"""
        self._check_fitted()
        threshold = self.config['loading_threshold'] if threshold is None else threshold
        described = {}
        for factor in self.loadings_.columns:
            col = self.loadings_[factor]
            strong = col[col.abs() >= threshold]
            described[factor] = strong.abs().sort_values(ascending=False).index.tolist()
        return described

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """Factor scores for new observations"""
        self._check_fitted()
        missing = [col for col in self.items if col not in df.columns]
        if missing:
            raise ValueError(f"Missing columns: {missing}")
        z = self.scaler.transform(df[self.items].values)
        weights = np.linalg.solve(self.corr_, self.loadings_.values)
        return pd.DataFrame(z @ weights, index=df.index, columns=self.loadings_.columns)

    def create_scree_plot(self, save_path: str = None) -> plt.Figure:
        self._check_fitted()
        sns.set_style(VIZ_CONFIG['style'])
        fig, ax = plt.subplots(figsize=(10, 6))
        x = np.arange(1, len(self.eigenvalues_) + 1)
        sns.lineplot(x=x, y=self.eigenvalues_, marker='o', ax=ax, label='Eigenvalues')
        ax.axhline(y=1, color='r', linestyle='--', label='Kaiser Rule (Eigenvalue=1)')
        ax.set_xticks(x)
        ax.set_title('Scree Plot')
        ax.set_xlabel('Component')
        ax.set_ylabel('Eigenvalue')
        ax.legend()
        plt.tight_layout()

        if save_path:
            fig.savefig(save_path, dpi=VIZ_CONFIG['dpi'], bbox_inches='tight')
            log_success(f"Saved scree plot to {save_path}")

        return fig

    def create_perceptual_map(self, factors: Optional[Tuple[int, int]] = None,
                              show_scores: Optional[bool] = None,
                              save_path: str = None) -> plt.Figure:
        """
        Plot items (loading vectors) and observations (scores) on two factors.

        Args:
            factors: Zero-based indices of the two factors to plot
            show_scores: Overlay observation scores
            save_path: Optional path to save the figure

        Returns:
            matplotlib Figure
        """
        self._check_fitted()
        if self.n_factors_ < 2:
            raise ValueError("A perceptual map needs at least 2 factors")
        factors = self.config['map_factors'] if factors is None else factors
        show_scores = self.config['show_scores'] if show_scores is None else show_scores
        i, j = factors
        fx, fy = self.loadings_.columns[i], self.loadings_.columns[j]

        fig, ax = plt.subplots(figsize=(10, 8))

        if show_scores:
            # Scale scores into the loading circle so both layers share axes
            scores = self.scores_[[fx, fy]]
            scale = np.abs(scores.values).max() or 1.0
            ax.scatter(scores[fx] / scale, scores[fy] / scale, s=12, alpha=0.3,
                       color='grey', label='Observations (scaled scores)')

        for item, (x, y) in self.loadings_[[fx, fy]].iterrows():
            ax.arrow(0, 0, x, y, color='#2E86AB', head_width=0.02, length_includes_head=True)
            ax.text(x * 1.08, y * 1.08, item, color='#1E3A5F', fontsize=10,
                    ha='center', va='center', fontweight='bold')

        circle = plt.Circle((0, 0), 1, fill=False, linestyle=':', color='grey')
        ax.add_patch(circle)
        ax.axhline(0, color='black', linewidth=0.5)
        ax.axvline(0, color='black', linewidth=0.5)
        ax.set_xlim(-1.15, 1.15)
        ax.set_ylim(-1.15, 1.15)
        ax.set_aspect('equal')
        ax.set_xlabel(fx)
        ax.set_ylabel(fy)
        ax.set_title(f'Perceptual Map ({fx} vs {fy})')
        if show_scores:
            ax.legend(loc='lower right')
        plt.tight_layout()

        if save_path:
            fig.savefig(save_path, dpi=VIZ_CONFIG['dpi'], bbox_inches='tight')
            log_success(f"Saved perceptual map to {save_path}")

        return fig


def run_factor_pipeline(data_path: str, output_dir: str, models_dir: Optional[str] = None,
                        config: Optional[Dict] = None) -> FactorAnalysis:
    """
    Execute the factor analysis end to end
    """
    log_header("FACTOR ANALYSIS & PERCEPTUAL MAP")

    try:
        df = load_csv(data_path)
        fa = FactorAnalysis(config).fit(df)

        log_step("Diagnostics")
        print(fa.eigenvalue_table().round(4).to_string())
        chi2, dof, p_value = fa.bartlett_sphericity()
        log_info(f"Bartlett's test: χ² = {chi2:.2f}, df = {dof}, p = {p_value:.4g}")
        overall_kmo, _ = fa.kmo()
        log_info(f"KMO: {overall_kmo:.3f}")
        if overall_kmo < 0.5:
            log_warning("KMO below 0.5: items may be unsuitable for factor analysis")

        print(fa.loadings_.round(3).to_string())
        print(fa.communalities().round(3).to_string())
        for factor, items in fa.describe_factors().items():
            log_info(f"  └─ {factor}: {', '.join(items) or '(no strong loadings)'}")

        os.makedirs(output_dir, exist_ok=True)
        fa.loadings_.to_csv(os.path.join(output_dir, 'factor_loadings.csv'))
        fa.scores_.to_csv(os.path.join(output_dir, 'factor_scores.csv'))
        fa.create_scree_plot(os.path.join(output_dir, 'scree_plot.png'))
        if fa.n_factors_ >= 2:
            fa.create_perceptual_map(save_path=os.path.join(output_dir, 'perceptual_map.png'))
        else:
            log_warning("Only one factor retained; skipping perceptual map")
        plt.close('all')

        if models_dir:
            os.makedirs(models_dir, exist_ok=True)
            joblib.dump(fa, os.path.join(models_dir, 'factor_analysis.pkl'))
            log_success("Saved factor_analysis.pkl")

        log_success("FACTOR ANALYSIS COMPLETE")
        return fa

    except Exception as e:
        log_error(
            "FACTOR PIPELINE FAILED",
            root_cause=str(e),
            location="factor_analysis.run_factor_pipeline()"
        )
        raise


if __name__ == "__main__":
    run_factor_pipeline(os.path.join(DATA_DIR, FACTOR_DATA_FILE), OUTPUT_DIR, MODELS_DIR)
