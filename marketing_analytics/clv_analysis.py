"""
CLV Analysis Module
===================
Customer lifetime value on top of the fitted churn model.

CLV(m, c, γ) = m / (1 − γ(1 − c))

m: per-period margin, c: per-period churn probability, γ: discount factor.
The price multiplier that maximizes total CLV is found with L-BFGS-B.
"""

from typing import Dict, Iterable, Sequence

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from scipy.optimize import minimize

from .config import VIZ_CONFIG
from .logs import log_info, log_success, log_warning

QUARTILE_LABELS = ['Low', 'Medium', 'High', 'Premium']


def clv(margin, churn_prob, discount):
    """
    Customer lifetime value for a constant retention rate.

    Works element-wise on scalars, numpy arrays and pandas Series.

    Args:
        margin: Per-period margin m
        churn_prob: Per-period churn probability c, in [0, 1]
        discount: Per-period discount factor γ, in (0, 1]

    Returns:
        m / (1 − γ(1 − c))
    """
    c = np.asarray(churn_prob, dtype=float)
    g = np.asarray(discount, dtype=float)
    if np.any((c < 0) | (c > 1)) or np.any(np.isnan(c)):
        raise ValueError("churn_prob must lie in [0, 1]")
    if np.any((g <= 0) | (g > 1)) or np.any(np.isnan(g)):
        raise ValueError("discount must lie in (0, 1]")

    denominator = 1 - g * (1 - c)
    if np.any(denominator <= 0):
        raise ValueError("CLV is unbounded when discount = 1 and churn_prob = 0")

    if isinstance(margin, pd.Series):
        return margin / denominator
    if isinstance(churn_prob, pd.Series):
        return pd.Series(np.asarray(margin, dtype=float) / denominator, index=churn_prob.index)
    return np.asarray(margin, dtype=float) / denominator


def customer_clv(model, df: pd.DataFrame, price_column: str,
                 margin_rate: float = 1.0, discount: float = 0.99) -> pd.DataFrame:
    """
    Score every customer with churn probability, margin and CLV

    Args:
        model: Fitted ChurnModel
        df: Customer DataFrame
        price_column: Column holding the per-period price
        margin_rate: Share of price kept as margin
        discount: Per-period discount factor

    Returns:
        Copy of df with churn_prob, margin and CLV columns
    """
    out = df.copy()
    out['churn_prob'] = model.predict_proba(df)
    out['margin'] = out[price_column] * margin_rate
    out['CLV'] = clv(out['margin'], out['churn_prob'], discount)

    log_success("CLV calculated for all customers")
    log_info(f"  └─ CLV Range: ${out['CLV'].min():.2f} to ${out['CLV'].max():.2f}")
    log_info(f"  └─ CLV Mean: ${out['CLV'].mean():.2f}")
    log_info(f"  └─ Total CLV: ${out['CLV'].sum():,.2f}")
    return out


def expected_profit(multiplier: float, model, df: pd.DataFrame, price_column: str,
                    margin_rate: float = 1.0, discount: float = 0.99) -> float:
    """Total CLV when every price is scaled by multiplier"""
    multiplier = float(np.asarray(multiplier, dtype=float).ravel()[0])
    scaled = df.copy()
    scaled[price_column] = df[price_column] * multiplier
    churn = model.predict_proba(scaled)
    margin = scaled[price_column] * margin_rate
    return float(np.sum(clv(margin, churn, discount)))


def optimize_price_multiplier(model, df: pd.DataFrame, price_column: str,
                              margin_rate: float = 1.0, discount: float = 0.99,
                              bounds: Sequence[float] = (0.5, 2.0), x0: float = 1.0) -> Dict:
    """
    Find the price multiplier that maximizes total CLV.

    Returns:
        Dictionary with optimal_multiplier, optimal_profit, baseline_profit,
        uplift_pct, converged and message
    """
    low, high = bounds
    if not 0 < low < high:
        raise ValueError(f"bounds must satisfy 0 < low < high, got {bounds}")
    if not low <= x0 <= high:
        raise ValueError(f"x0={x0} lies outside bounds {bounds}")

    baseline = expected_profit(1.0, model, df, price_column, margin_rate, discount)
    scale = abs(baseline) if baseline else 1.0

    def objective(x):
        return -expected_profit(x[0], model, df, price_column, margin_rate, discount) / scale

    log_info(f"Optimizing price multiplier over [{low}, {high}] with L-BFGS-B...")
    result = minimize(objective, x0=np.array([x0]), method='L-BFGS-B', bounds=[(low, high)])

    optimal = float(result.x[0])
    optimal_profit = expected_profit(optimal, model, df, price_column, margin_rate, discount)
    if not result.success:
        log_warning(f"Optimizer did not converge: {result.message}")

    uplift = (optimal_profit - baseline) / baseline * 100 if baseline else float('nan')
    log_success(f"Optimal price multiplier: {optimal:.3f}")
    log_info(f"  └─ Baseline total CLV: ${baseline:,.2f}")
    log_info(f"  └─ Optimal total CLV: ${optimal_profit:,.2f} ({uplift:+.2f}%)")

    return {
        'optimal_multiplier': optimal,
        'optimal_profit': optimal_profit,
        'baseline_profit': baseline,
        'uplift_pct': uplift,
        'converged': bool(result.success),
        'message': str(result.message),
    }


def profit_curve(model, df: pd.DataFrame, multipliers: Iterable[float], price_column: str,
                 margin_rate: float = 1.0, discount: float = 0.99) -> pd.DataFrame:
    """Total CLV and mean churn probability over a grid of multipliers"""
    rows = []
    for k in multipliers:
        scaled = df.copy()
        scaled[price_column] = df[price_column] * k
        churn = model.predict_proba(scaled)
        profit = float(np.sum(clv(scaled[price_column] * margin_rate, churn, discount)))
        rows.append({'multiplier': float(k), 'profit': profit, 'mean_churn_prob': float(churn.mean())})
    return pd.DataFrame(rows)


def add_clv_quartiles(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df['CLV_quartile'] = pd.qcut(df['CLV'], q=4, labels=QUARTILE_LABELS)
    return df


def analyze_clv_by_churn(df: pd.DataFrame, target: str = 'Churn') -> pd.DataFrame:
    """
    Model-based CLV and predicted churn for observed churners vs stayers

    Args:
        df: Output of customer_clv() with the observed target

    Returns:
        Summary DataFrame indexed by 'Not Churned' / 'Churned'
    """
    groups = df.groupby(target)
    summary = pd.DataFrame({
        'Customers': groups.size(),
        'Mean CLV': groups['CLV'].mean(),
        'Median CLV': groups['CLV'].median(),
        'Total CLV': groups['CLV'].sum(),
        'Mean Predicted Churn': groups['churn_prob'].mean(),
    }).round(3)
    summary.index = summary.index.map({0: 'Not Churned', 1: 'Churned'})
    return summary


def analyze_churn_by_quartile(df: pd.DataFrame, target: str = 'Churn') -> pd.DataFrame:
    """
    Analyze churn rate by CLV quartile

    Args:
        df: DataFrame with CLV_quartile and churn columns

    Returns:
        Summary DataFrame
    """
    groups = df.groupby('CLV_quartile', observed=False)
    summary = pd.DataFrame({
        'Total Count': groups.size(),
        'Churned Count': groups[target].sum(),
        'Churn Rate': groups[target].mean() * 100,
        'Avg CLV': groups['CLV'].mean(),
        'CLV Range': groups['CLV'].agg(lambda s: f"{s.min():,.0f} - {s.max():,.0f}"),
    }).reindex(QUARTILE_LABELS)
    return summary.round({'Churn Rate': 1, 'Avg CLV': 2})


def calculate_revenue_at_risk(df: pd.DataFrame, target: str = 'Churn') -> Dict:
    """
    Share of CLV held by churners, observed and expected.

    The expected figure weights each customer's CLV by their predicted
    churn probability when a churn_prob column is present.
    """
    total = df['CLV'].sum()
    churned_clv = df.loc[df[target] == 1, 'CLV'].sum()
    metrics = {
        'total_clv': total,
        'churned_clv': churned_clv,
        'retained_clv': total - churned_clv,
        'revenue_at_risk_pct': churned_clv / total * 100,
    }
    if 'churn_prob' in df.columns:
        expected = (df['CLV'] * df['churn_prob']).sum()
        metrics['expected_clv_at_risk'] = expected
        metrics['expected_at_risk_pct'] = expected / total * 100
    return metrics


def create_clv_distribution_plot(df: pd.DataFrame, target: str = None,
                                 save_path: str = None) -> plt.Figure:
    """
    Histogram of model-based CLV, split by churn status when target is given

    Returns:
        matplotlib Figure
    """
    fig, ax = plt.subplots(figsize=(10, 6))
    bins = np.histogram_bin_edges(df['CLV'], bins=30)

    if target is None:
        ax.hist(df['CLV'], bins=bins, color='steelblue', edgecolor='white', alpha=0.7)
    else:
        for value, label, color in [(0, 'Not Churned', 'steelblue'), (1, 'Churned', '#dc3545')]:
            ax.hist(df.loc[df[target] == value, 'CLV'], bins=bins, color=color,
                    edgecolor='white', alpha=0.6, label=label)
    ax.axvline(df['CLV'].median(), color='green', linestyle='--',
               label=f'Median: ${df["CLV"].median():,.0f}')

    ax.set_xlabel('Customer Lifetime Value ($)')
    ax.set_ylabel('Number of Customers')
    ax.set_title('Model-Based Customer Lifetime Value')
    ax.legend()
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=VIZ_CONFIG['dpi'], bbox_inches='tight')
        log_success(f"Saved CLV distribution plot to {save_path}")

    return fig


def create_churn_by_quartile_plot(df: pd.DataFrame, target: str = 'Churn',
                                  save_path: str = None) -> plt.Figure:
    """Bar chart of observed churn rate per CLV quartile"""
    rates = df.groupby('CLV_quartile', observed=False)[target].mean().reindex(QUARTILE_LABELS) * 100

    fig, ax = plt.subplots(figsize=(10, 6))
    bars = ax.bar(QUARTILE_LABELS, rates.fillna(0).values,
                  color=['#28a745', '#ffc107', '#dc3545', '#17a2b8'], edgecolor='white', linewidth=2)
    for bar, val in zip(bars, rates.values):
        if not np.isnan(val):
            ax.text(bar.get_x() + bar.get_width() / 2, bar.get_height() + 1,
                    f'{val:.1f}%', ha='center', va='bottom', fontsize=12, fontweight='bold')

    ax.set_xlabel('CLV Quartile')
    ax.set_ylabel('Churn Rate (%)')
    ax.set_title('Churn Rate by Model-Based CLV Quartile')
    ax.set_ylim(0, np.nanmax(rates.values) + 10)
    ax.grid(axis='y', alpha=0.3)
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=VIZ_CONFIG['dpi'], bbox_inches='tight')
        log_success(f"Saved churn by quartile plot to {save_path}")

    return fig


def create_profit_curve_plot(curve: pd.DataFrame, optimum: Dict = None,
                             save_path: str = None) -> plt.Figure:
    """Total CLV against the price multiplier, with churn on a second axis"""
    fig, ax = plt.subplots(figsize=(10, 6))
    ax.plot(curve['multiplier'], curve['profit'], color='steelblue', lw=2, label='Total CLV')
    ax.set_xlabel('Price Multiplier')
    ax.set_ylabel('Total CLV ($)')

    ax2 = ax.twinx()
    ax2.plot(curve['multiplier'], curve['mean_churn_prob'], color='#dc3545',
             linestyle=':', label='Mean churn probability')
    ax2.set_ylabel('Mean Churn Probability')

    if optimum is not None:
        ax.axvline(optimum['optimal_multiplier'], color='green', linestyle='--',
                   label=f"Optimum: {optimum['optimal_multiplier']:.3f}")

    lines = ax.get_legend_handles_labels()
    lines2 = ax2.get_legend_handles_labels()
    ax.legend(lines[0] + lines2[0], lines[1] + lines2[1], loc='lower center')
    ax.set_title('Total Customer Lifetime Value by Price Multiplier')
    ax.grid(alpha=0.3)
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=VIZ_CONFIG['dpi'], bbox_inches='tight')
        log_success(f"Saved profit curve plot to {save_path}")

    return fig


def generate_business_insights(df: pd.DataFrame, optimum: Dict = None,
                               target: str = 'Churn') -> list:
    """Short insight strings for the dashboard"""
    churn_by_quartile = df.groupby('CLV_quartile', observed=False)[target].mean()
    churn_by_quartile = churn_by_quartile.reindex(QUARTILE_LABELS)

    insights = [
        f"{churn_by_quartile.idxmax()} CLV customers churn the most "
        f"({churn_by_quartile.max() * 100:.1f}%).",
        f"{churn_by_quartile.idxmin()} CLV customers churn the least "
        f"({churn_by_quartile.min() * 100:.1f}%).",
    ]

    revenue = calculate_revenue_at_risk(df, target)
    insights.append(
        f"{revenue['revenue_at_risk_pct']:.1f}% of total CLV "
        f"(${revenue['churned_clv']:,.0f}) sits with customers who churned."
    )
    if 'expected_at_risk_pct' in revenue:
        insights.append(
            f"The model expects {revenue['expected_at_risk_pct']:.1f}% of total CLV "
            f"(${revenue['expected_clv_at_risk']:,.0f}) to be lost to churn."
        )

    if optimum is not None:
        insights.append(
            f"Scaling prices by {optimum['optimal_multiplier']:.3f} changes total CLV "
            f"by {optimum['uplift_pct']:+.1f}%."
        )
    return insights
