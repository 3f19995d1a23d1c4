"""
Marketing Analytics Dashboard
=============================
A single-page Streamlit app with three tabs:
1. Churn & CLV - Customer churn probability, lifetime value and price optimum
2. Perceptual Map - Factor loadings, scree plot and map
3. Conjoint Simulator - Partworths, willingness to pay and market shares
"""

import os

import joblib
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import streamlit as st

from marketing_analytics.churn_model import create_coefficient_plot
from marketing_analytics.config import MODELS_DIR
from marketing_analytics.conjoint import create_partworth_plot, create_price_curve_plot
from marketing_analytics.predict import ChurnPredictor

# ============================================================================
# Page Configuration
# ============================================================================
st.set_page_config(
    page_title="Marketing Analytics",
    page_icon="📊",
    layout="wide",
    initial_sidebar_state="collapsed"
)

st.markdown("""
<style>
    .main-header {
        font-size: 2.5rem;
        font-weight: bold;
        color: #1E3A5F;
        text-align: center;
        margin-bottom: 0.5rem;
    }
    .sub-header {
        font-size: 1.1rem;
        color: #666;
        text-align: center;
        margin-bottom: 2rem;
    }
    .insight-box {
        background-color: #f8f9fa;
        border-left: 4px solid #1E3A5F;
        padding: 1rem;
        border-radius: 5px;
        margin: 1rem 0;
    }
</style>
""", unsafe_allow_html=True)

RISK_ICONS = {'Low': "🟢", 'Medium': "🟡", 'High': "🔴"}


# ============================================================================
# Cached Loading Functions
# ============================================================================
@st.cache_resource
def load_churn_predictor():
    return ChurnPredictor(MODELS_DIR)


@st.cache_resource
def load_artifact(name: str):
    path = os.path.join(MODELS_DIR, name)
    if not os.path.exists(path):
        return None
    return joblib.load(path)


# ============================================================================
# Tab 1: Churn & CLV
# ============================================================================
def render_churn_tab():
    st.header("🔮 Churn Probability & Customer Lifetime Value")

    try:
        predictor = load_churn_predictor()
    except FileNotFoundError:
        st.info("Run `python -m marketing_analytics.churn_model` to train the churn model.")
        return

    model = predictor.model
    settings = predictor.clv_settings

    inputs = {}
    col1, col2 = st.columns(2)
    with col1:
        st.subheader("📈 Numeric Features")
        for feature in model.config['numeric_features']:
            inputs[feature] = st.number_input(feature, value=0.0 if feature != settings['price_column'] else 65.0)
    with col2:
        st.subheader("🏷️ Categorical Features")
        for feature, categories in model.levels.items():
            inputs[feature] = st.selectbox(feature, categories)

    threshold = st.slider("Classification Threshold", 0.05, 0.95, float(model.config['threshold']))

    if st.button("🔍 Predict Churn Risk", type="primary", use_container_width=True):
        result = predictor.predict(inputs, threshold=threshold)
        st.divider()
        res1, res2, res3 = st.columns(3)
        with res1:
            st.metric("Churn Probability", f"{result['churn_probability']*100:.1f}%")
        with res2:
            st.metric("Risk Level", f"{RISK_ICONS[result['risk_level']]} {result['risk_level']}")
        with res3:
            st.metric("Estimated CLV", f"${result['clv']:,.2f}")

        st.markdown(f"""
        <div class="insight-box">
        <b>Formula:</b> CLV = m / (1 − γ(1 − c))<br>
        <b>Calculation:</b> ${result['margin']:.2f} / (1 − {settings['discount']} ×
        (1 − {result['churn_probability']:.3f})) = <b>${result['clv']:,.2f}</b>
        </div>
        """, unsafe_allow_html=True)

    st.divider()
    st.subheader("🎯 Churn Drivers (Odds Ratios)")
    fig = create_coefficient_plot(model.coefficient_table())
    st.pyplot(fig)
    plt.close(fig)

    optimum = settings.get('optimum')
    if optimum:
        st.subheader("💰 Price Optimization")
        c1, c2, c3 = st.columns(3)
        c1.metric("Optimal Price Multiplier", f"{optimum['optimal_multiplier']:.3f}")
        c2.metric("Baseline Total CLV", f"${optimum['baseline_profit']:,.0f}")
        c3.metric("Optimal Total CLV", f"${optimum['optimal_profit']:,.0f}",
                  delta=f"{optimum['uplift_pct']:+.2f}%")


# ============================================================================
# Tab 2: Perceptual Map
# ============================================================================
def render_factor_tab():
    st.header("🗺️ Factor Analysis & Perceptual Map")

    fa = load_artifact('factor_analysis.pkl')
    if fa is None:
        st.info("Run `python -m marketing_analytics.factor_analysis` to fit the factor model.")
        return

    col1, col2 = st.columns(2)
    with col1:
        st.subheader("Eigenvalues")
        st.dataframe(fa.eigenvalue_table().round(3), use_container_width=True)
        fig = fa.create_scree_plot()
        st.pyplot(fig)
        plt.close(fig)
    with col2:
        st.subheader("Rotated Loadings")
        st.dataframe(fa.loadings_.round(3).style.background_gradient(cmap='RdBu', vmin=-1, vmax=1),
                     use_container_width=True)
        st.dataframe(fa.communalities().round(3), use_container_width=True)

    if fa.n_factors_ >= 2:
        st.subheader("Perceptual Map")
        names = list(fa.loadings_.columns)
        c1, c2, c3 = st.columns(3)
        fx = c1.selectbox("Horizontal factor", names, index=0)
        fy = c2.selectbox("Vertical factor", names, index=1)
        show_scores = c3.checkbox("Show observations", value=True)
        if fx == fy:
            st.warning("Pick two different factors.")
        else:
            fig = fa.create_perceptual_map(factors=(names.index(fx), names.index(fy)),
                                           show_scores=show_scores)
            st.pyplot(fig)
            plt.close(fig)


# ============================================================================
# Tab 3: Conjoint Simulator
# ============================================================================
def render_conjoint_tab():
    st.header("🛒 Conjoint Market Simulator")

    ca = load_artifact('conjoint_model.pkl')
    if ca is None:
        st.info("Run `python -m marketing_analytics.conjoint` to fit the choice model.")
        return

    col1, col2 = st.columns(2)
    with col1:
        st.subheader("Willingness to Pay")
        st.dataframe(ca.willingness_to_pay().round(2), use_container_width=True, hide_index=True)
    with col2:
        st.subheader("Attribute Importance")
        st.dataframe(ca.attribute_importance().round(2), use_container_width=True)

    fig = create_partworth_plot(ca.partworths())
    st.pyplot(fig)
    plt.close(fig)

    st.divider()
    st.subheader("Define Competing Products")
    n_products = st.number_input("Number of products", min_value=2, max_value=6, value=3)
    low, high = ca.price_range_

    products = []
    cols = st.columns(int(n_products))
    for i, col in enumerate(cols):
        with col:
            st.markdown(f"**Product {i + 1}**")
            profile = {}
            for attr in ca.attributes:
                levels = ca.levels[attr]
                profile[attr] = st.selectbox(attr, levels, index=i % len(levels), key=f"{attr}_{i}")
            profile[ca.price_column] = st.number_input(
                ca.price_column, min_value=0.0, value=float(low + (high - low) * i / max(1, n_products - 1)),
                key=f"price_{i}"
            )
            products.append(profile)

    market = pd.DataFrame(products, index=[f"Product {i + 1}" for i in range(len(products))])
    shares = ca.simulate_market_shares(market)

    st.subheader("Simulated Market Shares")
    fig, ax = plt.subplots(figsize=(10, 5))
    bars = ax.bar(shares.index, shares['share'] * 100, color='#2E86AB', edgecolor='white')
    for bar, val in zip(bars, shares['share'] * 100):
        ax.text(bar.get_x() + bar.get_width() / 2, bar.get_height() + 1,
                f'{val:.1f}%', ha='center', va='bottom', fontsize=12, fontweight='bold')
    ax.set_ylabel('Share of Preference (%)')
    ax.set_ylim(0, 110)
    ax.grid(axis='y', alpha=0.3)
    plt.tight_layout()
    st.pyplot(fig)
    plt.close(fig)

    target = st.selectbox("Price sensitivity for", list(market.index))
    curve = ca.simulate_price_curve(market, target, np.linspace(low, high, 15))
    fig = create_price_curve_plot(curve, label=target)
    st.pyplot(fig)
    plt.close(fig)


# ============================================================================
# Main App
# ============================================================================
def main():
    """Main application entry point"""
    st.markdown('<p class="main-header">📊 Marketing Analytics</p>', unsafe_allow_html=True)
    st.markdown('<p class="sub-header">Churn & lifetime value, perceptual maps and conjoint simulation</p>',
                unsafe_allow_html=True)

    tab1, tab2, tab3 = st.tabs(["🔮 Churn & CLV", "🗺️ Perceptual Map", "🛒 Conjoint Simulator"])

    with tab1:
        render_churn_tab()

    with tab2:
        render_factor_tab()

    with tab3:
        render_conjoint_tab()


if __name__ == "__main__":
    main()
