import os

import joblib
import numpy as np
import pandas as pd
import pytest

from marketing_analytics.churn_model import (
    ChurnModel, create_coefficient_plot, create_confusion_matrix_plot,
    run_churn_pipeline, significance_stars
)
from marketing_analytics.predict import HIGH_RISK_PROFILE, LOW_RISK_PROFILE
from conftest import CHURN_TRUE


def test_build_formula_quotes_awkward_names():
    model = ChurnModel({'numeric_features': ['tenure', 'Monthly Charges'],
                        'categorical_features': {'Contract': None}})
    assert model.build_formula() == "Churn ~ tenure + Q('Monthly Charges') + Contract"


def test_build_formula_needs_features():
    with pytest.raises(ValueError):
        ChurnModel({'numeric_features': [], 'categorical_features': {}}).build_formula()


def test_unfitted_model_raises():
    with pytest.raises(ValueError, match="not trained"):
        ChurnModel().coefficient_table()


def test_fit_recovers_known_coefficients(churn_model):
    params = churn_model.params
    assert params['tenure'] == pytest.approx(CHURN_TRUE['tenure'], abs=0.01)
    assert params['MonthlyCharges'] == pytest.approx(CHURN_TRUE['MonthlyCharges'], abs=0.01)
    assert params['Contract[T.Two year]'] < params['Contract[T.One year]'] < 0
    assert params['InternetService[T.Fiber optic]'] > 0


def test_non_convergence_is_reported(churn_prepared, capsys):
    model = ChurnModel({'maxiter': 1}).fit(churn_prepared.head(500))
    out = capsys.readouterr().out
    assert not model.result.converged
    assert "[WARNING]" in out
    assert "did not converge" in out


def test_converged_fit_does_not_warn(churn_prepared, capsys):
    model = ChurnModel().fit(churn_prepared.head(500))
    assert model.result.converged
    assert "did not converge" not in capsys.readouterr().out


def test_reference_levels_absent_from_params(churn_model):
    names = list(churn_model.params.index)
    assert 'Contract[T.Month-to-month]' not in names
    assert 'InternetService[T.DSL]' not in names
    assert 'PaymentMethod[T.Mailed check]' not in names
    assert 'PaperlessBilling[T.Yes]' in names


def test_coefficient_table(churn_model):
    table = churn_model.coefficient_table()
    for col in ['coef', 'std_err', 'z', 'p_value', 'ci_lower', 'ci_upper', 'odds_ratio', 'sig']:
        assert col in table.columns
    np.testing.assert_allclose(table['odds_ratio'], np.exp(table['coef']))
    assert (table['ci_lower'] < table['coef']).all()
    assert (table['coef'] < table['ci_upper']).all()
    assert table.loc['tenure', 'sig'] == '***'


@pytest.mark.parametrize("p, stars", [(0.0001, "***"), (0.005, "**"), (0.03, "*"), (0.2, "")])
def test_significance_stars(p, stars):
    assert significance_stars(p) == stars


def test_pseudo_r2_in_unit_interval(churn_model):
    assert 0 < churn_model.pseudo_r2 < 1


def test_predict_proba_on_raw_profiles(churn_model):
    profiles = pd.DataFrame([HIGH_RISK_PROFILE, LOW_RISK_PROFILE])
    proba = churn_model.predict_proba(profiles)
    assert proba.name == 'churn_prob'
    assert ((proba > 0) & (proba < 1)).all()
    assert proba.iloc[0] > proba.iloc[1]


def test_predict_proba_validation(churn_model):
    with pytest.raises(ValueError, match="Missing columns"):
        churn_model.predict_proba(pd.DataFrame([{'tenure': 3}]))

    bad = dict(HIGH_RISK_PROFILE, Contract='Weekly')
    with pytest.raises(ValueError, match="Unknown levels"):
        churn_model.predict_proba(pd.DataFrame([bad]))


@pytest.mark.parametrize("threshold", [0.0, 1.0, 1.5])
def test_classify_threshold_bounds(churn_model, churn_prepared, threshold):
    with pytest.raises(ValueError):
        churn_model.classify(churn_prepared, threshold)


def test_evaluate_confusion_counts(churn_model, churn_prepared):
    metrics = churn_model.evaluate(churn_prepared, 0.5)
    total = metrics['tn'] + metrics['fp'] + metrics['fn'] + metrics['tp']
    assert total == len(churn_prepared)
    assert metrics['tp'] + metrics['fn'] == churn_prepared['Churn'].sum()
    assert metrics['auc_roc'] > 0.7
    assert metrics['accuracy'] == pytest.approx((metrics['tp'] + metrics['tn']) / total)

    predicted = churn_model.classify(churn_prepared, 0.5)
    assert predicted.sum() == metrics['tp'] + metrics['fp']


def test_lower_threshold_raises_recall(churn_model, churn_prepared):
    table = churn_model.threshold_table(churn_prepared, [0.2, 0.5, 0.8])
    assert list(table.index) == [0.2, 0.5, 0.8]
    assert table['recall'].is_monotonic_decreasing


def test_evaluate_single_class_auc_is_nan(churn_model, churn_prepared):
    stayers = churn_prepared[churn_prepared['Churn'] == 0]
    assert np.isnan(churn_model.evaluate(stayers)['auc_roc'])


def test_costlier_false_negatives_lower_the_threshold(churn_model, churn_prepared):
    equal = churn_model.best_threshold(churn_prepared, cost_fn=1, cost_fp=1)
    skewed = churn_model.best_threshold(churn_prepared, cost_fn=10, cost_fp=1)
    assert skewed['threshold'] <= equal['threshold']
    assert skewed['cost'] == skewed['fn'] * 10 + skewed['fp']


def test_save_and_load(churn_model, churn_prepared, tmp_path):
    path = str(tmp_path / "models" / "churn_model.pkl")
    churn_model.save(path)
    loaded = ChurnModel.load(path)
    pd.testing.assert_series_equal(loaded.predict_proba(churn_prepared.head(20)),
                                   churn_model.predict_proba(churn_prepared.head(20)))


def test_plots_are_written(churn_model, churn_prepared, tmp_path):
    cm_path = tmp_path / "cm.png"
    or_path = tmp_path / "or.png"
    create_confusion_matrix_plot(churn_model.evaluate(churn_prepared), str(cm_path))
    fig = create_coefficient_plot(churn_model.coefficient_table(), str(or_path))
    assert cm_path.exists() and or_path.exists()
    assert 'Intercept' not in [t.get_text() for t in fig.axes[0].get_yticklabels()]


def test_run_churn_pipeline(churn_csv, tmp_path):
    out_dir, models_dir = tmp_path / "outputs", tmp_path / "models"
    result = run_churn_pipeline(churn_csv, str(out_dir), str(models_dir))

    for name in ['churn_coefficients.csv', 'churn_confusion_matrix.png', 'churn_odds_ratios.png',
                 'profit_curve.csv', 'profit_curve.png', 'clv_distribution.png',
                 'churn_by_clv_quartile.png']:
        assert (out_dir / name).exists(), name
    assert os.path.exists(models_dir / "churn_model.pkl")

    settings = joblib.load(models_dir / "clv_settings.pkl")
    assert settings['optimum'] == result['optimum']
    assert 0.5 <= result['optimum']['optimal_multiplier'] <= 2.0
    assert {'churn_prob', 'margin', 'CLV', 'CLV_quartile'} <= set(result['customers'].columns)
