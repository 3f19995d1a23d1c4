import numpy as np
import pandas as pd
import pytest

from marketing_analytics.data_prep import (
    ChurnDataPreparation, apply_levels, coerce_numeric, encode_binary_target,
    load_csv, set_reference_levels, sorted_levels
)


def test_load_csv_missing_file_logs_root_cause(tmp_path, capsys):
    with pytest.raises(FileNotFoundError):
        load_csv(str(tmp_path / "nope.csv"))
    out = capsys.readouterr().out
    assert "[ERROR]" in out
    assert "Root Cause" in out


def test_load_csv_reports_missing_columns(tmp_path):
    path = tmp_path / "small.csv"
    pd.DataFrame({'a': [1, 2], 'b': [3, 4]}).to_csv(path, index=False)

    df = load_csv(str(path), required_columns=['a'])
    assert list(df.columns) == ['a', 'b']

    with pytest.raises(ValueError, match="Missing columns.*'c'"):
        load_csv(str(path), required_columns=['a', 'c'])


def test_coerce_numeric_turns_blanks_into_nan():
    df = pd.DataFrame({'x': ['1.5', ' ', '3']})
    out = coerce_numeric(df, ['x'])
    assert out['x'].isnull().sum() == 1
    assert out['x'].dropna().tolist() == [1.5, 3.0]


def test_encode_binary_target_yes_no():
    df = encode_binary_target(pd.DataFrame({'Churn': ['Yes', 'No', 'No']}), 'Churn')
    assert df['Churn'].tolist() == [1, 0, 0]


def test_encode_binary_target_numeric_passthrough():
    df = encode_binary_target(pd.DataFrame({'Churn': [0, 1, 1]}), 'Churn')
    assert df['Churn'].tolist() == [0, 1, 1]


@pytest.mark.parametrize("values", [['Yes', 'Maybe'], [0, 2]])
def test_encode_binary_target_rejects_other_values(values):
    with pytest.raises(ValueError):
        encode_binary_target(pd.DataFrame({'Churn': values}), 'Churn')


def test_text_columns_read_from_csv_are_encoded(tmp_path):
    path = tmp_path / "labels.csv"
    pd.DataFrame({'Churn': ['Yes', 'No', 'Yes'],
                  'TotalCharges': ['10.5', ' ', '30']}).to_csv(path, index=False)
    df = load_csv(str(path))

    df = encode_binary_target(df, 'Churn')
    assert df['Churn'].tolist() == [1, 0, 1]

    df = coerce_numeric(df, ['TotalCharges'])
    assert df['TotalCharges'].isnull().tolist() == [False, True, False]
    assert df['TotalCharges'].dropna().tolist() == [10.5, 30.0]


def test_encode_binary_target_custom_labels():
    df = pd.DataFrame({'Status': ['Churned', 'Stayed', 'Stayed']})
    out = encode_binary_target(df, 'Status', positive='Churned', negative='Stayed')
    assert out['Status'].tolist() == [1, 0, 0]

    with pytest.raises(ValueError, match="unexpected labels.*Maybe"):
        encode_binary_target(pd.DataFrame({'Status': ['Churned', 'Maybe']}), 'Status',
                             positive='Churned', negative='Stayed')

    # The default negative label is not accepted once a custom one is given
    with pytest.raises(ValueError, match="unexpected labels"):
        encode_binary_target(pd.DataFrame({'Status': ['Churned', 'No']}), 'Status',
                             positive='Churned', negative='Stayed')


def test_sorted_levels_orders_numbers_numerically():
    assert sorted_levels(pd.Series([10, 2, 2, 64])) == [2, 10, 64]


def test_set_reference_levels_puts_reference_first():
    df = pd.DataFrame({'Contract': ['Two year', 'Month-to-month', 'One year', 'Two year'],
                       'size': [10, 7, 12, 7]})
    df, levels = set_reference_levels(df, {'Contract': 'Two year', 'size': None})

    assert levels['Contract'] == ['Two year', 'Month-to-month', 'One year']
    assert levels['size'] == [7, 10, 12]
    assert list(df['Contract'].cat.categories) == levels['Contract']


def test_set_reference_levels_unknown_reference():
    df = pd.DataFrame({'Contract': ['One year', 'Two year']})
    with pytest.raises(ValueError, match="not found"):
        set_reference_levels(df, {'Contract': 'Monthly'})


def test_apply_levels_keeps_input_and_rejects_unseen_levels():
    levels = {'brand': ['Apple', 'Samsung']}
    df = pd.DataFrame({'brand': ['Samsung']})

    out = apply_levels(df, levels)
    assert list(out['brand'].cat.categories) == ['Apple', 'Samsung']
    assert not isinstance(df['brand'].dtype, pd.CategoricalDtype)

    with pytest.raises(ValueError, match="Unknown levels"):
        apply_levels(pd.DataFrame({'brand': ['Nokia']}), levels)


def test_churn_preparation_cleans_and_recodes(churn_raw, churn_prepared):
    df = churn_prepared

    assert 'customerID' not in df.columns
    assert len(df) == len(churn_raw)
    assert set(df['Churn'].unique()) <= {0, 1}
    assert df['Churn'].sum() == (churn_raw['Churn'] == 'Yes').sum()

    # Blank TotalCharges belong to tenure-0 customers and become 0
    assert df['TotalCharges'].isnull().sum() == 0
    assert (df.loc[df['tenure'] == 0, 'TotalCharges'] == 0).all()

    assert df['Contract'].cat.categories[0] == 'Month-to-month'
    assert df['InternetService'].cat.categories[0] == 'DSL'
    assert df['PaymentMethod'].cat.categories[0] == 'Mailed check'


def test_churn_preparation_drops_rows_missing_model_columns(churn_raw, tmp_path):
    raw = churn_raw.head(200).copy()
    raw['MonthlyCharges'] = raw['MonthlyCharges'].astype(object)
    raw.loc[[3, 7], 'MonthlyCharges'] = 'n/a'
    path = tmp_path / "churn.csv"
    raw.to_csv(path, index=False)

    prep = ChurnDataPreparation(str(path))
    df = prep.run()

    assert len(df) == 198
    assert np.issubdtype(df['MonthlyCharges'].dtype, np.number)
    assert set(prep.levels) == {'Contract', 'InternetService', 'PaymentMethod', 'PaperlessBilling'}


def test_churn_preparation_missing_column(churn_raw, tmp_path):
    path = tmp_path / "churn.csv"
    churn_raw.drop(columns=['Contract']).to_csv(path, index=False)
    with pytest.raises(ValueError, match="Contract"):
        ChurnDataPreparation(str(path)).run()


def test_churn_preparation_uses_configured_labels(churn_raw, tmp_path):
    raw = churn_raw.head(200).copy()
    raw['Churn'] = raw['Churn'].map({'Yes': 'Churned', 'No': 'Stayed'})
    path = tmp_path / "churn.csv"
    raw.to_csv(path, index=False)

    df = ChurnDataPreparation(str(path), {'positive_label': 'Churned',
                                          'negative_label': 'Stayed'}).run()
    assert df['Churn'].sum() == (raw['Churn'] == 'Churned').sum()

    with pytest.raises(ValueError, match="unexpected labels"):
        ChurnDataPreparation(str(path)).run()
