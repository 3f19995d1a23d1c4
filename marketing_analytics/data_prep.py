"""
Data Preparation Module
=======================
This module handles:
1. Loading CSV inputs with column validation
2. Numeric coercion and binary target encoding
3. Recoding categorical reference levels
4. Preparing the telco churn table for the binomial GLM
"""

import os
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd
from pandas.api.types import is_numeric_dtype

from .config import CHURN_CONFIG
from .logs import log_error, log_header, log_info, log_step, log_success, log_warning


def load_csv(path: str, required_columns: Optional[Iterable[str]] = None) -> pd.DataFrame:
    """
    Load a CSV file into a DataFrame

    Args:
        path: Path to the CSV file
        required_columns: Columns that must be present

    Returns:
        Loaded DataFrame
    """
    try:
        df = pd.read_csv(path)
    except FileNotFoundError:
        log_error(
            "Failed to load dataset",
            root_cause=f"File not found: {path}",
            location="data_prep.load_csv()"
        )
        raise

    log_success(f"Loaded {os.path.basename(path)}")
    log_info(f"  └─ Shape: {df.shape[0]} rows × {df.shape[1]} columns")
    n_numeric = len(df.select_dtypes(include=[np.number]).columns)
    log_info(f"  └─ Numeric: {n_numeric}, Other: {df.shape[1] - n_numeric}")

    if required_columns is not None:
        missing = [col for col in required_columns if col not in df.columns]
        if missing:
            log_error(
                "Dataset is missing required columns",
                root_cause=f"Missing: {missing}",
                location="data_prep.load_csv()"
            )
            raise ValueError(f"Missing columns: {missing}")

    return df


def coerce_numeric(df: pd.DataFrame, columns: Iterable[str]) -> pd.DataFrame:
    """Convert columns to numeric, turning unparseable values into NaN"""
    for col in columns:
        if not is_numeric_dtype(df[col]):
            before = df[col].isnull().sum()
            df[col] = pd.to_numeric(df[col], errors='coerce')
            coerced = df[col].isnull().sum() - before
            if coerced > 0:
                log_warning(f"{col}: {coerced} non-numeric values converted to NaN")
    return df


def encode_binary_target(df: pd.DataFrame, column: str, positive: str = 'Yes',
                         negative: str = 'No') -> pd.DataFrame:
    """
    Convert a text target to 1/0 (positive → 1, negative → 0).

    Numeric 0/1 targets pass through unchanged. Any other label raises.
    """
    values = df[column]
    if not is_numeric_dtype(values):
        unknown = set(values.dropna().unique()) - {positive, negative}
        if unknown:
            raise ValueError(f"{column} has unexpected labels: {sorted(unknown)}")
        df[column] = (values == positive).astype(int)
        log_success(f"{column} converted: {positive}→1, {negative}→0")
    else:
        unknown = set(values.dropna().unique()) - {0, 1}
        if unknown:
            raise ValueError(f"{column} must be binary, found: {sorted(unknown)}")
        df[column] = values.astype(int)

    rate = df[column].mean()
    log_info(f"  └─ Positive rate: {rate*100:.2f}% ({df[column].sum()} out of {len(df)})")
    return df


def sorted_levels(values: pd.Series) -> List:
    """Distinct non-null values, sorted naturally when comparable"""
    unique = values.dropna().unique().tolist()
    try:
        return sorted(unique)
    except TypeError:
        return sorted(unique, key=str)


def set_reference_levels(df: pd.DataFrame,
                         references: Dict[str, Optional[str]]) -> Tuple[pd.DataFrame, Dict[str, List]]:
    """
    Recode categorical columns so the reference level comes first.

    Each column becomes a pandas Categorical whose first category is the
    reference; the other levels follow in sorted order. A reference of None
    keeps the first sorted level.

    Args:
        df: Input DataFrame (modified in place)
        references: Mapping of column -> reference level

    Returns:
        Tuple of (DataFrame, {column: categories})
    """
    levels = {}
    for col, reference in references.items():
        observed = sorted_levels(df[col])
        if reference is None:
            reference = observed[0]
        elif reference not in observed:
            raise ValueError(
                f"Reference level {reference!r} not found in {col}; levels are {observed}"
            )
        categories = [reference] + [lvl for lvl in observed if lvl != reference]
        df[col] = pd.Categorical(df[col], categories=categories)
        levels[col] = categories
        log_info(f"  └─ {col}: reference = {reference!r} ({len(categories)} levels)")
    return df, levels


def apply_levels(df: pd.DataFrame, levels: Dict[str, List]) -> pd.DataFrame:
    """Re-apply stored categories to new data"""
    df = df.copy()
    for col, categories in levels.items():
        unknown = set(df[col].dropna().unique()) - set(categories)
        if unknown:
            raise ValueError(f"Unknown levels for {col}: {sorted(unknown, key=str)}")
        df[col] = pd.Categorical(df[col], categories=categories)
    return df


class ChurnDataPreparation:
    """
    Prepares the telco customer table for the churn GLM.
    """

    def __init__(self, raw_data_path: str, config: Optional[Dict] = None):
        self.raw_data_path = raw_data_path
        self.config = {**CHURN_CONFIG, **(config or {})}
        self.df = None
        self.levels = {}

        log_info("ChurnDataPreparation initialized")
        log_info(f"  └─ Raw data path: {raw_data_path}")

    @property
    def model_columns(self) -> List[str]:
        return ([self.config['target']]
                + list(self.config['numeric_features'])
                + list(self.config['categorical_features']))

    def load_data(self) -> pd.DataFrame:
        log_step("STEP 1.1: Loading Customer Dataset")
        self.df = load_csv(self.raw_data_path, required_columns=self.model_columns)
        return self.df

    def clean_data(self) -> pd.DataFrame:
        """
        STEP 1.2: Clean and preprocess the dataset

        Key operations:
        - Handle TotalCharges missing/invalid values
        - Coerce numeric features
        - Drop the identifier and rows missing model columns
        - Convert Churn to binary
        """
        log_step("STEP 1.2: Data Cleaning & Type Conversion")

        id_column = self.config.get('id_column')
        if id_column and id_column in self.df.columns:
            self.df = self.df.drop(id_column, axis=1)
            log_info(f"Removed {id_column} (identifier, not a feature)")

        # TotalCharges is sometimes stored as text with blanks for new customers
        if 'TotalCharges' in self.df.columns and not is_numeric_dtype(self.df['TotalCharges']):
            self.df = coerce_numeric(self.df, ['TotalCharges'])
            mask_missing = self.df['TotalCharges'].isnull()
            if mask_missing.any() and {'tenure', 'MonthlyCharges'} <= set(self.df.columns):
                mask_new = self.df['tenure'] == 0
                self.df.loc[mask_missing & mask_new, 'TotalCharges'] = 0
                self.df.loc[mask_missing & ~mask_new, 'TotalCharges'] = \
                    self.df.loc[mask_missing & ~mask_new, 'MonthlyCharges']
                log_success(f"Imputed {mask_missing.sum()} TotalCharges values")

        self.df = coerce_numeric(self.df, self.config['numeric_features'])

        missing = self.df[self.model_columns].isnull().any(axis=1)
        if missing.any():
            log_warning(f"Dropping {missing.sum()} rows with missing model columns")
            self.df = self.df.loc[~missing].reset_index(drop=True)

        self.df = encode_binary_target(self.df, self.config['target'],
                                       positive=self.config['positive_label'],
                                       negative=self.config['negative_label'])
        log_success(f"Data cleaning complete. Final shape: {self.df.shape}")
        return self.df

    def recode_references(self) -> pd.DataFrame:
        log_step("STEP 1.3: Recoding Categorical Reference Levels")
        self.df, self.levels = set_reference_levels(self.df, self.config['categorical_features'])
        log_success(f"Recoded {len(self.levels)} categorical features")
        return self.df

    def run(self) -> pd.DataFrame:
        log_header("CHURN DATA PREPARATION")
        try:
            self.load_data()
            self.clean_data()
            self.recode_references()
            return self.df
        except Exception as e:
            log_error(
                "DATA PREPARATION FAILED",
                root_cause=str(e),
                location="ChurnDataPreparation.run()"
            )
            raise


def prepare_churn_data(path: str, config: Optional[Dict] = None) -> pd.DataFrame:
    """Load, clean and recode the churn table in one call"""
    return ChurnDataPreparation(path, config).run()
