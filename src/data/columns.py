"""
Column definitions for the Mayo Clinic primary biliary cirrhosis cohort.

Based on the public cirrhosis CSV (one row per patient, 418 patients, of
which 312 took part in the D-penicillamine trial).
"""

# Columns the analysis reads from the raw file
INPUT_COLUMNS = [
    'Status',
    'N_Days',
    'Drug',
    'Age',
    'Sex',
    'Ascites',
    'Hepatomegaly',
    'Spiders',
    'Edema',
]

# Declared level order per categorical field.
# The first level of every list is the reference level for one-hot encoding
# and wins ties during mode imputation.
CATEGORICAL_LEVELS = {
    'Status': ['C', 'D', 'CL'],
    'Drug': ['D-penicillamine', 'Placebo'],
    'Sex': ['F', 'M'],
    'Ascites': ['N', 'Y'],
    'Hepatomegaly': ['N', 'Y'],
    'Spiders': ['N', 'Y'],
    'Edema': ['N', 'S', 'Y'],
}

NUMERIC_COLUMNS = ['N_Days', 'Age']

# Categorical columns allowed to carry missing values (imputed by mode)
NULLABLE_COLUMNS = ['Drug', 'Ascites', 'Hepatomegaly', 'Spiders', 'Edema']

# Typed schema: field name -> declared type + allowed levels
INPUT_SCHEMA = {
    col: {
        'dtype': 'category' if col in CATEGORICAL_LEVELS else 'float64',
        'levels': CATEGORICAL_LEVELS.get(col),
        'nullable': col in NULLABLE_COLUMNS,
    }
    for col in INPUT_COLUMNS
}

# Terminal status -> competing event code
# C = censored, D = death, CL = censored due to liver transplantation
STATUS_EVENT_CODES = {
    'C': 0,
    'D': 1,
    'CL': 2,
}

EVENT_LABELS = {
    0: 'censored',
    1: 'death',
    2: 'transplant',
}

EVENT_OF_INTEREST = 1
COMPETING_EVENTS = [2]

# Edema: 'N' = no edema, 'S' = edema without diuretics or resolved by
# diuretics, 'Y' = edema despite diuretic therapy
EDEMA_BINARY_MAP = {
    'N': 'N',
    'S': 'Y',
    'Y': 'Y',
}
EDEMA_BINARY_LEVELS = ['N', 'Y']

# Derived columns
DURATION_COL = 'N_Days'
EVENT_COL = 'event_code'
GROUP_COL = 'Drug'
AGE_STD_COL = 'Age_std'
EDEMA_BIN_COL = 'Edema_bin'

# Covariates entering the design matrix, categoricals first
DESIGN_CATEGORICAL_COLUMNS = [
    'Drug',
    'Sex',
    'Ascites',
    'Hepatomegaly',
    'Spiders',
    EDEMA_BIN_COL,
]
DESIGN_NUMERIC_COLUMNS = [AGE_STD_COL]

# Landmark times (days) for the cumulative incidence table
LANDMARK_DAYS = [365, 1826, 3652]
