from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]

DATA_DIR = PROJECT_ROOT / "data"
PROCESSED_DIR = DATA_DIR / "processed"
FIGURES_DIR = PROJECT_ROOT / "figures"
RESULTS_DIR = PROJECT_ROOT / "results"

PROCESSED_FILE = PROCESSED_DIR / "processed_support_data.csv"

# SUPPORT2 on the UCI ML Repository
DATASET_ID = 880

EXPOSURE_COL = "meanbp"
OUTCOME_COL = "hospdead"

# Baseline confounders of the blood pressure -> in-hospital death relationship
COVARIATE_COLS = [
    "age", "sex", "race", "dzgroup", "num.co", "scoma",
    "hrt", "resp", "temp", "sod", "crea", "diabetes", "dementia", "ca",
]
CATEGORICAL_COLS = ["race", "dzgroup", "ca"]

# Exposure weighting
NUM_BINS = 10

# TMLE shift intervention, in mmHg
SHIFT_DELTA = 5.0
OUTCOME_BOUND = 1e-4

# Simulation study
RANDOM_SEED = 2024
N_REPLICATES = 200
N_UNITS = 1000
N_TRUTH = 200_000

ALPHA = 0.05
