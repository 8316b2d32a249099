"""Intake constants shared across the SDK.

These values are referenced by the evaluator, answer parser, questionnaire
engine, router and tool executor.  They mirror conventions encoded in the
ruleset documents under ``v1/``.

Several constants can be overridden via environment variables so that
deployments can adjust business thresholds without code changes.
"""

import os

# Timezone used to anchor "today" for relative dates.
# Overridable via INTAKE_TIMEZONE env var.
DEFAULT_TIMEZONE = os.getenv("INTAKE_TIMEZONE", "Asia/Jerusalem")

# Policy start date must fall within [today, today + N days].
# Overridable via START_DATE_MAX_DAYS env var.
START_DATE_MAX_DAYS = int(os.getenv("START_DATE_MAX_DAYS", "45"))

# Hard wall-clock limit for a single tool invocation (seconds).
# Overridable via DYNAMIC_TOOL_TIMEOUT_SECONDS env var.
DYNAMIC_TOOL_TIMEOUT_SECONDS = float(os.getenv("DYNAMIC_TOOL_TIMEOUT_SECONDS", "10"))

# Whether "3" / "12 employees" count as a yes to a boolean question.
# Overridable via BOOLEAN_NUMERIC_FALLBACK env var ("0" disables).
BOOLEAN_NUMERIC_FALLBACK = os.getenv("BOOLEAN_NUMERIC_FALLBACK", "1") not in ("0", "false", "no")

# Closed set of question data types.
DATA_TYPES: tuple[str, ...] = ("boolean", "number", "string", "date", "enum", "array")

# Field keys whose date answers are policy start dates (window applies).
START_DATE_FIELDS: set[str] = {"policy_start_date"}

# Field written from the derived policy end date.
POLICY_END_DATE_FIELD = "policy_end_date"

# Stage keys whose questions decide module selection and therefore are
# never gated by enabled modules.
UNGATED_STAGE_KEYS: set[str] = {
    "01_identification",
    "02_needs_discovery",
    "01_welcome_user",
    "02_intent_segment_and_coverages",
}

# Only these process keys are routable (01_ .. 23_).
ROUTABLE_PROCESS_PATTERN = r"^(0[1-9]|1[0-9]|2[0-3])_"

# Flow slug conventions.
FLOW_SLUG_PREFIX = "flow_"
TERMINAL_FLOW_SLUG = "done"

# Tokens accepted by tolerant boolean equality in conditions
# (`x = true` also matches "כן", "1", "yes", ...).
CONDITION_TRUE_TOKENS: frozenset[str] = frozenset({"true", "1", "כן", "חדש", "new", "y", "yes"})
CONDITION_FALSE_TOKENS: frozenset[str] = frozenset({"false", "0", "לא", "קיים", "existing", "n", "no"})

# String values that count as "absent" even though they are non-empty.
ABSENT_STRING_VALUES: frozenset[str] = frozenset({"null", ":null", "undefined", ":undefined"})

# Answer tokens recognised by the boolean parser (after case/diacritic folding).
AFFIRMATIVE_TOKENS: tuple[str, ...] = ("כן", "yes", "y", "true", "חיובי", "positive", "יש")
NEGATIVE_TOKENS: tuple[str, ...] = ("לא", "no", "n", "false", "שלילי", "negative", "אין")

# Computed variables derived from sum-insured answers.
PROPERTY_SUM_FIELDS: tuple[tuple[str, ...], ...] = (
    ("ch2_building_sum_insured_ils",),
    ("ch1_contents_sum_insured_excl_stock_ils", "contents_sum_insured_ils"),
    ("ch1_stock_sum_insured_ils", "stock_sum_insured_ils"),
    ("ch10_sum_insured_ils",),
    ("ch5_money_sum_insured_ils",),
    ("ch6_transit_sum_insured_ils",),
)
BI_GROSS_PROFIT_FIELD = "ch3b_sum_insured_gross_profit_ils"
BI_DAILY_COMP_FIELD = "ch3a_daily_comp_ils"
# Daily compensation is converted to a sum insured by this many days.
BI_DAILY_DAYS = 100

# Maximum number of answered pairs listed in a stage summary.
STAGE_SUMMARY_MAX_ITEMS = 4

# Israeli company registry (data.gov.il CKAN datastore).
COMPANY_REGISTRY_URL = os.getenv(
    "COMPANY_REGISTRY_URL", "https://data.gov.il/api/3/action/datastore_search"
)
COMPANY_REGISTRY_RESOURCE_ID = os.getenv(
    "COMPANY_REGISTRY_RESOURCE_ID", "f004176c-b85f-4542-8901-7b3176f9a054"
)
