"""
Keyword tables for intent classification, scope resolution and scope filtering.

All matching is case-insensitive substring matching against the
lower-cased, whitespace-collapsed question (or chunk metadata). Table
order is significant: intent flags are emitted in the order listed here.
"""

# ============================================
# Intent Flags
# ============================================

INTENT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "screening": (
        "screening",
        "systematic screening",
        "triage",
        "ai-assisted",
        "ai assisted",
        "cxr screening",
        "screen for tb",
    ),
    "diagnostic_workup": (
        "diagnos",
        "algorithm",
        "cxr",
        "x-ray",
        "xray",
        "radiograph",
        "xpert",
        "ultra",
        "naat",
        "truenat",
        "lamp",
        "wrd",
        "wrds",
        "lpa",
        "smear",
        "culture",
        "dst",
        "drug susceptibility",
    ),
    "prevention_and_ltbi": (
        "tpt",
        "preventive treatment",
        "tb preventive treatment",
        "tb infection",
        "latent tb",
        "ltbi",
        "isoniazid preventive",
        "inh preventive",
    ),
    "infection_prevention_and_control": (
        "infection prevention",
        "ipc",
        "airborne infection",
        "ventilation",
        "uvgi",
        "n95",
        "respirator",
        "masking",
        "administrative controls",
        "environmental controls",
    ),
    "regimen_selection": (
        "start treatment",
        "starting treatment",
        "initial regimen",
        "which regimen",
        "what regimen",
        "choose regimen",
        "choice of regimen",
        "regimen choice",
    ),
    "regimen_modification": (
        "change regimen",
        "switch regimen",
        "modify regimen",
        "regimen modification",
        "adjust regimen",
        "add drug",
        "add a drug",
        "remove drug",
        "stop drug",
        "substitute",
        "substitution",
    ),
    "toxicity_management": (
        "toxicity",
        "adverse event",
        "side effect",
        "peripheral neuropathy",
        "neuropathy",
        "optic neuritis",
        "myelosuppression",
        "anaemia",
        "anemia",
        "thrombocytopenia",
        "hepatotoxicity",
        "liver toxicity",
        "vomiting",
        "nausea",
        "abdominal pain",
        "hyperpigmentation",
        "qt prolongation",
        "qt-prolonging",
        "cardiac toxicity",
    ),
    "monitoring_schedule": (
        "monitoring",
        "follow-up",
        "follow up",
        "schedule",
        "how often",
        "how frequently",
        "baseline tests",
        "baseline investigations",
        "routine monitoring",
        "post-treatment monitoring",
    ),
    "treatment_failure_or_reversion": (
        "treatment failure",
        "failed treatment",
        "failure of treatment",
        "culture reversion",
        "remains culture-positive",
        "remains culture positive",
        "persistent positive",
        "recurrent tb",
        "relapse",
    ),
    "special_populations": (
        "pregnant",
        "pregnancy",
        "breastfeeding",
        "lactating",
        "postpartum",
        "child",
        "children",
        "paediatric",
        "pediatric",
        "adolescent",
        "infant",
        "neonate",
    ),
    "drug_resistance": (
        "mdr-tb",
        "mdr tb",
        "xdr-tb",
        "xdr tb",
        "pre-xdr",
        "pre xdr",
        "rr-tb",
        "rr tb",
        "rifampicin-resistant",
        "rifampin-resistant",
        "drug-resistant tb",
        "drug resistant tb",
        "fluoroquinolone-resistant",
        "fluoroquinolone resistance",
    ),
    "tpt": (
        "tpt",
        "tb preventive treatment",
        "tb preventive therapy",
        "preventive treatment",
        "preventive therapy",
        "ipt",
        "isoniazid preventive therapy",
        "3hp",
        "1hp",
        "3hr",
        "4r",
        "latent tb infection treatment",
        "ltbi treatment",
        "tb infection treatment",
        "tb infection therapy",
    ),
    "dr_tpt": (
        "levofloxacin preventive",
        "levofloxacin prophylaxis",
        "6lfx",
        "6 months of levofloxacin",
        "mdr-tb contact",
        "mdr tb contact",
        "rr-tb contact",
        "rr tb contact",
        "contact of mdr-tb",
        "contact of an mdr-tb",
        "contact of an mdr tb",
        "contact of rr-tb",
        "contact of an rr-tb",
        "contact of an rr tb",
        "contacts of mdr-tb",
        "contacts of rr-tb",
        "household contact of mdr-tb",
    ),
    "comorbidities": (
        "hiv",
        "plhiv",
        "cd4",
        "viral load",
        "diabetes",
        "diabetic",
        "renal failure",
        "kidney disease",
        "ckd",
        "cirrhosis",
        "liver disease",
        "alcohol use",
        "harmful use",
        "substance use",
        "drug use",
        "depression",
        "anxiety",
        "mental health",
        "hepatitis",
        "hbv",
        "hcv",
    ),
}

# A flag that, when emitted, also emits the listed flags right after it.
IMPLIED_FLAGS: dict[str, tuple[str, ...]] = {
    "dr_tpt": ("tpt",),
}


# ============================================
# Scope Resolution
# ============================================

SCOPE_FLAGS: dict[str, tuple[str, ...]] = {
    "prevention": (
        "prevention_and_ltbi",
        "infection_prevention_and_control",
        "tpt",
        "dr_tpt",
    ),
    "screening": ("screening",),
    "diagnosis": ("diagnostic_workup",),
    "treatment": (
        "regimen_selection",
        "regimen_modification",
        "toxicity_management",
        "monitoring_schedule",
        "treatment_failure_or_reversion",
    ),
}

SCOPE_PRIORITY: tuple[str, ...] = ("treatment", "diagnosis", "prevention", "screening")

SCOPE_FALLBACK_KEYWORDS: dict[str, tuple[str, ...]] = {
    "prevention": (
        "prevention",
        "tb infection",
        "latent tb",
        "tpt",
        "preventive treatment",
        "contact management",
        "household contacts",
    ),
    "screening": (
        "screening",
        "systematic screening",
        "triage",
        "ai-assisted",
        "cxr screening",
        "screen for tb",
    ),
    "diagnosis": (
        "diagnos",
        "algorithm",
        "cxr",
        "x-ray",
        "radiograph",
        "xpert",
        "naat",
        "truenat",
        "lamp",
        "wrd",
        "wrds",
        "lpa",
        "smear",
        "ultra",
    ),
    "treatment": (
        "treatment",
        "regimen",
        "therapy",
        "dosing",
        "dose",
        "4-month",
        "6-month",
        "bpal",
        "bdq",
        "pretomanid",
        "linezolid",
        "dr-tb",
        "drug-resistant",
    ),
}

# (min keyword hits, explicit module mention, mention counts only with >= 1 hit)
SCOPE_FALLBACK_RULES: tuple[tuple[str, str, bool], ...] = (
    ("prevention", "module 1", False),
    ("screening", "module 2", True),
    ("diagnosis", "module 3", True),
    ("treatment", "module 4", False),
)
SCOPE_FALLBACK_MIN_HITS = 2


# ============================================
# Scope Filtering
# ============================================

# scope -> (doc_id substrings, section_path substrings)
SCOPE_FILTER_PATTERNS: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "prevention": (
        ("module1",),
        (
            "prevention",
            "tb infection",
            "tpt",
            "preventive treatment",
            "contact management",
            "latent tb",
        ),
    ),
    "screening": (
        ("module2",),
        (
            "screening",
            "systematic screening",
            "triage",
            "ai-assisted",
            "cxr screening",
        ),
    ),
    "diagnosis": (
        ("diag", "module3"),
        ("diagnos", "xpert", "cxr", "smear", "naat"),
    ),
    "treatment": (
        ("treat", "module4"),
        (
            "treatment",
            "regimen",
            "drug-resistant tb",
            "dr-tb",
            "mdr-tb",
            "rifampicin-resistant",
        ),
    ),
    "pediatrics": (
        ("pediatric", "child", "module5"),
        ("child", "children", "adolescent", "paediatric", "pediatric"),
    ),
    "comorbidities": (
        ("module6",),
        (
            "hiv",
            "diabetes",
            "comorbid",
            "substance use",
            "alcohol use",
            "mental health",
            "hepatitis",
            "hcv",
        ),
    ),
}
