"""
Turn a test case manifest into FHIR resources.

A manifest is a YAML document describing one synthetic patient along with the
immunizations, conditions and observations we want on their record. Any
date in the manifest may be given relative to the reference date, e.g.

    birthDate:
      relative: 48 months before reference

All resolution happens against the reference date handed in by the caller.
"""

from uuid import uuid4
from yaml import safe_load

from cqltc import ManifestError
from cqltc.dates import resolve_date, as_timestamp

# Expected results in the current (MMR_Routine_Lite_2) style
new_style_expectations = ["All Doses Due Now", "Any Dose Due Now"]

# Expected results written against the older per-rule libraries
legacy_expectations = ["recommendation1", "recommendation2"]

list_sections = ["immunizations", "conditions", "observations"]

def random_id():
    return str(uuid4())

def load_manifest(manifest_file):
    """Parse and validate a manifest file, returning the raw mapping"""
    with open(manifest_file, "rt", encoding="utf-8") as f:
        manifest = safe_load(f)

    validate_manifest(manifest, str(manifest_file))
    return manifest

def require(container, key, context):
    if not isinstance(container, dict) or container.get(key) in (None, "", []):
        raise ManifestError(context, f"missing required field, '{key}'")
    return container[key]

def validate_manifest(manifest, name):
    if not isinstance(manifest, dict):
        raise ManifestError(name, "manifest is not a mapping")

    test_case_id = require(manifest, "testCaseId", name)
    if not isinstance(test_case_id, str):
        raise ManifestError(name, "testCaseId must be a string")
    require(manifest, "description", name)

    patient = require(manifest, "patient", name)
    pname = require(patient, "name", f"{name} patient")
    require(pname, "given", f"{name} patient.name")
    require(pname, "family", f"{name} patient.name")
    require(patient, "gender", f"{name} patient")
    require(patient, "birthDate", f"{name} patient")

    for section in list_sections:
        entries = manifest.get(section)
        if entries is not None and not isinstance(entries, list):
            raise ManifestError(name, f"{section} must be a list")

def patient_id(manifest):
    return manifest["patient"].get("id") or manifest["testCaseId"]

def format_expectation(value):
    if value is True:
        return "true"
    if value is False:
        return "false"
    if value is None:
        return "null"
    return str(value)

def expected_narrative(manifest):
    """Returns the 'Expected: ...' sentence for the patient narrative.

    Only one shape is ever rendered. If a manifest carries both, the newer
    style wins."""
    expected = manifest.get("expectedResults")
    if not expected:
        return ""

    if any(key in expected for key in new_style_expectations):
        expectations = [f"{key}={format_expectation(expected[key])}"
                            for key in new_style_expectations if key in expected]
        return f" Expected: {', '.join(expectations)}."

    if any(key in expected for key in legacy_expectations):
        scenario = manifest.get("clinicalScenario") or {}
        fires = "FIRES" if scenario.get("ruleFires") else "does NOT fire"
        recs = []
        for idx, key in enumerate(legacy_expectations):
            rec = expected.get(key)
            recs.append(f"Recommendation {idx + 1}: " + (f"'{rec}'" if rec else "null"))
        return f" Expected: Rule {fires}. {', '.join(recs)}."

    return ""

def build_patient(manifest, reference_date):
    patient = manifest["patient"]
    birth_date = resolve_date(patient["birthDate"], reference_date, "patient.birthDate")

    text_div = (f'<div xmlns="http://www.w3.org/1999/xhtml">Test: {manifest["description"]}.'
                f'{expected_narrative(manifest)}</div>')

    given = patient["name"]["given"]
    if not isinstance(given, list):
        given = [given]

    return {
        "resourceType": "Patient",
        "id": patient_id(manifest),
        "text": {
            "status": "generated",
            "div": text_div
        },
        "name": [
            {
                "given": given,
                "family": patient["name"]["family"]
            }
        ],
        "gender": patient["gender"],
        "birthDate": birth_date
    }

def copy_present(entry, resource, fields):
    for field in fields:
        if entry.get(field) is not None:
            resource[field] = entry[field]

def build_immunization(entry, patient_id, reference_date, new_id=random_id, context="immunization"):
    occurrence = require(entry, "occurrenceDateTime", context)
    occurrence = resolve_date(occurrence, reference_date, f"{context}.occurrenceDateTime")

    resource = {
        "resourceType": "Immunization",
        "id": entry.get("id") or new_id(),
        "status": entry.get("status") or "completed",
        "primarySource": entry["primarySource"] if "primarySource" in entry else True,
    }
    copy_present(entry, resource, ["vaccineCode"])
    resource["occurrenceDateTime"] = as_timestamp(occurrence)
    resource["patient"] = {
        "reference": f"Patient/{patient_id}"
    }
    return resource

def build_condition(entry, patient_id, reference_date, new_id=random_id, context="condition"):
    resource = {
        "resourceType": "Condition",
        "id": entry.get("id") or new_id(),
    }
    copy_present(entry, resource, ["clinicalStatus", "verificationStatus", "category", "code"])
    resource["subject"] = {
        "reference": f"Patient/{patient_id}"
    }

    if entry.get("onsetDateTime"):
        onset = resolve_date(entry["onsetDateTime"], reference_date, f"{context}.onsetDateTime")
        resource["onsetDateTime"] = as_timestamp(onset)

    return resource

def build_observation(entry, patient_id, reference_date, new_id=random_id, context="observation"):
    resource = {
        "resourceType": "Observation",
        "id": entry.get("id") or new_id(),
        "status": entry.get("status") or "final",
    }
    copy_present(entry, resource, ["code"])
    resource["subject"] = {
        "reference": f"Patient/{patient_id}"
    }
    copy_present(entry, resource, ["category", "valueQuantity", "valueCodeableConcept", "valueString"])

    if entry.get("effectiveDateTime"):
        effective = resolve_date(entry["effectiveDateTime"], reference_date, f"{context}.effectiveDateTime")
        resource["effectiveDateTime"] = as_timestamp(effective)

    if entry.get("issued"):
        # issued stays a plain date
        resource["issued"] = resolve_date(entry["issued"], reference_date, f"{context}.issued")

    return resource

builders = {
    "immunizations": ("Immunization", build_immunization),
    "conditions": ("Condition", build_condition),
    "observations": ("Observation", build_observation),
}
