"""
Common test fixtures for the case tools.
"""

from datetime import date

import pytest
import yaml

SNOMED = "http://snomed.info/sct"
CVX = "http://hl7.org/fhir/sid/cvx"

def vaccine(code, display="MMR"):
    return {"coding": [{"system": CVX, "code": code, "display": display}]}

@pytest.fixture
def reference_date():
    return date(2025, 6, 1)

@pytest.fixture
def mmr_manifest():
    """A four year old with two MMR doses, one hepatitis B dose, an allergy
    and a titer result"""
    return {
        "testCaseId": "four-year-old-two-doses",
        "description": "Four year old with two doses",
        "patient": {
            "name": {"given": "Ada", "family": "Tester"},
            "gender": "female",
            "birthDate": {"relative": "48 months before reference"},
        },
        "immunizations": [
            {
                "vaccineCode": vaccine("03"),
                "occurrenceDateTime": {"relative": "2 years before reference"},
            },
            {
                "id": "mmr-dose-1",
                "vaccineCode": vaccine("03"),
                "occurrenceDateTime": {"relative": "3 years before reference"},
            },
            {
                "vaccineCode": vaccine("08", "Hep B"),
                "occurrenceDateTime": "2021-07-01",
            },
        ],
        "conditions": [
            {
                "clinicalStatus": {"coding": [{"code": "active"}]},
                "code": {"coding": [{"system": SNOMED, "code": "91930004", "display": "Allergy to eggs"}]},
                "onsetDateTime": {"relative": "1 year before reference"},
            }
        ],
        "observations": [
            {
                "code": {"coding": [{"system": "http://loinc.org", "code": "22502-8", "display": "Measles IgG"}]},
                "valueQuantity": {"value": 4.5, "unit": "IU/mL"},
                "effectiveDateTime": {"relative": "10 days before reference"},
                "issued": {"relative": "9 days before reference"},
            }
        ],
        "expectedResults": {
            "All Doses Due Now": False,
            "Any Dose Due Now": False,
        },
    }

@pytest.fixture
def write_manifest(tmp_path):
    manifest_dir = tmp_path / "manifests"
    manifest_dir.mkdir(exist_ok=True)

    def writer(manifest, name=None):
        if name is None:
            name = f"{manifest['testCaseId']}.yaml"
        filename = manifest_dir / name
        filename.write_text(yaml.safe_dump(manifest, sort_keys=False))
        return filename
    return writer
