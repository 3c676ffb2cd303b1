from datetime import date

import pytest

from cqltc import ManifestError, MalformedDateSpec
from cqltc.manifest import (build_patient, build_immunization, build_condition,
                                build_observation, validate_manifest, load_manifest,
                                expected_narrative)

from conftest import vaccine

div_start = '<div xmlns="http://www.w3.org/1999/xhtml">'

def fixed_id():
    return "generated-id"


class TestBuildPatient:
    def test_patient_fields(self, mmr_manifest, reference_date):
        patient = build_patient(mmr_manifest, reference_date)

        assert patient["resourceType"] == "Patient"
        assert patient["id"] == "four-year-old-two-doses"
        assert patient["birthDate"] == "2021-06-01"
        assert patient["gender"] == "female"
        assert patient["name"] == [{"given": ["Ada"], "family": "Tester"}]
        assert patient["text"]["status"] == "generated"

    def test_given_list_is_kept(self, mmr_manifest, reference_date):
        mmr_manifest["patient"]["name"]["given"] = ["Ada", "B"]
        assert build_patient(mmr_manifest, reference_date)["name"][0]["given"] == ["Ada", "B"]

    def test_manifest_patient_id_wins(self, mmr_manifest, reference_date):
        mmr_manifest["patient"]["id"] = "patient-1"
        assert build_patient(mmr_manifest, reference_date)["id"] == "patient-1"

    def test_48_months_before_reference(self, mmr_manifest):
        patient = build_patient(mmr_manifest, date(2025, 1, 15))
        assert patient["birthDate"] == "2021-01-15"

    def test_new_style_expectations(self, mmr_manifest, reference_date):
        mmr_manifest["expectedResults"] = {"All Doses Due Now": True, "Any Dose Due Now": False}
        patient = build_patient(mmr_manifest, reference_date)
        assert patient["text"]["div"] == (f"{div_start}Test: Four year old with two doses. "
            "Expected: All Doses Due Now=true, Any Dose Due Now=false.</div>")

    def test_new_style_single_key(self, mmr_manifest):
        mmr_manifest["expectedResults"] = {"Any Dose Due Now": True}
        assert expected_narrative(mmr_manifest) == " Expected: Any Dose Due Now=true."

    def test_legacy_expectations(self, mmr_manifest, reference_date):
        mmr_manifest["expectedResults"] = {"recommendation1": "Give MMR dose 2", "recommendation2": None}
        mmr_manifest["clinicalScenario"] = {"ruleFires": True}
        patient = build_patient(mmr_manifest, reference_date)
        assert patient["text"]["div"] == (f"{div_start}Test: Four year old with two doses. "
            "Expected: Rule FIRES. Recommendation 1: 'Give MMR dose 2', Recommendation 2: null.</div>")

    def test_legacy_rule_does_not_fire(self, mmr_manifest):
        mmr_manifest["expectedResults"] = {"recommendation1": None}
        assert expected_narrative(mmr_manifest) == \
            " Expected: Rule does NOT fire. Recommendation 1: null, Recommendation 2: null."

    def test_new_style_takes_precedence(self, mmr_manifest):
        mmr_manifest["expectedResults"] = {
            "All Doses Due Now": True,
            "recommendation1": "Give MMR",
        }
        narrative = expected_narrative(mmr_manifest)
        assert "All Doses Due Now=true" in narrative
        assert "Recommendation" not in narrative

    def test_no_expectations(self, mmr_manifest, reference_date):
        del mmr_manifest["expectedResults"]
        patient = build_patient(mmr_manifest, reference_date)
        assert patient["text"]["div"] == f"{div_start}Test: Four year old with two doses.</div>"


class TestBuildImmunization:
    def test_defaults(self, reference_date):
        entry = {"vaccineCode": vaccine("03"),
                    "occurrenceDateTime": {"relative": "2 years before reference"}}
        imm = build_immunization(entry, "case-1", reference_date, new_id=fixed_id)

        assert imm == {
            "resourceType": "Immunization",
            "id": "generated-id",
            "status": "completed",
            "primarySource": True,
            "vaccineCode": vaccine("03"),
            "occurrenceDateTime": "2023-06-01T00:00:00.000Z",
            "patient": {"reference": "Patient/case-1"}
        }

    def test_entry_values_are_kept(self, reference_date):
        entry = {"id": "imm-1", "status": "not-done", "primarySource": False,
                    "vaccineCode": vaccine("94"), "occurrenceDateTime": "2022-02-02"}
        imm = build_immunization(entry, "case-1", reference_date, new_id=fixed_id)

        assert imm["id"] == "imm-1"
        assert imm["status"] == "not-done"
        assert imm["primarySource"] is False
        assert imm["occurrenceDateTime"] == "2022-02-02T00:00:00.000Z"

    def test_missing_occurrence(self, reference_date):
        with pytest.raises(ManifestError):
            build_immunization({"vaccineCode": vaccine("03")}, "case-1", reference_date)

    def test_malformed_occurrence(self, reference_date):
        entry = {"vaccineCode": vaccine("03"),
                    "occurrenceDateTime": {"relative": "soon before reference"}}
        with pytest.raises(MalformedDateSpec) as e:
            build_immunization(entry, "case-1", reference_date, context="immunizations[0]")
        assert e.value.field == "immunizations[0].occurrenceDateTime"

    def test_random_id_by_default(self, reference_date):
        entry = {"vaccineCode": vaccine("03"), "occurrenceDateTime": "2022-02-02"}
        first = build_immunization(entry, "case-1", reference_date)
        second = build_immunization(entry, "case-1", reference_date)
        assert first["id"] != second["id"]


class TestBuildCondition:
    def test_condition(self, mmr_manifest, reference_date):
        entry = mmr_manifest["conditions"][0]
        condition = build_condition(entry, "case-1", reference_date, new_id=fixed_id)

        assert condition["resourceType"] == "Condition"
        assert condition["id"] == "generated-id"
        assert condition["clinicalStatus"] == entry["clinicalStatus"]
        assert condition["code"] == entry["code"]
        assert condition["subject"] == {"reference": "Patient/case-1"}
        assert condition["onsetDateTime"] == "2024-06-01T00:00:00.000Z"
        assert "verificationStatus" not in condition

    def test_without_onset(self, reference_date):
        condition = build_condition({"code": {"text": "Pregnancy"}}, "case-1", reference_date, new_id=fixed_id)
        assert "onsetDateTime" not in condition


class TestBuildObservation:
    def test_observation(self, mmr_manifest, reference_date):
        entry = mmr_manifest["observations"][0]
        obs = build_observation(entry, "case-1", reference_date, new_id=fixed_id)

        assert obs["status"] == "final"
        assert obs["code"] == entry["code"]
        assert obs["valueQuantity"] == {"value": 4.5, "unit": "IU/mL"}
        assert obs["effectiveDateTime"] == "2025-05-22T00:00:00.000Z"
        assert obs["issued"] == "2025-05-23"
        assert obs["subject"] == {"reference": "Patient/case-1"}
        assert "valueCodeableConcept" not in obs

    def test_category_and_coded_value(self, reference_date):
        entry = {
            "status": "amended",
            "category": [{"coding": [{"code": "laboratory"}]}],
            "code": {"coding": [{"code": "x"}]},
            "valueCodeableConcept": {"coding": [{"code": "10828004", "display": "Positive"}]},
        }
        obs = build_observation(entry, "case-1", reference_date, new_id=fixed_id)
        assert obs["status"] == "amended"
        assert obs["category"] == entry["category"]
        assert obs["valueCodeableConcept"] == entry["valueCodeableConcept"]


class TestValidateManifest:
    def test_valid(self, mmr_manifest):
        validate_manifest(mmr_manifest, "good.yaml")

    @pytest.mark.parametrize("key", ["testCaseId", "description", "patient"])
    def test_missing_top_level(self, mmr_manifest, key):
        del mmr_manifest[key]
        with pytest.raises(ManifestError) as e:
            validate_manifest(mmr_manifest, "bad.yaml")
        assert key in e.value.message()
        assert "bad.yaml" in e.value.message()

    def test_missing_birth_date(self, mmr_manifest):
        del mmr_manifest["patient"]["birthDate"]
        with pytest.raises(ManifestError):
            validate_manifest(mmr_manifest, "bad.yaml")

    def test_missing_family_name(self, mmr_manifest):
        del mmr_manifest["patient"]["name"]["family"]
        with pytest.raises(ManifestError):
            validate_manifest(mmr_manifest, "bad.yaml")

    def test_sections_must_be_lists(self, mmr_manifest):
        mmr_manifest["conditions"] = {"code": "x"}
        with pytest.raises(ManifestError):
            validate_manifest(mmr_manifest, "bad.yaml")

    def test_not_a_mapping(self):
        with pytest.raises(ManifestError):
            validate_manifest(["a", "list"], "bad.yaml")

    def test_load_manifest(self, mmr_manifest, write_manifest):
        filename = write_manifest(mmr_manifest)
        assert load_manifest(filename)["testCaseId"] == "four-year-old-two-doses"
