"""
Typed wrappers around the four resource kinds we generate.

Each kind lists the fields it cannot live without and checks the shape of the
ones we read. Wrapping a document that lacks any of them, or carries one in a
shape we can't use (a birthDate that isn't a date, a vaccineCode that isn't a
CodeableConcept), raises InvalidResource, so neither the compiler nor the
summarizer ever passes half a resource downstream.

The narrative handling in Patient.notes strips tags with a regular expression.
That is only safe because the compiler writes the narrative itself and never
emits anything more than a single flat div.
"""

import re
import json
from pathlib import Path

from cqltc import InvalidResource
from cqltc.dates import is_iso_date

tag_rgx = re.compile(r"<[^>]*>")

def is_concept(value):
    """A CodeableConcept we can read: a mapping whose coding, if present, is a
    list of mappings"""
    if not isinstance(value, dict):
        return False
    codings = value.get("coding")
    if codings is None:
        return True
    return isinstance(codings, list) and all(isinstance(c, dict) for c in codings)

def first_coding(concept):
    """Returns the first coding of a CodeableConcept (or an empty dict)"""
    if not concept:
        return {}
    codings = concept.get("coding") or []
    if len(codings) > 0:
        return codings[0]
    return {}

def classify_system(system):
    system = (system or "").lower()
    if "snomed" in system:
        return "SNOMED"
    if "icd-9" in system:
        return "ICD-9"
    if "icd-10" in system:
        return "ICD-10"
    return "Other"

def format_number(value):
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)

class FhirResource:
    resource_type = None

    # Each entry is either a field name or a tuple of alternatives, at least
    # one of which must be present
    required = ["id"]

    def __init__(self, content, source=None):
        self.content = content
        self.source = source

        missing = []
        for field in self.required:
            options = field if isinstance(field, tuple) else (field,)
            if not any(self.present(x) for x in options):
                missing.append("|".join(options))

        if content.get("resourceType") != self.resource_type:
            missing.insert(0, "resourceType")

        if missing:
            raise InvalidResource(self.resource_type, missing, source)

        malformed = self.malformed()
        if malformed:
            raise InvalidResource(self.resource_type, [], source, malformed=malformed)

    def present(self, field):
        return self.content.get(field) not in (None, "", [], {})

    def malformed(self):
        """Names of present fields whose shape we can't work with"""
        return []

    @property
    def id(self):
        return self.content["id"]

    def as_json(self):
        return json.dumps(self.content, indent=2) + "\n"

class Patient(FhirResource):
    resource_type = "Patient"
    required = ["id", "birthDate"]

    def malformed(self):
        bad = []
        if not is_iso_date(self.content["birthDate"]):
            bad.append("birthDate")
        if not isinstance(self.content.get("text") or {}, dict):
            bad.append("text")
        note = self.content.get("note") or []
        if not (isinstance(note, list) and all(isinstance(n, dict) for n in note)):
            bad.append("note")
        return bad

    @property
    def birth_date(self):
        return self.content["birthDate"]

    @property
    def notes(self):
        notes = ""
        div = (self.content.get("text") or {}).get("div")
        if div:
            notes = tag_rgx.sub("", div).strip()

        note = self.content.get("note") or []
        if len(note) > 0 and note[0].get("text"):
            notes = note[0]["text"]
        return notes

class Immunization(FhirResource):
    resource_type = "Immunization"
    required = ["id", "status", "vaccineCode", "patient",
                ("occurrenceDateTime", "occurrenceString")]

    def malformed(self):
        bad = []
        if not is_concept(self.content["vaccineCode"]):
            bad.append("vaccineCode")
        if not is_iso_date(self.occurrence):
            bad.append("occurrenceDateTime" if self.present("occurrenceDateTime")
                        else "occurrenceString")
        return bad

    @property
    def codes(self):
        return [c.get("code") for c in self.content["vaccineCode"].get("coding") or []]

    @property
    def occurrence(self):
        return self.content.get("occurrenceDateTime") or self.content.get("occurrenceString")

class Condition(FhirResource):
    resource_type = "Condition"
    required = ["id", "code", "subject"]

    def malformed(self):
        return [] if is_concept(self.content["code"]) else ["code"]

    def summarize(self):
        concept = self.content["code"]
        coding = first_coding(concept)
        return {
            "code": coding.get("code"),
            "display": coding.get("display") or concept.get("text") or "Unknown",
            "system": classify_system(coding.get("system")),
        }

class Observation(FhirResource):
    resource_type = "Observation"
    required = ["id", "status", "code", "subject"]

    def malformed(self):
        bad = [] if is_concept(self.content["code"]) else ["code"]
        for field in ("valueQuantity", "valueCodeableConcept"):
            if not isinstance(self.content.get(field) or {}, dict):
                bad.append(field)
        return bad

    @property
    def value(self):
        quantity = self.content.get("valueQuantity")
        if quantity and quantity.get("value") is not None:
            unit = quantity.get("unit") or quantity.get("code") or ""
            return f"{format_number(quantity['value'])} {unit}".strip()

        if self.content.get("valueString"):
            return self.content["valueString"]

        concept = self.content.get("valueCodeableConcept")
        if concept:
            coding = first_coding(concept)
            return concept.get("text") or coding.get("display") or coding.get("code") or "N/A"

        return "N/A"

    def summarize(self):
        coding = first_coding(self.content["code"])
        return {
            "code": coding.get("code"),
            "display": coding.get("display") or "Unknown",
            "value": self.value,
        }

resource_classes = {
    cls.resource_type: cls for cls in [Patient, Immunization, Condition, Observation]
}

def wrap_resource(content, source=None):
    if not isinstance(content, dict):
        raise InvalidResource("Unknown", ["resourceType"], source)

    kind = content.get("resourceType")
    if kind not in resource_classes:
        raise InvalidResource(str(kind), ["resourceType"], source)
    return resource_classes[kind](content, source)

def load_resource(filename):
    """Read and validate a single resource file.

    Raises OSError or ValueError (JSONDecodeError) for unreadable files and
    InvalidResource for documents missing their required fields."""
    filename = Path(filename)
    with filename.open("rt", encoding="utf-8") as f:
        content = json.load(f)
    return wrap_resource(content, source=str(filename))
