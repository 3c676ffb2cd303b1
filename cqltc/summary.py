#!/usr/bin/env python

"""Summarize generated test cases into a single Markdown report.

The input is the directory tree written by the compiler (buildcases), one
directory per test case. For every case with a Patient we report the age at
the reference date, the qualifying vaccine doses (with the patient's age at
each dose), conditions, lab results and the notes from the patient narrative.
"""

import sys
import logging
from datetime import date
from pathlib import Path
from argparse import ArgumentParser, FileType
from importlib.resources import files

from jinja2 import Environment
from rich import print

from cqltc import CaseToolError, die_if, parse_reference_date, setup_logging
from cqltc.config import Configuration, default_vaccine_codes
from cqltc.dates import calculate_age, calculate_age_at_date, long_date
from cqltc.resources import load_resource, Patient, Immunization, Condition, Observation

log = logging.getLogger(__name__)

# Age bands (in months) used by the summary statistics. A missing bound is
# open, so a birth date after the reference date still counts as an infant
age_bands = [
    ("infants", None, 12),
    ("toddlers", 12, 48),
    ("children", 48, 216),
    ("adults", 216, None),
]

def find_files(directory, pattern="*.json"):
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(f for f in directory.rglob(pattern) if f.is_file())

def load_resources(directory, resource_class):
    """Load every resource of one kind, logging and skipping anything that
    can't be read or doesn't validate"""
    resources = []
    for filename in find_files(directory):
        try:
            resource = load_resource(filename)
        except (OSError, ValueError) as e:
            log.error(f"Error reading {filename}: {e}")
            continue
        except CaseToolError as e:
            log.error(f"Skipping {filename}: {e.message()}")
            continue

        if not isinstance(resource, resource_class):
            log.warning(f"Skipping {filename}: expected {resource_class.resource_type}, found {resource.resource_type}")
            continue
        resources.append(resource)
    return resources

class CaseSummary:
    def __init__(self, test_case_id, birth_date, age, dose_count, dose_dates,
                    conditions, observations, notes):
        self.test_case_id = test_case_id
        self.birth_date = birth_date
        self.age = age
        self.dose_count = dose_count
        self.dose_dates = dose_dates
        self.conditions = conditions
        self.observations = observations
        self.notes = notes
        self.doses = [{
            "date": dose[:10],
            "age_months": calculate_age_at_date(birth_date, dose)
        } for dose in dose_dates]

    @property
    def dose_overview(self):
        if len(self.dose_dates) == 0:
            return "None"
        return "<br>".join(f"{d['date']} ({d['age_months']}mo)" for d in self.doses)

    @property
    def condition_overview(self):
        if len(self.conditions) == 0:
            return "None"
        return ", ".join(c["display"][:30] for c in self.conditions)

    @property
    def notes_overview(self):
        if len(self.notes) > 50:
            return self.notes[:50] + "..."
        return self.notes

    @property
    def has_findings(self):
        return len(self.conditions) > 0 or len(self.observations) > 0

def analyze_test_case(test_case_dir, reference_date, vaccine_codes=default_vaccine_codes):
    """Returns a CaseSummary or None if the case has no usable Patient"""
    test_case_dir = Path(test_case_dir)
    test_case_id = test_case_dir.name

    patients = load_resources(test_case_dir / "Patient", Patient)
    if len(patients) == 0:
        log.warning(f"No Patient resource found in {test_case_id}")
        return None
    patient = patients[0]

    immunizations = load_resources(test_case_dir / "Immunization", Immunization)
    qualifying = [imm for imm in immunizations
                    if any(code in vaccine_codes for code in imm.codes)]

    # All timestamps are written in the same format and offset, so a string
    # sort is a chronological sort
    dose_dates = sorted(imm.occurrence for imm in qualifying)

    conditions = load_resources(test_case_dir / "Condition", Condition)
    observations = load_resources(test_case_dir / "Observation", Observation)

    return CaseSummary(
        test_case_id=test_case_id,
        birth_date=patient.birth_date,
        age=calculate_age(patient.birth_date, reference_date),
        dose_count=len(qualifying),
        dose_dates=dose_dates,
        conditions=[c.summarize() for c in conditions],
        observations=[o.summarize() for o in observations],
        notes=patient.notes
    )

def find_test_cases(testcase_dir):
    return sorted(d for d in Path(testcase_dir).iterdir() if d.is_dir())

def analyze_test_cases(testcase_dirs, reference_date, vaccine_codes=default_vaccine_codes):
    summaries = []
    for test_case_dir in testcase_dirs:
        try:
            summary = analyze_test_case(test_case_dir, reference_date, vaccine_codes)
        except (CaseToolError, ValueError, TypeError, AttributeError) as e:
            log.error(f"Skipping test case {Path(test_case_dir).name}: {e}")
            continue
        if summary is not None:
            summaries.append(summary)
    return summaries

def report_statistics(summaries):
    stats = {}
    for band, low, high in age_bands:
        stats[band] = len([s for s in summaries
                            if (low is None or s.age.total_months >= low)
                                and (high is None or s.age.total_months < high)])

    stats["no_doses"] = len([s for s in summaries if s.dose_count == 0])
    stats["one_dose"] = len([s for s in summaries if s.dose_count == 1])
    stats["two_plus_doses"] = len([s for s in summaries if s.dose_count >= 2])

    stats["with_conditions"] = len([s for s in summaries if s.has_findings])
    stats["no_conditions"] = len(summaries) - stats["with_conditions"]
    return stats

def report_template():
    source = files("cqltc").joinpath("templates").joinpath("summary.md.j2").read_text(encoding="utf-8")
    jinja_env = Environment(trim_blocks=True, lstrip_blocks=True, keep_trailing_newline=True)
    return jinja_env.from_string(source)

def generate_report(summaries, reference_date, label="MMR"):
    return report_template().render(
        cases=summaries,
        reference_date=long_date(reference_date),
        stats=report_statistics(summaries),
        label=label
    )

def exec(args=None):
    if args is None:
        args = sys.argv[1:]

    parser = ArgumentParser(
        description="Analyze generated test cases and write a Markdown summary."
    )
    parser.add_argument(
        "date",
        nargs="?",
        type=parse_reference_date,
        default=None,
        help="Reference date (YYYY-MM-DD) for age calculations. Defaults to today."
    )
    parser.add_argument(
        "-r",
        "--reference-date",
        type=parse_reference_date,
        default=None,
        help="Same as the positional date. Takes precedence if both are given."
    )
    parser.add_argument(
        "-i",
        "--input",
        default=None,
        help="Directory containing one sub-directory per test case"
    )
    parser.add_argument(
        "-o",
        "--output",
        default=None,
        help="Filename the Markdown report is written to"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=FileType("rt"),
        default=None,
        help="Optional YAML project configuration"
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true"
    )
    args = parser.parse_args(args)
    setup_logging(args.verbose)

    config = Configuration(args.config)
    reference_date = args.reference_date or args.date or date.today()
    testcase_dir = Path(args.input or config.testcase_dir)
    output_file = Path(args.output or config.report_filename)

    log.info(f"Reference date: {reference_date.isoformat()}")
    die_if(not testcase_dir.is_dir(), f"The test case directory, {testcase_dir}, does not exist.")

    testcase_dirs = find_test_cases(testcase_dir)
    die_if(len(testcase_dirs) == 0, f"No test case directories found in {testcase_dir}")
    log.info(f"Found {len(testcase_dirs)} test case directories")

    summaries = analyze_test_cases(testcase_dirs, reference_date, config.vaccine_codes)
    log.info(f"Successfully analyzed {len(summaries)} test cases")

    report = generate_report(summaries, reference_date, label=config.vaccine_label)
    try:
        output_file.parent.mkdir(parents=True, exist_ok=True)
        output_file.write_text(report, encoding="utf-8")
    except OSError as e:
        die_if(True, f"Unable to write the summary to {output_file}: {e}")

    stats = report_statistics(summaries)
    print(f"\n[green]Summary written to:[/green] {output_file}")
    print(f"\nTest cases analyzed: {len(summaries)}")
    print(f"- Infants (<12mo): {stats['infants']}")
    print(f"- Toddlers (12-47mo): {stats['toddlers']}")
    print(f"- Children (4-18y): {stats['children']}")
    print(f"- Adults (>18y): {stats['adults']}")

if __name__ == "__main__":
    exec()
