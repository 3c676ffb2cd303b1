#!/usr/bin/env python

"""Compile test case manifests into FHIR resources.

Each manifest (manifests/*.yaml) becomes a directory named after its
testCaseId holding one sub-directory per resource type:

    <output>/<testCaseId>/<ResourceType>/<id>.json

Every relative date is resolved against a single reference date, so running
the compiler twice with the same manifests and reference date produces the
same files.
"""

import sys
import logging
from datetime import date
from pathlib import Path
from uuid import uuid4, uuid5, NAMESPACE_URL
from argparse import ArgumentParser, FileType

from yaml import YAMLError

from cqltc import CaseToolError, die_if, parse_reference_date, setup_logging
from cqltc.config import Configuration
from cqltc.manifest import load_manifest, build_patient, builders, patient_id
from cqltc.resources import wrap_resource
from cqltc.resource_summary import ResourceSummary

log = logging.getLogger(__name__)

class IdFactory:
    """Hands out ids for manifest entries that don't provide their own.

    By default the ids are derived from the test case, resource type and the
    entry's position so that re-running the compiler rewrites identical
    files rather than piling up new ones."""
    def __init__(self, test_case_id, random_ids=False):
        self.test_case_id = test_case_id
        self.random_ids = random_ids

    def for_entry(self, resource_type, index):
        def new_id():
            if self.random_ids:
                return str(uuid4())
            return str(uuid5(NAMESPACE_URL, f"urn:cqltc:{self.test_case_id}/{resource_type}/{index}"))
        return new_id

def compile_manifest(manifest, reference_date, random_ids=False):
    """Build (but do not write) every resource described by manifest.

    Returns a list of validated resource wrappers, Patient first. Nothing is
    written unless the whole manifest builds cleanly."""
    test_case_id = manifest["testCaseId"]
    subject = patient_id(manifest)
    ids = IdFactory(test_case_id, random_ids)

    resources = [wrap_resource(build_patient(manifest, reference_date), source="patient")]

    for section, (resource_type, builder) in builders.items():
        for index, entry in enumerate(manifest.get(section) or []):
            context = f"{section}[{index}]"
            resource = builder(entry, subject, reference_date,
                                new_id=ids.for_entry(resource_type, index),
                                context=context)
            resources.append(wrap_resource(resource, source=context))

    return resources

def write_resource(output_dir, test_case_id, resource_type, resource):
    """Write resource to <output_dir>/<test_case_id>/<resource_type>/<id>.json,
    replacing whatever was there before"""
    resource_dir = Path(output_dir) / test_case_id / resource_type
    resource_dir.mkdir(parents=True, exist_ok=True)

    filename = resource_dir / f"{resource.id}.json"
    partial = filename.with_name(filename.name + ".part")
    with partial.open("wt", encoding="utf-8") as f:
        f.write(resource.as_json())
    partial.replace(filename)

    return filename

def process_manifest(manifest_file, reference_date, output_dir, summary=None, random_ids=False):
    manifest_file = Path(manifest_file)
    log.info(f"Processing: {manifest_file.name}")

    manifest = load_manifest(manifest_file)
    test_case_id = manifest["testCaseId"]
    resources = compile_manifest(manifest, reference_date, random_ids=random_ids)

    for resource in resources:
        filename = write_resource(output_dir, test_case_id, resource.resource_type, resource)
        log.debug(f"  {resource.resource_type}: {filename.relative_to(output_dir)}")
        if summary is not None:
            summary.summary(test_case_id, resource.content)

    log.info(f"Test case '{test_case_id}' generated ({len(resources)} resources)")
    return test_case_id

def find_manifests(manifest_dir):
    manifest_dir = Path(manifest_dir)
    return sorted(f for f in manifest_dir.iterdir()
                    if f.is_file() and f.suffix in (".yaml", ".yml"))

def compile_manifests(manifest_files, reference_date, output_dir, summary=None, random_ids=False):
    """Process each manifest independently. Returns the list of manifest
    files that failed; a failure never stops the rest of the batch."""
    output_dir = Path(output_dir)
    failed = []

    for manifest_file in manifest_files:
        problem = None
        try:
            process_manifest(manifest_file, reference_date, output_dir,
                                summary=summary, random_ids=random_ids)
        except CaseToolError as e:
            problem = e.message()
        except (YAMLError, OSError) as e:
            problem = str(e)

        if problem is not None:
            log.error(f"Error processing {Path(manifest_file).name}: {problem}")
            failed.append(manifest_file)
            if summary is not None:
                summary.failure(Path(manifest_file).name)

    return failed

def exec(args=None):
    if args is None:
        args = sys.argv[1:]

    parser = ArgumentParser(
        description="Generate FHIR test case resources from YAML manifests, "
        "resolving relative dates against a reference date."
    )
    parser.add_argument(
        "-r",
        "--reference-date",
        type=parse_reference_date,
        default=None,
        help="Date (YYYY-MM-DD) relative dates are calculated from. Defaults to today."
    )
    parser.add_argument(
        "-m",
        "--manifests",
        default=None,
        help="Directory containing the manifest YAML files"
    )
    parser.add_argument(
        "-o",
        "--output",
        default=None,
        help="Root directory test cases are written to"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=FileType("rt"),
        default=None,
        help="Optional YAML project configuration"
    )
    parser.add_argument(
        "--random-ids",
        action="store_true",
        help="Use random ids for entries without an id instead of ids derived "
        "from the test case (re-runs will then produce new files)"
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log each file as it is written"
    )
    args = parser.parse_args(args)
    setup_logging(args.verbose)

    config = Configuration(args.config)
    reference_date = args.reference_date or date.today()
    manifest_dir = Path(args.manifests or config.manifest_dir)
    output_dir = Path(args.output or config.testcase_dir)

    log.info(f"Reference Date: {reference_date.isoformat()}")
    log.info(f"Manifests Directory: {manifest_dir}")
    log.info(f"Output Directory: {output_dir}")

    die_if(not manifest_dir.is_dir(), f"The manifest directory, {manifest_dir}, does not exist.")
    manifest_files = find_manifests(manifest_dir)
    die_if(len(manifest_files) == 0, f"No manifest files found in {manifest_dir}")
    log.info(f"Found {len(manifest_files)} manifest file(s)")

    summary = ResourceSummary()
    failed = compile_manifests(manifest_files, reference_date, output_dir,
                                summary=summary, random_ids=args.random_ids)
    summary.print_summary(reference_date.isoformat())

    if len(failed) > 0:
        sys.exit(1)
    log.info(f"All test cases generated in {output_dir}")

if __name__ == "__main__":
    exec()
