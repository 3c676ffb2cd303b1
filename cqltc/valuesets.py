#!/usr/bin/env python

"""Upload expanded ValueSets to a FHIR server.

Scans <measure-dir>/vocabulary/valueset/external for ValueSet JSON files and
POSTs each one whose canonical url isn't already present on the server.
Every outcome is appended to an upload log so repeated runs leave a trail.
"""

import os
import sys
import json
import logging
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from argparse import ArgumentParser, FileType

import requests

from cqltc import die_if, setup_logging
from cqltc.config import Configuration
from cqltc.hostfile import load_hosts_file, service_url, build_session

log = logging.getLogger(__name__)

valueset_subdir = Path("vocabulary") / "valueset" / "external"

class ValueSetDeployer:
    def __init__(self, session, base_url):
        self.session = session
        self.base_url = base_url.rstrip("/") + "/"
        self.outcomes = Counter()

    def exists(self, url):
        """True if the server already holds a ValueSet with this canonical url.

        A failed lookup is logged and treated as absent."""
        try:
            response = self.session.get(f"{self.base_url}ValueSet", params={"url": url})
            response.raise_for_status()
            entries = response.json().get("entry") or []
        except (requests.RequestException, ValueError) as e:
            log.error(f"CHECK ERROR {url}: {e}")
            return False
        return len(entries) > 0

    def upload(self, filename):
        filename = Path(filename)
        try:
            with filename.open("rt", encoding="utf-8") as f:
                valueset = json.load(f)
        except (OSError, ValueError) as e:
            log.warning(f"INVALID JSON: {filename} ({e})")
            return self.record("invalid")

        url = valueset.get("url") if isinstance(valueset, dict) else None
        if not url:
            log.warning(f"NO URL: {filename}")
            return self.record("invalid")

        if self.exists(url):
            log.info(f"SKIPPED: {url} (already exists)")
            return self.record("skipped")

        try:
            response = self.session.post(
                f"{self.base_url}ValueSet",
                data=json.dumps(valueset),
                headers={"Content-Type": "application/fhir+json"},
            )
            response.raise_for_status()
        except requests.RequestException as e:
            detail = e.response.text if e.response is not None else str(e)
            log.error(f"UPLOAD ERROR {url}: {detail}")
            return self.record("failed")

        log.info(f"UPLOADED: {url}")
        return self.record("uploaded")

    def record(self, outcome):
        self.outcomes[outcome] += 1
        return outcome

    def deploy(self, valueset_dir):
        valueset_dir = Path(valueset_dir)
        valueset_files = []
        if valueset_dir.is_dir():
            valueset_files = sorted(valueset_dir.glob("*.json"))

        log.info(f"Found {len(valueset_files)} ValueSet files in {valueset_dir}")
        for filename in valueset_files:
            self.upload(filename)

        return self.outcomes

def add_upload_log(filename):
    """Append this module's messages to the upload log"""
    filename = Path(filename)
    filename.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(filename, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
    log.addHandler(handler)
    log.setLevel(logging.INFO)
    return handler

def exec(args=None):
    if args is None:
        args = sys.argv[1:]

    parser = ArgumentParser(
        description="Upload expanded ValueSets from a measure directory to a FHIR server."
    )
    parser.add_argument(
        "--measure-dir",
        default=None,
        help="Measure directory containing vocabulary/valueset/external"
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Entry from the fhir hosts file to upload to. If not provided, "
        "the environment variable, FHIR_SERVER_URL, is used."
    )
    parser.add_argument(
        "--hosts-file",
        default=None,
        help="YAML file describing the available FHIR hosts (fhir_hosts by default)"
    )
    parser.add_argument(
        "--log",
        default=None,
        help="File upload results are appended to"
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
    die_if(args.measure_dir is None, "Missing --measure-dir argument")

    if args.host is not None:
        hosts = load_hosts_file(args.hosts_file or config.hosts_file)
        die_if(args.host not in hosts,
            f"The host, {args.host}, is not configured. Options are: {', '.join(sorted(hosts.keys()))}")
        host = hosts[args.host]
    else:
        server_url = os.getenv("FHIR_SERVER_URL")
        die_if(not server_url, "Missing FHIR_SERVER_URL (or provide --host)")
        host = {"target_service_url": server_url}

    add_upload_log(args.log or config.upload_log)
    log.info(f"UPLOAD RUN @ {datetime.now(timezone.utc).isoformat()}")

    deployer = ValueSetDeployer(build_session(host), service_url(host))
    outcomes = deployer.deploy(Path(args.measure_dir) / valueset_subdir)
    log.info(", ".join(f"{key}: {outcomes[key]}" for key in ["uploaded", "skipped", "invalid", "failed"]))

if __name__ == "__main__":
    exec()
