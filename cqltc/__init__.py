__version__="0.1.0"

import sys
import logging
from datetime import date
from argparse import ArgumentTypeError

from rich.logging import RichHandler

# The four resource kinds we generate and summarize. The order here is the
# order in which they are written and reported
resource_kinds = ["Patient", "Immunization", "Condition", "Observation"]

class CaseToolError(Exception):
    """Base class for the errors raised while compiling or summarizing cases"""
    def message(self):
        return str(self)

class MalformedDateSpec(CaseToolError):
    def __init__(self, spec, field=None):
        self.spec = spec
        self.field = field
        super().__init__(self.message())

    def message(self):
        if self.field:
            return f"Invalid date specification for {self.field}: {self.spec!r}"
        return f"Invalid date specification: {self.spec!r}"

class ManifestError(CaseToolError):
    def __init__(self, manifest_name, problem):
        self.manifest_name = manifest_name
        self.problem = problem
        super().__init__(self.message())

    def message(self):
        return f"{self.manifest_name}: {self.problem}"

class InvalidResource(CaseToolError):
    def __init__(self, kind, missing, source=None, malformed=None):
        self.kind = kind
        self.missing = missing
        self.malformed = malformed or []
        self.source = source
        super().__init__(self.message())

    def message(self):
        where = f" ({self.source})" if self.source else ""
        problems = []
        if self.missing:
            problems.append(f"is missing required field(s): {', '.join(self.missing)}")
        if self.malformed:
            problems.append(f"has malformed field(s): {', '.join(self.malformed)}")
        return f"{self.kind} resource {' and '.join(problems)}{where}"

def die_if(do_die, msg, errnum=1):
    if do_die:
        sys.stderr.write(msg + "\n")
        sys.exit(errnum)

def parse_reference_date(value):
    """argparse type for YYYY-MM-DD reference dates"""
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ArgumentTypeError(f"Reference dates must be YYYY-MM-DD, not '{value}'")

def setup_logging(verbose=False):
    """Route module loggers through rich. Called once by each entry point."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(show_path=False, markup=False)],
        force=True,
    )
