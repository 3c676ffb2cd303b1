from collections import defaultdict
from rich.console import Console
from rich.table import Table

from cqltc import resource_kinds


class ResourceSummary:
    """Tally of the resources written per test case, printed once the compiler
    has worked through every manifest"""
    def __init__(self):
        # test case id => ResourceType => count
        self.cases = defaultdict(lambda: defaultdict(int))
        self.totals = defaultdict(int)
        self.failed = []

    def summary(self, test_case_id, resource):
        resource_type = resource["resourceType"]
        self.cases[test_case_id][resource_type] += 1
        self.totals[resource_type] += 1

    def failure(self, manifest_name):
        self.failed.append(manifest_name)

    def count(self, test_case_id, resource_type):
        return self.cases[test_case_id][resource_type]

    def as_table(self, title):
        table = Table(title=f"Resource Summary ({title})")
        table.add_column("Test Case")
        for kind in resource_kinds:
            table.add_column(kind, justify="right")

        for test_case_id in sorted(self.cases.keys()):
            table.add_row(test_case_id,
                *[str(self.cases[test_case_id][kind]) for kind in resource_kinds])

        table.add_section()
        table.add_row("Total", *[str(self.totals[kind]) for kind in resource_kinds])
        return table

    def print_summary(self, title, console=None):
        if console is None:
            console = Console()
        console.print(self.as_table(title))

        if self.failed:
            console.print(f"[red]{len(self.failed)} manifest(s) failed:[/red] {', '.join(self.failed)}")
