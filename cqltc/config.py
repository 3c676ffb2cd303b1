"""
Basic representation of the optional project configuration shared by the
case tools. Every property has a default so the tools run without a config
file, and command line flags take precedence over anything found here.
"""
from cqltc import die_if
from yaml import safe_load

# CVX 03 (MMR), CVX 94 (MMRV) and the SNOMED MMR vaccine product
default_vaccine_codes = ["03", "94", "871765008"]

class Configuration:
    def __init__(self, cfgfile=None):
        self.filename = None
        self.config = {}

        if cfgfile is not None:
            self.filename = cfgfile.name
            self.config = safe_load(cfgfile) or {}
            die_if(not isinstance(self.config, dict),
                f"The configuration file, '{self.filename}', must contain a "
                "YAML mapping.")

    def from_config(self, key, default=None, required=False):
        die_if(required and key not in self.config,
            f"Required configuration parameter, '{key}' is missing from file, "
            f"'{self.filename}'.")
        return self.config.get(key, default)

    @property
    def manifest_dir(self):
        return self.from_config('manifest_dir', default='manifests')

    @property
    def testcase_dir(self):
        return self.from_config('testcase_dir', default='input/tests/MMR_Standard')

    @property
    def report_filename(self):
        return self.from_config('report_filename', default='docs/test-cases-summary.md')

    @property
    def vaccine_codes(self):
        return [str(x) for x in self.from_config('vaccine_codes', default=default_vaccine_codes)]

    @property
    def vaccine_label(self):
        return self.from_config('vaccine_label', default='MMR')

    @property
    def upload_log(self):
        return self.from_config('upload_log', default='output/upload-vsac-log.txt')

    @property
    def hosts_file(self):
        return self.from_config('hosts_file')
