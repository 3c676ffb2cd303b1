import io

import pytest
import requests

from cqltc.config import Configuration, default_vaccine_codes
from cqltc.hostfile import load_hosts_file, build_session, service_url, example_config
from cqltc.resource_summary import ResourceSummary


class TestConfiguration:
    def test_defaults(self):
        config = Configuration()
        assert config.manifest_dir == "manifests"
        assert config.testcase_dir == "input/tests/MMR_Standard"
        assert config.report_filename == "docs/test-cases-summary.md"
        assert config.vaccine_codes == default_vaccine_codes
        assert config.vaccine_label == "MMR"
        assert config.upload_log == "output/upload-vsac-log.txt"
        assert config.hosts_file is None

    def test_from_file(self, tmp_path):
        cfg = tmp_path / "cqltc.yaml"
        cfg.write_text("manifest_dir: cases/manifests\n"
                        "vaccine_codes: ['03', 94]\n"
                        "vaccine_label: MMRV\n")
        with cfg.open("rt") as f:
            config = Configuration(f)

        assert config.filename == str(cfg)
        assert config.manifest_dir == "cases/manifests"
        assert config.vaccine_codes == ["03", "94"]
        assert config.vaccine_label == "MMRV"

    def test_required_parameter(self, tmp_path):
        cfg = tmp_path / "cqltc.yaml"
        cfg.write_text("manifest_dir: m\n")
        with cfg.open("rt") as f:
            config = Configuration(f)
        with pytest.raises(SystemExit):
            config.from_config("study_id", required=True)

    def test_empty_file(self, tmp_path):
        cfg = tmp_path / "cqltc.yaml"
        cfg.write_text("")
        with cfg.open("rt") as f:
            assert Configuration(f).manifest_dir == "manifests"

    def test_not_a_mapping(self, tmp_path):
        cfg = tmp_path / "cqltc.yaml"
        cfg.write_text("- a\n- b\n")
        with cfg.open("rt") as f:
            with pytest.raises(SystemExit):
                Configuration(f)


class TestHostFile:
    def test_missing_file_prints_example(self, tmp_path, capsys):
        with pytest.raises(SystemExit):
            load_hosts_file(tmp_path / "fhir_hosts")
        out = capsys.readouterr().out
        assert "target_service_url" in out
        assert "auth_type: basic" in out

    def test_load(self, tmp_path):
        hosts = tmp_path / "fhir_hosts"
        hosts.write_text("local:\n  host_desc: Local\n  target_service_url: http://localhost:8080/fhir\n")
        assert load_hosts_file(hosts)["local"]["target_service_url"] == "http://localhost:8080/fhir"

    def test_service_url(self):
        assert service_url({"target_service_url": "http://localhost/fhir"}) == "http://localhost/fhir/"
        assert service_url({"target_service_url": "http://localhost/fhir//"}) == "http://localhost/fhir/"

    def test_basic_auth(self):
        session = build_session({"auth_type": "basic", "username": "u", "password": "p"})
        assert isinstance(session, requests.Session)
        assert session.auth == ("u", "p")

    def test_token_auth(self):
        session = build_session({"auth_type": "token", "token": "abc"})
        assert session.headers["Authorization"] == "Bearer abc"

    def test_single_example(self):
        writer = io.StringIO()
        example_config(writer, "token")
        assert "example-token:" in writer.getvalue()
        assert "example-basic:" not in writer.getvalue()


def test_resource_summary_table():
    summary = ResourceSummary()
    summary.summary("case-a", {"resourceType": "Patient"})
    summary.summary("case-a", {"resourceType": "Immunization"})
    summary.summary("case-a", {"resourceType": "Immunization"})
    summary.summary("case-b", {"resourceType": "Patient"})
    summary.failure("bad.yaml")

    assert summary.count("case-a", "Immunization") == 2
    assert summary.totals["Patient"] == 2

    table = summary.as_table("2025-06-01")
    assert table.row_count == 3
    assert [c.header for c in table.columns] == ["Test Case", "Patient", "Immunization", "Condition", "Observation"]
