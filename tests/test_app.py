"""Tests for the memreport command line."""

import io

from click.testing import CliRunner

from memreport.app import main, run

BANNER = "First run since application start"


def test_single_report():
    """Test the default invocation prints one report and exits 0."""
    result = CliRunner().invoke(main, ["--host-label", "db01", "--timezone", "UTC"])

    assert result.exit_code == 0
    assert result.output.startswith("Memory snapshot [from db01]\n")
    assert "This report produced at:" in result.output
    assert BANNER in result.output
    assert "Memory Pool" in result.output


def test_config_file_and_override(tmp_path):
    """Test command line flags win over the config file."""
    path = tmp_path / "memreport.yaml"
    path.write_text("host_label: from-file\nrecipient: ops@example.org\n")

    result = CliRunner().invoke(main, ["--config", str(path), "--host-label", "from-flag"])

    assert result.exit_code == 0
    assert "Memory snapshot [from from-flag] (- -> ops@example.org)" in result.output


def test_bad_timezone_exits_2():
    """Test configuration errors exit with code 2."""
    result = CliRunner().invoke(main, ["--timezone", "Nowhere/Special"])

    assert result.exit_code == 2
    assert "unknown timezone" in result.output


def test_missing_config_exits_2(tmp_path):
    """Test a missing config file is a configuration error."""
    result = CliRunner().invoke(main, ["--config", str(tmp_path / "missing.yaml")])

    assert result.exit_code == 2


def test_scheduled_count():
    """Test --count repeats reports and stops by itself."""
    stream = io.StringIO()

    code = run(host_label="db01", interval=1.0, count=2, stream=stream)

    output = stream.getvalue()
    assert code == 0
    assert output.count("Memory snapshot [from db01]") == 2
    assert output.count(BANNER) == 1


def test_delivery_failure_exits_1():
    """Test a failing sink gives exit code 1."""
    stream = io.StringIO()
    stream.close()

    assert run(host_label="db01", stream=stream) == 1
