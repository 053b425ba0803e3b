import sys
from pathlib import Path

import pyarrow.parquet as pq
from click.testing import CliRunner

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from dump2parquet.cli import main


DUMP = (
    "-- dump\n"
    "CREATE TABLE `t` (\n"
    "  `id` int NOT NULL,\n"
    "  `name` varchar(20) DEFAULT NULL\n"
    ");\n"
    "INSERT INTO `t` VALUES (1,'a'),(2,NULL);\n"
)


def test_cli_reads_file(tmp_path):
    src = tmp_path / "dump.sql"
    src.write_text(DUMP, encoding="utf-8")
    out = tmp_path / "out" / "nested"
    result = CliRunner().invoke(main, [str(src), "-o", str(out), "--no-progress"])
    assert result.exit_code == 0, result.output
    assert pq.read_table(str(out / "t.parquet")).to_pydict() == {"id": [1, 2], "name": ["a", None]}


def test_cli_reads_stdin(tmp_path):
    result = CliRunner().invoke(main, ["--output", str(tmp_path), "--no-progress"], input=DUMP)
    assert result.exit_code == 0, result.output
    assert (tmp_path / "t.parquet").exists()


def test_cli_failure_exits_nonzero(tmp_path):
    bad = DUMP + "INSERT INTO `t` VALUES ('x','y');\n"
    result = CliRunner().invoke(main, ["-o", str(tmp_path), "--no-progress"], input=bad)
    assert result.exit_code == 1
    assert "Value for column id should be an integer" in result.output


def test_cli_skip_unparseable(tmp_path):
    bad = DUMP + "INSERT INTO `t` VALUES ((;\n"
    result = CliRunner().invoke(main, ["-o", str(tmp_path), "--no-progress", "--skip-unparseable"], input=bad)
    assert result.exit_code == 0, result.output
    assert pq.read_metadata(str(tmp_path / "t.parquet")).num_rows == 2


def test_cli_rejects_unknown_timezone(tmp_path):
    result = CliRunner().invoke(main, ["-o", str(tmp_path), "--timezone", "Nowhere/Land"], input="")
    assert result.exit_code == 2
    assert "unknown time zone" in result.output


def test_cli_with_progress_bar(tmp_path):
    src = tmp_path / "dump.sql"
    src.write_text(DUMP, encoding="utf-8")
    result = CliRunner().invoke(main, [str(src), "-o", str(tmp_path), "-v"])
    assert result.exit_code == 0, result.output
    assert pq.read_metadata(str(tmp_path / "t.parquet")).num_rows == 2
