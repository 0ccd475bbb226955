import pandas as pd
import pytest

from ledger_fixtures import PATTERNS_FILE

from ledger_insight import __version__
from ledger_insight.cli import main

LEDGER_CSV = (
    "date,code,debit,credit,protocol,annotation,description\n"
    "2025-01-01,14.01.001,400,0,,,APERTURA\n"
    "2025-02-10,58.01.001,0,1000,P1,,Vendita\n"
    "2025-02-10,14.01.001,1000,0,P1,ACME Srl,Vendita\n"
    "2025-03-05,66.01.001,300,0,A1,,Acquisto\n"
    "2025-03-05,40.01.001,0,300,A1,Alfa Spa,Acquisto\n"
)


@pytest.fixture
def cli_files(tmp_path):
    csv_path = tmp_path / "ledger.csv"
    csv_path.write_text(LEDGER_CSV, encoding="utf-8")

    config_path = tmp_path / "ledger_insight_config.toml"
    config_path.write_text(
        f"""
[fiscal_year]
start_date = "2025-01-01"
end_date = "2025-12-31"

[database]
path = "ledger.sqlite"

[accounts]
patterns_file = "{PATTERNS_FILE.as_posix()}"

[display]
mode = "csv"
""",
        encoding="utf-8",
    )
    return str(config_path), str(csv_path)


def test_version_flag(capsys) -> None:
    main(["--version"])

    assert __version__ in capsys.readouterr().out


def test_import_then_kpis_to_csv(cli_files, tmp_path, capsys) -> None:
    config_path, csv_path = cli_files
    out_dir = tmp_path / "out"

    main(["--config", config_path, "--import", csv_path, "--output", str(out_dir)])

    out = capsys.readouterr().out
    assert "5 entries (1 opening, 0 closing rows)" in out
    files = list(out_dir.glob("kpis_*.csv"))
    assert len(files) == 1

    kpis = pd.read_csv(files[0]).set_index("key")
    assert kpis.loc["revenue", "value"] == 1000.0
    assert kpis.loc["direct_costs", "value"] == 300.0


def test_all_scopes_render_tables(cli_files, capsys) -> None:
    config_path, csv_path = cli_files

    main(
        [
            "--config",
            config_path,
            "--import",
            csv_path,
            "--scope",
            "all",
            "--display-mode",
            "table",
        ]
    )

    out = capsys.readouterr().out
    for title in (
        "Financial KPIs",
        "Cost centers",
        "Top customers",
        "Supplier ABC",
        "Quarterly retention",
        "Monthly growth",
        "Seasonality by quarter",
    ):
        assert f"=== {title} ===" in out


def test_missing_import_file_exits(cli_files, tmp_path) -> None:
    config_path, _ = cli_files

    with pytest.raises(SystemExit):
        main(["--config", config_path, "--import", str(tmp_path / "nope.csv")])
