"""Unit tests for contact file reading and CLI argument validation."""

from __future__ import annotations

import pandas as pd
import pytest
from typer.testing import CliRunner

from contactclass.cli import app
from contactclass.ingestion import read_contact_file

runner = CliRunner()


class TestReadContactFile:
    """Test CSV/XLSX loading."""

    def test_semicolon_csv_keeps_text(self, tmp_path):
        path = tmp_path / "contacts.csv"
        path.write_text(
            "Nom complet;E-mail;N° TVA;Ville\n"
            "Pharmacie Centrale;contact@pharma.fr;0123456789;Lyon\n"
            "Jean Dupont;;;\n",
            encoding="utf-8",
        )

        records = read_contact_file(path)

        assert records[0] == {
            "Nom complet": "Pharmacie Centrale",
            "E-mail": "contact@pharma.fr",
            "N° TVA": "0123456789",
            "Ville": "Lyon",
        }
        assert records[1]["E-mail"] == ""

    def test_xlsx(self, tmp_path):
        path = tmp_path / "contacts.xlsx"
        pd.DataFrame({" Nom complet ": ["Clinique du Parc"], "Pays": ["France"]}).to_excel(
            path, index=False
        )

        records = read_contact_file(path)

        assert records == [{"Nom complet": "Clinique du Parc", "Pays": "France"}]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_contact_file(tmp_path / "missing.csv")

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "contacts.json"
        path.write_text("[]")

        with pytest.raises(ValueError, match="Unsupported file format"):
            read_contact_file(path)


class TestCliValidation:
    """Test argument errors reported before any database access."""

    def test_run_rejects_malformed_job_id(self):
        result = runner.invoke(app, ["run", "not-a-uuid", "--local"])

        assert result.exit_code == 1
        assert "Malformed job id" in result.output

    def test_override_rejects_unknown_category(self):
        result = runner.invoke(
            app,
            [
                "override",
                "6f1c1e1c-4d55-4a4e-9a55-3b7d52d0c001",
                "3",
                "partner",
                "--by",
                "reviewer",
            ],
        )

        assert result.exit_code == 1
        assert "Unknown category label" in result.output

    def test_import_missing_file(self, tmp_path):
        result = runner.invoke(app, ["import-csv", str(tmp_path / "missing.csv")])

        assert result.exit_code == 1
        assert "Contact file not found" in result.output
