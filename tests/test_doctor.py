"""Tests for health checks."""

import json

from redpill_vault.approval import ApprovalStore
from redpill_vault.doctor import check_keys, run_checks

from conftest import PASSPHRASE


class TestCheckKeys:
    """Tests for check_keys."""

    def test_no_config(self, tmp_path):
        checks = check_keys(tmp_path)
        assert [c.ok for c in checks] == [False]

    def test_sources(self, make_project, vault, vault_path, monkeypatch):
        monkeypatch.setenv("RV_PASSWORD", PASSPHRASE)
        root = make_project("app", {"secrets": {"A": {}, "B": {}, "C": {}}})
        vault.set_secret("APP__A", "1")
        vault.set_secret("B", "2")

        checks = {c.name: c for c in check_keys(root, vault_path)}
        assert checks["A"].ok and "project" in checks["A"].message
        assert checks["B"].ok and "global" in checks["B"].message
        assert not checks["C"].ok

    def test_vault_unavailable(self, make_project):
        root = make_project("app", {"secrets": {"A": {}}})
        checks = check_keys(root)
        assert checks[0].name == "vault"
        assert not checks[0].ok


class TestRunChecks:
    """Tests for run_checks."""

    def test_fresh_machine(self, tmp_path):
        """Nothing set up: every check fails with a next step."""
        checks = run_checks(tmp_path, ApprovalStore(tmp_path / "approved.json"))
        assert not any(c.ok for c in checks)
        assert all("rv " in c.message for c in checks)

    def test_invalid_manifest(self, make_project, tmp_path):
        root = make_project("app")
        (root / ".rv.json").write_text(json.dumps({"secrets": []}))
        checks = {c.name: c for c in run_checks(root, ApprovalStore(tmp_path / "a.json"))}
        assert not checks[".rv.json"].ok
